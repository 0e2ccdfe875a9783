from sqlmodel import SQLModel, Field
from datetime import datetime


class Member(SQLModel, table=True):

    __tablename__ = "member"  # type: ignore

    id: str = Field(primary_key=True, max_length=36)
    cardno: str | None = Field(default=None, unique=True, index=True, max_length=32)
    phone: str | None = Field(default=None, index=True, max_length=32)
    level: str | None = Field(default=None, max_length=64)
    name: str | None = Field(default=None, max_length=128)
    reference: str | None = Field(default=None, index=True, max_length=36)
    create_time: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        return (
            f"id={self.id},p={self.phone},c={self.cardno},"
            f"ref={self.reference},time={self.create_time}"
        )


# One row for each ancestor of a member, depth 1 is the direct referrer.
class MemberLevel(SQLModel, table=True):

    __tablename__ = "member_level"  # type: ignore

    id: int | None = Field(default=None, primary_key=True)
    ancestor: str = Field(index=True, max_length=36)
    member: str = Field(index=True, max_length=36)
    depth: int
