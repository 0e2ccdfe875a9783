from typing import Any

from loguru import logger
from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .models.db import Member

# Columns a member can be looked up by.
LOOKUP_KEYS = ("id", "phone", "cardno")


def is_numeric_cardno(cardno: str) -> bool:
    return cardno.isascii() and cardno.isdigit()


class MemberStore:

    def __init__(self, engine: Engine) -> None:
        self.engine: Engine = engine

    def find_one(self, **predicate: Any) -> Member | None:
        if len(predicate) != 1:
            raise ValueError("lookup takes exactly one key")

        key, value = next(iter(predicate.items()))
        if key not in LOOKUP_KEYS:
            raise ValueError(f"members can not be looked up by {key}")

        query = select(Member).where(getattr(Member, key) == value)
        with Session(self.engine) as session:
            # Phone is unique by convention only, take the first.
            return session.exec(query).first()

    def insert(self, member: Member) -> bool:
        """Write a new member.

        Returns False when the write did not take effect because the record
        collides with an existing one. Any other database error propagates.
        """
        with Session(self.engine) as session:
            session.add(member)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                logger.warning(f"member {member.id} not written, {e.orig}")
                return False
            session.refresh(member)
        return True

    def max_numeric_cardno(self, upto: int | None = None) -> int | None:
        # Cards may be free text, only digit cards count.
        query = select(Member.cardno).where(Member.cardno != None)
        with Session(self.engine) as session:
            cards = session.exec(query)
            numbers = (int(c) for c in cards if c and is_numeric_cardno(c))
            return max((n for n in numbers if upto is None or n <= upto), default=None)
