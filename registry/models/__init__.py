from . import db  # type: ignore
from sqlalchemy import Engine


def create_all_tables(engine: Engine) -> None:
    from sqlmodel import SQLModel

    SQLModel.metadata.create_all(engine)
