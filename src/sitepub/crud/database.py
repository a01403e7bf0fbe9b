"""Database engine creation and schema initialization"""

from sqlalchemy import create_engine
from sqlmodel import SQLModel

from sitepub.crud import tables  # noqa: F401  registers table metadata


def make_engine(db_url: str):
    """SQLite engines get check_same_thread=False so publishes may run from worker threads."""
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, echo=False, connect_args=connect_args)


def init_db(engine) -> None:
    SQLModel.metadata.create_all(engine)
