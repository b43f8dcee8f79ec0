"""Database session management for SQLModel ORM tables."""

from typing import Generator

from sqlmodel import Session, SQLModel

from promptdesk.storage.database import get_engine


def get_session() -> Generator[Session, None, None]:
    """Yield a SQLModel session for dependency injection."""
    with Session(get_engine()) as session:
        yield session


def init_sqlmodel_tables() -> None:
    """Create SQLModel tables (report engine)."""
    # registers the report tables on SQLModel.metadata
    import promptdesk.reports.models  # noqa: F401

    SQLModel.metadata.create_all(get_engine())
