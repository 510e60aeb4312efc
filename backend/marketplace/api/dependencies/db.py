"""Per-request database session."""

from typing import Generator

from sqlalchemy.orm import Session

from marketplace.database.session import get_db_session_sync


def get_db() -> Generator[Session, None, None]:
    """Commit when the route returns, roll back when it raises."""
    yield from get_db_session_sync()
