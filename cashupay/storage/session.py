"""Database session management with the context manager pattern.

Usage:
    with db_session() as db:
        store = db.get(Store, "store_...")
        db.commit()
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from cashupay.utils.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic cleanup.

    Yields:
        Session: SQLAlchemy session

    Raises:
        RuntimeError: If database not initialized
        Exception: Any exception from within the context (after rollback)

    Note:
        - Session is automatically rolled back on exception
        - Session is automatically closed on exit
        - You must call db.commit() to persist changes
    """
    from cashupay.storage.database.base import get_session

    db = get_session()
    try:
        logger.debug("db_session_created", session_id=id(db))
        yield db
    except Exception as e:
        logger.error(
            "db_session_error_rollback",
            error=str(e),
            error_type=type(e).__name__,
            session_id=id(db),
        )
        db.rollback()
        raise
    finally:
        logger.debug("db_session_closed", session_id=id(db))
        db.close()
