from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from timetable_admin.core.config import get_settings
from timetable_admin.core.exceptions import AppError, PersistenceError

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@contextmanager
def atomic(db: Session, operation: str, *, attempted: int = 0) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing.

    Storage errors surface as PersistenceError with the cause chained. Any other
    exception, application errors included, is re-raised untouched after the
    rollback.
    """
    try:
        yield db
        db.commit()
    except AppError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("%s failed; transaction rolled back", operation)
        raise PersistenceError(f"Failed to {operation}", attempted=attempted) from exc
    except Exception:
        db.rollback()
        raise
