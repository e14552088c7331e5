from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from material_tracker.config import settings

logger = logging.getLogger(__name__)

T = TypeVar('T')

engine = create_engine(settings.database_url_normalized, echo=settings.sql_echo, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def new_id() -> str:
    return str(uuid.uuid4())


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_atomic(db: Session, fn: Callable[[], T]) -> T:
    """Run ``fn`` and commit everything it wrote, or nothing.

    Services only flush, so callers outside the HTTP layer use this to commit
    a unit of work; routers commit themselves after ``service_errors``. Any
    exception rolls the session back and is re-raised.
    """
    try:
        result = fn()
        db.commit()
    except Exception:
        db.rollback()
        logger.warning('Atomic unit of work rolled back', exc_info=True)
        raise
    return result
