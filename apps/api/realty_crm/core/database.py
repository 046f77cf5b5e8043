from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from realty_crm.core.config import get_settings
from realty_crm.metrics import observe_serialization_retry


logger = logging.getLogger("realty_crm.db")

T = TypeVar("T")

# SQLSTATE serialization_failure and deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


class Base(DeclarativeBase):
    pass


settings = get_settings()
engine = create_engine(settings.database_url, echo=settings.sql_echo, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in _RETRYABLE_SQLSTATES


def run_in_transaction(session: Session, operation: str, work: Callable[[], T]) -> T:
    """Run ``work`` and commit, rolling back on any error.

    A storage serialization failure is retried up to ``serialization_retry_limit``
    times; every other error propagates after rollback.
    """

    retry_limit = max(get_settings().serialization_retry_limit, 0)
    attempt = 0
    while True:
        attempt += 1
        try:
            result = work()
            session.commit()
            return result
        except DBAPIError as exc:
            session.rollback()
            if attempt > retry_limit or not is_serialization_failure(exc):
                raise
            observe_serialization_retry(operation)
            logger.warning("db.serialization_retry", extra={"action": operation, "attempt": attempt})
        except Exception:
            session.rollback()
            raise
