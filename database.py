import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import StoreFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _create_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)
    eng = create_engine(database_url, connect_args={"check_same_thread": False})
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    # Writers queue behind a split instead of failing straight away.
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


engine = _create_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def atomic(session: Session, operation: str) -> Iterator[Session]:
    """Run a unit of work as one transaction.

    Commits when the block finishes, rolls everything back on any exception.
    Database errors surface as ``StoreFailure`` and are not retried here.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"store_write_failed: operation={operation} error={exc}")
        raise StoreFailure(operation) from exc
    except Exception:
        session.rollback()
        raise


def read_with_retry(session: Session, operation: str, fn: Callable[[], T]) -> T:
    """Run an idempotent read, retrying transient database errors with backoff."""
    settings = get_settings()
    attempts = settings.store_retry_attempts
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except OperationalError as exc:
            session.rollback()
            if attempt >= attempts:
                logger.error(
                    f"store_read_failed: operation={operation} attempts={attempt} error={exc}"
                )
                raise StoreFailure(operation, attempts=attempt) from exc
            delay = settings.store_retry_backoff_secs * (2 ** (attempt - 1))
            logger.warning(
                f"store_read_retry: operation={operation} attempt={attempt} delay={delay:.3f}"
            )
            time.sleep(delay)
    raise StoreFailure(operation, attempts=attempts)
