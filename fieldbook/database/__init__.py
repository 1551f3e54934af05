"""
Database engine, session factory, and metadata shared across the application.

Engines are built explicitly by the composition root; nothing here opens a
connection at import time.
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.exceptions import (
    RepositoryException,
    StoreTimeoutException,
    StoreUnavailableException,
)

if TYPE_CHECKING:
    from ..core.config import Settings

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

T = TypeVar("T")

_TIMEOUT_ERROR_SNIPPETS = (
    "database is locked",
    "statement timeout",
    "canceling statement due to statement timeout",
    "lock timeout",
)
_DISCONNECT_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "could not connect to server",
    "connection refused",
)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _build_engine_kwargs(db_url: str, settings: "Settings") -> Dict[str, Any]:
    """Bounded timeouts for every connection the engine hands out."""
    if _is_sqlite(db_url):
        kwargs: Dict[str, Any] = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.store_pool_timeout_seconds,
            },
        }
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return kwargs

    return {
        "pool_size": 5,
        "max_overflow": 5,
        # Fail fast when the pool is exhausted instead of blocking requests
        "pool_timeout": settings.store_pool_timeout_seconds,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "connect_args": {
            "connect_timeout": settings.store_pool_timeout_seconds,
            "options": f"-c statement_timeout={settings.store_statement_timeout_ms}",
        },
    }


def _install_sqlite_pragmas(engine: Engine) -> None:
    # pysqlite opens the transaction lazily at the first write; the reservation
    # path makes its field-row UPDATE that first write, so the busy timeout
    # queues competing writers behind it.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(db_url: str, settings: "Settings") -> Engine:
    """Create the SQLAlchemy engine for the persistent store."""
    engine = create_engine(db_url, future=True, **_build_engine_kwargs(db_url, settings))
    if _is_sqlite(db_url):
        _install_sqlite_pragmas(engine)
    logger.info("Database engine created for dialect %s", engine.dialect.name)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def _root_cause(exc: BaseException) -> BaseException:
    if isinstance(exc, RepositoryException) and exc.__cause__ is not None:
        return exc.__cause__
    return exc


def classify_store_error(exc: BaseException) -> str | None:
    """
    Return "timeout" or "unavailable" for transient store failures, None otherwise.
    """
    cause = _root_cause(exc)
    if isinstance(cause, PoolTimeoutError):
        return "timeout"
    if isinstance(cause, OperationalError):
        message = str(cause).lower()
        if any(snippet in message for snippet in _TIMEOUT_ERROR_SNIPPETS):
            return "timeout"
        if cause.connection_invalidated or any(
            snippet in message for snippet in _DISCONNECT_ERROR_SNIPPETS
        ):
            return "unavailable"
    return None


def _retry_delay(attempt: int) -> float:
    base = 0.05 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a store operation, retrying transient failures with backoff.

    ``func`` must be safe to re-run from scratch (it owns its own transaction).
    When retries are exhausted the failure surfaces as StoreTimeoutException or
    StoreUnavailableException; domain errors propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return func()
        except (OperationalError, PoolTimeoutError, RepositoryException) as exc:
            kind = classify_store_error(exc)
            if kind is None:
                raise
            if attempt >= max_attempts:
                logger.error(
                    "%s failed after %s attempts: %s",
                    op_name,
                    attempt,
                    _root_cause(exc),
                )
                if kind == "timeout":
                    raise StoreTimeoutException(op_name, exc) from exc
                raise StoreUnavailableException(op_name, exc) from exc

            delay = _retry_delay(attempt)
            logger.warning(
                "%s hit transient store error (%s); retrying in %.2fs (attempt %s/%s)",
                op_name,
                kind,
                delay,
                attempt + 1,
                max_attempts,
            )
            sleep(delay)
            attempt += 1
