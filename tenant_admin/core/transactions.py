"""Transaction runner for service operations.

Every mutating service call goes through ``run_in_transaction`` so that the
primary write and all of its cascades commit or roll back together.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_admin.core.config import settings
from tenant_admin.core.errors import ErrorKind, TenantAdminError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _is_sqlite(db: Session) -> bool:
    return db.get_bind().dialect.name == "sqlite"


def _is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


def _begin_serializable(db: Session) -> None:
    """
    Open the next transaction at SERIALIZABLE.

    The isolation level can only be set before the first statement, so a
    read transaction left open by request setup (actor lookup) is committed
    first. Pending writes are never committed implicitly.
    """
    if db.new or db.dirty or db.deleted:
        raise TenantAdminError(
            ErrorKind.INTERNAL, "Serializable work requires a session without pending writes"
        )
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={"isolation_level": "SERIALIZABLE"})


def run_in_transaction(
    db: Session,
    work: Callable[[Session], T],
    *,
    serializable: bool = False,
) -> T:
    """
    Run ``work(db)`` in one transaction and commit.

    Any exception rolls the transaction back. TenantAdminError propagates
    unchanged; other SQLAlchemy failures become INTERNAL errors chained to the
    driver exception.

    With ``serializable=True`` the transaction runs at SERIALIZABLE isolation
    on PostgreSQL and is retried on serialization failures and deadlocks.
    SQLite already serializes writers through BEGIN IMMEDIATE (see db.session).
    """
    attempts = settings.SERIALIZABLE_RETRIES + 1 if serializable else 1

    for attempt in range(1, attempts + 1):
        try:
            if serializable and not _is_sqlite(db):
                _begin_serializable(db)
            result = work(db)
            db.commit()
            return result
        except TenantAdminError:
            db.rollback()
            raise
        except DBAPIError as exc:
            db.rollback()
            if serializable and _is_retryable(exc) and attempt < attempts:
                logger.warning(
                    "Serialization failure or deadlock, retrying (attempt %d of %d)",
                    attempt,
                    attempts,
                )
                continue
            logger.exception("Database error in transaction")
            raise TenantAdminError(ErrorKind.INTERNAL) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Database error in transaction")
            raise TenantAdminError(ErrorKind.INTERNAL) from exc
        except Exception:
            db.rollback()
            raise

    # Unreachable: the loop either returns or raises.
    raise TenantAdminError(ErrorKind.INTERNAL)
