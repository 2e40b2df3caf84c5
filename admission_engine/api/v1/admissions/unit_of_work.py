"""
Transaction runner for workflow operations.

Every operation runs as one unit of work: all writes commit together or the
session is rolled back. The caller's deadline covers the operation and its
commit. Storage conflicts (stale version, serialization failure, deadlock, lock
timeout, SQLite busy) are retried a bounded number of times; the operation is
re-run from the top, so preconditions are re-checked against fresh rows.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from admission_engine.core.exceptions import DependencyFailure, IdentityConflict
from admission_engine.core.logging import get_logger
from admission_engine.integrations.notifications import NotificationDispatcher

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, IdentityConflict)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in RETRYABLE_SQLSTATES:
            return True
        return "database is locked" in str(orig)
    return False


async def _execute_and_commit(db: AsyncSession, operation: Callable[[], Awaitable[T]]) -> T:
    result = await operation()
    await db.commit()
    return result


async def run_unit_of_work(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int,
    timeout: Optional[float],
) -> T:
    """
    Run operation and commit. Rolls back on any error.

    Raises DependencyFailure("deadline") on timeout, DependencyFailure("store") when
    storage conflicts persist past the retry budget. IdentityConflict is retried,
    then re-raised as is.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(_execute_and_commit(db, operation), timeout)
        except asyncio.TimeoutError:
            await db.rollback()
            logger.warning("Operation deadline exceeded, rolled back", operation=name, timeout=timeout)
            raise DependencyFailure("deadline", f"{name} did not complete within {timeout} seconds")
        except (StaleDataError, DBAPIError, IdentityConflict) as e:
            await db.rollback()
            if is_retryable(e) and attempt < attempts:
                logger.warning(
                    "Storage conflict, retrying",
                    operation=name,
                    attempt=attempt,
                    error=type(e).__name__,
                )
                continue
            if isinstance(e, IdentityConflict):
                raise
            logger.error("Storage failure", operation=name, attempt=attempt, error=str(e))
            raise DependencyFailure("store") from e
        except Exception:
            await db.rollback()
            raise
    raise DependencyFailure("store")  # attempts < 1


async def notify_best_effort(
    notifier: NotificationDispatcher,
    destination: Optional[str],
    template_kind: str,
    payload: Dict[str, Any],
) -> bool:
    """Send one notification; failures are logged and swallowed."""
    if not destination:
        return False
    try:
        sent = await notifier.send(destination, template_kind, payload)
    except Exception as e:
        logger.warning("Notification failed", template_kind=template_kind, error=str(e))
        return False
    if not sent:
        logger.warning("Notification not accepted", template_kind=template_kind)
    return bool(sent)
