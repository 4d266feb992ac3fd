import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as LookupTimeout
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.retry import is_network_error, retry_with_backoff
from app.core.timezone import DEFAULT_TIMEZONE, is_known_timezone, validate_timezone_format
from app.db.models import User

logger = logging.getLogger("uvicorn.error")

TIMEZONE_LOOKUP_TIMEOUT_SECONDS = float(os.getenv("TIMEZONE_LOOKUP_TIMEOUT_SECONDS", "2"))
TIMEZONE_LOOKUP_ATTEMPTS = int(os.getenv("TIMEZONE_LOOKUP_ATTEMPTS", "3"))
TIMEZONE_LOOKUP_RETRY_DELAY_SECONDS = 0.05
TIMEZONE_LOOKUP_RETRY_MAX_DELAY_SECONDS = 0.5

_lookup_pool: Optional[ThreadPoolExecutor] = None


class InvalidTimezoneError(ValueError):
    def __init__(self, value: object):
        super().__init__("Invalid timezone format")
        self.value = value


def _get_lookup_pool() -> ThreadPoolExecutor:
    global _lookup_pool
    if _lookup_pool is None:
        _lookup_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="tz-lookup")
    return _lookup_pool


def shutdown_lookup_pool() -> None:
    """Release the lookup workers. A later timed lookup starts a fresh pool."""
    global _lookup_pool
    if _lookup_pool is None:
        return
    _lookup_pool.shutdown(wait=False)
    _lookup_pool = None
    logger.info("timezone_lookup_pool_stopped")


def fetch_timezone_preference(db: Session, user_id: int) -> Optional[str]:
    """Stored timezone for the user; raises on database errors."""
    return db.execute(select(User.timezone).where(User.id == user_id)).scalar_one_or_none()


def _is_transient_lookup_error(exc: Exception) -> bool:
    # A missing column or table will not fix itself; a busy database might.
    message = str(exc).lower()
    return "database is locked" in message or "database is busy" in message or is_network_error(exc)


def _fetch_with_retry(db: Session, user_id: int) -> Optional[str]:
    def _log_retry(attempt: int, exc: Exception) -> None:
        logger.warning("timezone_lookup_retry user_id=%s attempt=%s detail=%s", user_id, attempt, str(exc)[:220])

    return retry_with_backoff(
        lambda: fetch_timezone_preference(db, user_id),
        max_attempts=TIMEZONE_LOOKUP_ATTEMPTS,
        initial_delay=TIMEZONE_LOOKUP_RETRY_DELAY_SECONDS,
        max_delay=TIMEZONE_LOOKUP_RETRY_MAX_DELAY_SECONDS,
        on_retry=_log_retry,
        retry_on=(OperationalError,),
        should_retry=_is_transient_lookup_error,
    )


def _fetch_in_own_session(db: Session, user_id: int) -> Optional[str]:
    # Sessions are not thread-safe, so the worker opens its own on the same engine.
    with Session(bind=db.get_bind()) as worker_db:
        return _fetch_with_retry(worker_db, user_id)


def resolve_user_timezone(db: Session, user_id: int, timeout_seconds: Optional[float] = None) -> str:
    """Effective timezone for the user. Never raises.

    Unset, malformed or unknown preferences, database errors (including a
    missing ``timezone`` column on older databases) and lookups slower than
    ``timeout_seconds`` all resolve to ``DEFAULT_TIMEZONE``. A locked
    database is retried a few times first; the timeout covers the retries.
    """
    try:
        if timeout_seconds is None:
            stored = _fetch_with_retry(db, user_id)
        else:
            future = _get_lookup_pool().submit(_fetch_in_own_session, db, user_id)
            stored = future.result(timeout=timeout_seconds)
    except LookupTimeout:
        logger.warning("timezone_lookup_timeout user_id=%s timeout=%s", user_id, timeout_seconds)
        return DEFAULT_TIMEZONE
    except SQLAlchemyError as exc:
        logger.warning("timezone_lookup_failed user_id=%s detail=%s", user_id, str(exc)[:220])
        return DEFAULT_TIMEZONE
    except Exception as exc:
        logger.exception("timezone_lookup_error user_id=%s detail=%s", user_id, str(exc))
        return DEFAULT_TIMEZONE

    if not stored:
        return DEFAULT_TIMEZONE
    if not is_known_timezone(stored):
        logger.warning("timezone_stored_unrecognized user_id=%s value=%r", user_id, stored)
        return DEFAULT_TIMEZONE
    return stored


def normalize_timezone_input(timezone_name: object) -> object:
    return timezone_name.strip() if isinstance(timezone_name, str) else timezone_name


def update_user_timezone(db: Session, user: User, timezone_name: object) -> str:
    """Persist an explicit timezone choice.

    Surrounding whitespace is dropped before validation. Malformed input is
    rejected with ``InvalidTimezoneError`` instead of being coerced, so the
    caller can correct it.
    """
    value = normalize_timezone_input(timezone_name)
    if not validate_timezone_format(value):
        raise InvalidTimezoneError(timezone_name)
    user.timezone = value
    db.commit()
    db.refresh(user)
    logger.info("timezone_updated user_id=%s timezone=%s", user.id, value)
    return value
