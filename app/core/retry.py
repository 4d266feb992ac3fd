import logging
import time
from typing import Callable, Optional, TypeVar

import httpx

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` is used up.

    Errors outside ``retry_on``, or rejected by ``should_retry``, propagate
    immediately. The last error is re-raised once attempts run out.
    """
    attempts = max(1, max_attempts)
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, exc)
            if attempt >= attempts:
                raise
            delay = min(initial_delay * (backoff_multiplier ** (attempt - 1)), max_delay)
            logger.info("retry_scheduled attempt=%s delay=%.2f detail=%s", attempt, delay, str(exc)[:220])
            sleep(delay)


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True
    message = str(error).lower()
    return "fetch" in message or "network" in message
