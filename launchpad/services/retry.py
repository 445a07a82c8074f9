from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int,
    delay_seconds: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Call `fn` until it succeeds, at most `attempts` times, sleeping a fixed `delay_seconds`
    between tries. Exceptions outside `retry_on`, or rejected by `retry_if`, propagate immediately.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    last_error: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if retry_if is not None and not retry_if(exc):
                logger.warning(
                    "Attempt failed with a non-retryable error",
                    extra={"operation": description, "attempt": attempt, "error": str(exc)},
                )
                raise
            last_error = exc
            logger.warning(
                "Attempt failed",
                extra={"operation": description, "attempt": attempt, "max_attempts": attempts, "error": str(exc)},
            )
            if attempt < attempts and delay_seconds > 0:
                sleep(delay_seconds)
    assert last_error is not None
    raise RetryExhaustedError(attempts, last_error) from last_error
