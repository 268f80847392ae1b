from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from typing import TypeVar


logger = logging.getLogger(__name__)
T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """Retries a call with a delay growing by ``backoff_seconds`` per attempt."""

    max_retries: int
    backoff_seconds: float
    sleep: Callable[[float], None] = time.sleep

    def delays(self) -> list[float]:
        return [self.backoff_seconds * attempt for attempt in range(1, self.max_retries + 1)]

    def call(self, fn: Callable[[], T], *, should_retry: Callable[[Exception], bool] | None = None) -> T:
        pending_delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except Exception as exc:
                gives_up = not pending_delays or (should_retry is not None and not should_retry(exc))
                logger.warning(
                    "delivery attempt failed",
                    extra={"attempt": attempt, "error": str(exc), "giving_up": gives_up},
                )
                if gives_up:
                    raise RetryExhaustedError(f"gave up after {attempt} attempt(s): {exc}") from exc
                self.sleep(pending_delays.pop(0))
