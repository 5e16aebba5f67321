"""capped exponential retry, independent of any client library"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(RuntimeError):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Giving up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts tries in total; the wait before attempt n+1 is
    base_delay * 2**(n-1), capped at max_delay.
    """
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def run(
        self,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        label: str = "operation",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Attempting {label} (Attempt {attempt}/{self.max_attempts})...")
            try:
                return func()
            except retry_on as e:
                logger.error(f"{label} failed (Attempt {attempt}/{self.max_attempts}): {e}")
                if attempt >= self.max_attempts:
                    raise RetryExhausted(attempt, e) from e
                delay = self.delay_for(attempt)
                if on_retry:
                    on_retry(attempt, e)
                logger.info(f"Retrying {label} in {delay:.1f} seconds...")
                sleep(delay)
        raise AssertionError("unreachable")
