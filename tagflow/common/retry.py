"""Bounded retry with exponential backoff for registry and network operations."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from .command_runner import CommandResult

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed attempt count with a delay that doubles after every failed attempt.

    With the defaults a failing operation is attempted 3 times, sleeping 5s and
    then 10s in between.
    """

    max_attempts: int = 3
    base_delay: float = 5.0
    multiplier: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * (self.multiplier ** (attempt - 1))

    def call(
        self,
        operation: Callable[[], T],
        *,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        description: str = "operation",
        logger: Optional[logging.Logger] = None,
    ) -> T:
        """Run an operation that signals failure by raising; re-raise the last error."""
        log = logger or logging.getLogger(__name__)
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except retry_on as exc:
                retryable = should_retry(exc) if should_retry else True
                if not retryable or attempt == self.max_attempts:
                    if retryable:
                        log.error("%s failed after %d attempts: %s", description, attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                log.warning(
                    "%s failed on attempt %d/%d (%s), retrying in %.0fs...",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    def run_command(
        self,
        operation: Callable[[], CommandResult],
        *,
        description: str = "command",
        logger: Optional[logging.Logger] = None,
    ) -> CommandResult:
        """Run a command-producing operation until it succeeds or attempts run out.

        A missing tool is never retried. The last result is always returned.
        """
        log = logger or logging.getLogger(__name__)
        result = operation()
        attempt = 1
        while not result.succeeded() and result.tool_available and attempt < self.max_attempts:
            delay = self.delay_for(attempt)
            reason = "timed out" if result.timed_out else result.error_output()[:200]
            log.warning(
                "%s failed on attempt %d/%d (%s), retrying in %.0fs...",
                description,
                attempt,
                self.max_attempts,
                reason,
                delay,
            )
            self.sleep(delay)
            attempt += 1
            result = operation()

        if not result.succeeded() and result.tool_available and self.max_attempts > 1:
            log.error("%s failed after %d attempts", description, attempt)
        return result
