"""
Probe deadline budgeting.

Prometheus announces its scrape timeout in the X-Prometheus-Scrape-Timeout-Seconds
header. The probe subtracts a safety margin from it, turns the result into an
absolute deadline and threads that deadline through every outbound call.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional, TypeVar

import structlog

from azure_monitor_probe.shared.core.exceptions import DeadlineExceededError

logger = structlog.get_logger()

T = TypeVar("T")

SCRAPE_TIMEOUT_HEADER = "X-Prometheus-Scrape-Timeout-Seconds"
DEFAULT_TIMEOUT_SECONDS = 10.0
TIMEOUT_OFFSET_SECONDS = 0.5
MIN_TIMEOUT_SECONDS = 0.1


def compute_probe_timeout(
    header_value: Optional[str],
    default_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    offset_seconds: float = TIMEOUT_OFFSET_SECONDS,
    min_seconds: float = MIN_TIMEOUT_SECONDS,
) -> float:
    """
    Effective probe budget in seconds.

    Unparseable or non-positive header values fall back to default_seconds.
    The result is never below min_seconds.
    """
    timeout = 0.0
    if header_value:
        try:
            timeout = float(header_value.strip())
        except ValueError:
            logger.warning(
                "scrape_timeout_header_invalid",
                header=SCRAPE_TIMEOUT_HEADER,
                value=header_value,
                default_seconds=default_seconds,
            )
            timeout = 0.0
        if timeout != timeout:  # NaN
            timeout = 0.0

    if timeout <= 0:
        timeout = default_seconds

    return max(timeout - offset_seconds, min_seconds)


@dataclass(frozen=True)
class Deadline:
    """Absolute instant (monotonic clock) by which a probe must finish."""

    expires_at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(expires_at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        return max(self.expires_at - self.clock(), 0.0)

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    async def run(self, awaitable: Awaitable[T], operation: str = "outbound_call") -> T:
        """
        Await awaitable, cancelling it when the deadline passes.

        Expiry surfaces as DeadlineExceededError, an ExternalAPIError, so callers
        handle it on the same path as any other upstream failure.
        """
        remaining = self.remaining()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DeadlineExceededError(
                f"{operation}: probe deadline exceeded before the call started",
                details={"operation": operation},
            )

        start_time = time.perf_counter()
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as exc:
            execution_time = time.perf_counter() - start_time
            logger.warning(
                "operation_timed_out",
                operation=operation,
                execution_time_seconds=round(execution_time, 3),
                timeout_seconds=round(remaining, 3),
            )
            raise DeadlineExceededError(
                f"{operation}: probe deadline exceeded after {execution_time:.3f}s",
                details={
                    "operation": operation,
                    "timeout_seconds": round(remaining, 3),
                },
            ) from exc
