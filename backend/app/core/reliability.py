"""
Reliability utilities.

Circuit breaker guarding the outbound push transport so that a dead
delivery endpoint stops costing a timeout on every notification.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Any, Optional

logger = logging.getLogger("van_tracking.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    After 'failure_threshold' consecutive failures the circuit opens and
    rejects calls for 'reset_timeout' seconds, then lets one trial call
    through (HALF_OPEN). A call slower than 'call_timeout' counts as a failure.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 60,
                 call_timeout: Optional[float] = None):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.call_timeout = call_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.monotonic() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit {self.name} is OPEN")

        try:
            if self.call_timeout is not None:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.call_timeout)
            else:
                result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # Cancelled by an outer timeout: the call still hung
            self.record_failure()
            raise
        except Exception:
            self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.failures >= self.failure_threshold and self.state != "OPEN":
            self.state = "OPEN"
            logger.warning("Circuit opened", extra={"circuit": self.name, "failures": self.failures})

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"
