"""
Error Handling
==============

Exception hierarchy and circuit breaker used across the dispatch engine.

Backend and tokenizer failures are recovered locally and never reach the
HTTP layer; only request-shape violations and unexpected exceptions do.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class KaiwaError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(KaiwaError):
    """Settings could not be loaded or are invalid."""


class RequestValidationError(KaiwaError):
    """Inbound request is malformed (maps to HTTP 400)."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class TokenizerUnavailableError(KaiwaError):
    """Morphological analyzer failed to build."""


class BackendError(KaiwaError):
    """A knowledge backend returned an unusable response."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class BackendTimeoutError(BackendError):
    """A knowledge backend did not answer within its timeout."""


class CircuitOpenError(BackendError):
    """Calls are being rejected because the backend's circuit is open."""


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker guarding a single knowledge backend.

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls are rejected with ``CircuitOpenError`` until ``recovery_timeout``
    seconds have passed; the next call is then let through as a trial.
    """

    def __init__(self, name: str, failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None

        self.total_requests = 0
        self.total_failures = 0
        self.total_rejections = 0

    def allow_request(self) -> bool:
        """Check whether a call may go through, moving OPEN -> HALF_OPEN when due."""
        if self.state != CircuitState.OPEN:
            return True
        if self.last_failure_time is None or \
                self._clock() - self.last_failure_time >= self.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit {self.name} half-open, probing backend")
            return True
        return False

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute a coroutine function with circuit breaker protection."""
        self.total_requests += 1
        if not self.allow_request():
            self.total_rejections += 1
            raise CircuitOpenError(self.name, "circuit is open")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name} closed")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self):
        self.total_failures += 1
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit {self.name} opened after {self.failure_count} consecutive failures"
                )
            self.state = CircuitState.OPEN

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "failure_rate": self.total_failures / max(self.total_requests, 1),
        }


__all__ = [
    "KaiwaError", "ConfigurationError", "RequestValidationError",
    "TokenizerUnavailableError", "BackendError", "BackendTimeoutError",
    "CircuitOpenError", "CircuitState", "CircuitBreaker",
]
