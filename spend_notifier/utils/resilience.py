"""Spend Notifier — Resilience Utilities.

Bounded retry with deterministic exponential backoff, plus the fault
classifier that decides which failures are worth another attempt.

Fault categories:
  THROTTLED     rate limiting / HTTP 429            → retried
  SERVER        5xx-equivalent service faults       → retried
  NETWORK       connection resets and timeouts      → retried
  PUSH_CHANNEL  credential/endpoint/token failures  → not retried
  VALIDATION    bad input                           → not retried
  FATAL         everything else                     → not retried

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0)
    message_id = await execute_with_retry(lambda: dest.publish(req), policy)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from spend_notifier.utils.errors import (
    ConfigurationError,
    NotificationError,
    PushNotificationError,
    TransportError,
    ValidationError,
)
from spend_notifier.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class FaultCategory(str, Enum):
    """Closed set of failure categories produced by classify_error()."""

    THROTTLED = "throttled"
    SERVER = "server"
    NETWORK = "network"
    PUSH_CHANNEL = "push_channel"
    VALIDATION = "validation"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({
    FaultCategory.THROTTLED,
    FaultCategory.SERVER,
    FaultCategory.NETWORK,
})

# ── Structured error codes ───────────────────────────────
THROTTLING_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
})
SERVER_CODES = frozenset({
    "InternalError",
    "InternalFailure",
    "InternalServerError",
    "InternalServerErrorException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "KMSThrottlingException",
})
NETWORK_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "TimeoutError",
    "NetworkingError",
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
})
PUSH_CHANNEL_CODES = frozenset({
    "EndpointDisabled",
    "EndpointDisabledException",
    "PlatformApplicationDisabled",
    "PlatformApplicationDisabledException",
    "InvalidToken",
    "BadDeviceToken",
    "Unregistered",
    "ExpiredProviderToken",
    "InvalidProviderToken",
})

# Best-effort heuristic for the push gateway's opaque errors, which do not
# always carry a structured code. Fragile by nature: a gateway that rewords
# its messages defeats it.
PUSH_MESSAGE_INDICATORS = (
    "apns",
    "platform endpoint",
    "platform application",
    "invalid token",
    "endpoint disabled",
    "endpoint is disabled",
    "certificate",
    "push notification",
    "device token",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration value object.

    Attributes:
        max_attempts: Total attempts including the first (>= 1).
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        backoff_multiplier: Growth factor between consecutive delays (>= 1).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be >= 1, got {self.max_attempts}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return min(
            self.base_delay * (self.backoff_multiplier ** (attempt - 1)),
            self.max_delay,
        )


def _error_code(error: BaseException) -> Optional[str]:
    if isinstance(error, TransportError):
        return error.error_code
    for attr in ("error_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def matches_push_indicator(error: BaseException) -> bool:
    """Substring heuristic over the error text for push-gateway failures."""
    text = f"{type(error).__name__} {error}".lower()
    code = (_error_code(error) or "").lower()
    return any(ind in text or ind in code for ind in PUSH_MESSAGE_INDICATORS)


def classify_error(error: BaseException) -> FaultCategory:
    """Map an exception to a FaultCategory.

    Structured information wins: our own error types, then the service
    error code, then the HTTP status, then builtin network exception
    types. Only when none of those decide does the push heuristic run.

    Args:
        error: The exception raised by an operation.

    Returns:
        The fault category.
    """
    if isinstance(error, (ValidationError, ConfigurationError)):
        return FaultCategory.VALIDATION
    if isinstance(error, PushNotificationError):
        return FaultCategory.PUSH_CHANNEL

    code = _error_code(error)
    if code in PUSH_CHANNEL_CODES:
        return FaultCategory.PUSH_CHANNEL
    if code in THROTTLING_CODES:
        return FaultCategory.THROTTLED
    if code in SERVER_CODES:
        return FaultCategory.SERVER
    if code in NETWORK_CODES:
        return FaultCategory.NETWORK

    status = _status_code(error)
    if status is not None:
        if status == 429:
            return FaultCategory.THROTTLED
        if status >= 500:
            return FaultCategory.SERVER

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return FaultCategory.NETWORK

    if matches_push_indicator(error):
        return FaultCategory.PUSH_CHANNEL

    if isinstance(error, NotificationError) and error.retryable:
        return FaultCategory.SERVER

    return FaultCategory.FATAL


def is_retryable(error: BaseException) -> bool:
    """Whether the retrier should try again after this error."""
    return classify_error(error).retryable


def is_push_channel_fault(error: BaseException) -> bool:
    """Whether a delivery failure is attributable to the push channel.

    True for PUSH_CHANNEL faults, and for other faults whose text points at
    the push gateway (a 5xx "APNS unavailable" still means push is the
    broken leg).
    """
    return (
        classify_error(error) is FaultCategory.PUSH_CHANNEL
        or matches_push_indicator(error)
    )


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Optional[Callable[[int], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation_name: str = "operation",
) -> T:
    """Run an async operation with bounded exponential-backoff retry.

    Non-retryable errors are re-raised immediately. After the last attempt
    the final error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory.
        policy: Attempt and delay limits.
        on_retry: Called with the failed attempt number before each backoff.
        sleep: Awaitable delay function (injectable for tests).
        operation_name: Label used in log messages.

    Returns:
        The operation's result.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation()
        except Exception as e:
            category = classify_error(e)
            if not category.retryable:
                logger.warning(
                    "%s failed with non-retryable %s fault on attempt %d: %s",
                    operation_name, category.value, attempt, e,
                )
                raise
            if attempt == policy.max_attempts:
                logger.warning(
                    "Retry exhausted for %s after %d attempts: %s",
                    operation_name, policy.max_attempts, e,
                )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "Retry %d/%d for %s in %.1fs (%s): %s",
                attempt, policy.max_attempts, operation_name, delay,
                category.value, e,
            )
            if on_retry is not None:
                on_retry(attempt)
            await sleep(delay)
        else:
            if attempt > 1:
                logger.info(
                    "%s succeeded on attempt %d", operation_name, attempt,
                )
            return result
    raise AssertionError("unreachable")  # pragma: no cover
