"""Spend Notifier — Error Taxonomy.

Every error raised by the package derives from SpendNotifierError and
carries a stable `code`, a `retryable` flag and an optional context dict.

  ConfigurationError     bad settings, non-positive threshold
  ValidationError        bad token format, malformed address, no breach
  NotificationError      generic delivery failure
  PushNotificationError  push-channel (credential/endpoint/token) failure
  AlertDeliveryError     dispatch failed on both primary and fallback paths
  DeviceNotFoundError    no registration for a token or endpoint
  TransportError         raised by collaborator adapters with code/status
  FeedbackScanError      feedback scan left endpoints unchecked
"""

from __future__ import annotations

from typing import Any, Optional


class SpendNotifierError(Exception):
    """Base class for all spend notifier errors."""

    code = "SPEND_NOTIFIER_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and API responses."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": str(self),
            "retryable": self.retryable,
            "context": self.context,
        }


class ConfigurationError(SpendNotifierError):
    """Invalid or missing configuration."""

    code = "CONFIGURATION_ERROR"


class ValidationError(SpendNotifierError):
    """Input failed validation; never retried."""

    code = "VALIDATION_ERROR"


class NotificationError(SpendNotifierError):
    """Delivery through the publish destination failed."""

    code = "NOTIFICATION_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.retryable = retryable


class PushNotificationError(NotificationError):
    """Push-channel failure (credential, certificate, endpoint or token)."""

    code = "PUSH_NOTIFICATION_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, retryable=False, context=context)


class AlertDeliveryError(NotificationError):
    """Both the primary and the fallback publish failed.

    Attributes:
        outcome: The DeliveryOutcome describing the failed dispatch.
    """

    code = "ALERT_DELIVERY_ERROR"

    def __init__(
        self,
        message: str,
        outcome: Any = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, retryable=False, context=context)
        self.outcome = outcome


class DeviceNotFoundError(SpendNotifierError):
    """No registration exists for the requested token or endpoint."""

    code = "DEVICE_NOT_FOUND"


class TransportError(SpendNotifierError):
    """Failure reported by an external collaborator.

    Adapters for the publish destination and push gateway raise this with
    the service's error code and HTTP status so the retry classifier can
    work from structured data.

    Attributes:
        error_code: Service error code (e.g. "ThrottlingException").
        status_code: HTTP status, if known.
    """

    code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.error_code = error_code
        self.status_code = status_code


class FeedbackScanError(SpendNotifierError):
    """A feedback scan could not check every endpoint.

    Attributes:
        invalid: Handles confirmed invalid before the scan gave up on others.
        errors: One message per endpoint that could not be checked.
    """

    code = "FEEDBACK_SCAN_ERROR"

    def __init__(
        self,
        message: str,
        invalid: Optional[list[str]] = None,
        errors: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.invalid = invalid or []
        self.errors = errors or []
