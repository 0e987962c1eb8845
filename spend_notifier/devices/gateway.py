"""Spend Notifier — Push Gateway Interfaces.

Protocols for the push platform gateway (one platform application with
many device endpoints) and for the feedback source that reports dead
endpoints. GatewayFeedbackSource derives feedback from the gateway
itself by inspecting every endpoint's attributes.

Attribute maps use the gateway's string conventions, e.g.
``{"Enabled": "true", "Token": "<64 hex>"}``.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

from spend_notifier.utils.errors import FeedbackScanError
from spend_notifier.utils.logger import get_logger, token_preview
from spend_notifier.utils.resilience import classify_error

logger = get_logger(__name__)

DEVICE_TOKEN_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def is_valid_device_token(token: Optional[str]) -> bool:
    """APNS device tokens are exactly 64 hexadecimal characters."""
    if not isinstance(token, str):
        return False
    return DEVICE_TOKEN_PATTERN.match(token) is not None


class PushGateway(Protocol):
    """Push platform gateway bound to one platform application.

    Methods raise on transport failure (see TransportError).
    """

    async def create_endpoint(
        self, token: str, user_data: Optional[str] = None,
    ) -> str:
        """Create (or return the existing) endpoint for a token."""
        ...

    async def delete_endpoint(self, endpoint_arn: str) -> None:
        ...

    async def get_endpoint_attributes(self, endpoint_arn: str) -> dict[str, str]:
        ...

    async def set_endpoint_attributes(
        self, endpoint_arn: str, attributes: dict[str, str],
    ) -> None:
        ...

    async def get_application_attributes(self) -> dict[str, str]:
        """Attributes of the platform application (Enabled, certificate dates...)."""
        ...

    async def list_endpoints(self) -> list[str]:
        """All endpoint handles under the platform application."""
        ...


class FeedbackSource(Protocol):
    """Reports endpoint handles the platform has flagged as invalid.

    May raise FeedbackScanError when only part of the endpoints could be
    checked; the error carries the handles confirmed so far.
    """

    async def invalid_endpoints(self) -> list[str]:
        ...


class GatewayFeedbackSource:
    """Feedback derived from gateway endpoint attributes.

    An endpoint is reported invalid when it is disabled, has no valid
    token, or the gateway rejects the attribute read outright (e.g. the
    endpoint no longer exists). Transient read failures leave the
    endpoint unconfirmed: the scan finishes, then raises
    FeedbackScanError carrying the confirmed handles and one error per
    skipped endpoint. Listing failures propagate to the caller.
    """

    def __init__(self, gateway: PushGateway) -> None:
        self.gateway = gateway

    async def invalid_endpoints(self) -> list[str]:
        handles = await self.gateway.list_endpoints()
        invalid: list[str] = []
        unchecked: list[str] = []

        for handle in handles:
            try:
                attributes = await self.gateway.get_endpoint_attributes(handle)
            except Exception as e:
                if classify_error(e).retryable:
                    logger.warning("Cannot read endpoint %s, skipping: %s", handle, e)
                    unchecked.append(f"Could not check endpoint {handle}: {e}")
                    continue
                logger.warning("Cannot read endpoint %s, reporting invalid: %s", handle, e)
                invalid.append(handle)
                continue

            token = attributes.get("Token")
            enabled = attributes.get("Enabled") == "true"
            if not enabled or not is_valid_device_token(token):
                logger.info(
                    "Invalid endpoint %s (enabled=%s, token=%s)",
                    handle, enabled, token_preview(token or ""),
                )
                invalid.append(handle)

        logger.info(
            "Feedback scan: %d/%d endpoints invalid", len(invalid), len(handles),
        )
        if unchecked:
            raise FeedbackScanError(
                f"{len(unchecked)} of {len(handles)} endpoints could not be checked",
                invalid=invalid,
                errors=unchecked,
            )
        return invalid
