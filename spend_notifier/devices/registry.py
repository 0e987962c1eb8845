"""Spend Notifier — Device Registry.

Owns the lifecycle of mobile push registrations:

    Unregistered → Active → (Rotated → Active) → Disabled

Every write to the device store goes through this class. Gateway calls
are retried with the shared RetryPolicy; invalid tokens are rejected
before any gateway or store access.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

from spend_notifier.devices.gateway import PushGateway, is_valid_device_token
from spend_notifier.devices.store import DeviceStore
from spend_notifier.models import DeviceRegistration, EndpointCensus, utcnow
from spend_notifier.utils.errors import DeviceNotFoundError, ValidationError
from spend_notifier.utils.logger import get_logger, token_preview
from spend_notifier.utils.resilience import RetryPolicy, execute_with_retry

logger = get_logger(__name__)


def _require_valid_token(token: str) -> None:
    if not is_valid_device_token(token):
        raise ValidationError(
            "Invalid device token format (must be 64-character hex string)",
            context={"token_preview": token_preview(token or "")},
        )


class DeviceRegistry:
    """Registers, rotates and invalidates push endpoints.

    Attributes:
        gateway: Push platform gateway.
        store: Persistent device-token store.
        policy: Retry policy for gateway calls.
    """

    def __init__(
        self,
        gateway: PushGateway,
        store: DeviceStore,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def _call(self, name: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await execute_with_retry(
            operation, self.policy, sleep=self._sleep, operation_name=name,
        )

    # ═══════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════

    async def register(
        self, token: str, user_id: Optional[str] = None,
    ) -> DeviceRegistration:
        """Register a device token, or refresh an existing active one.

        Registering an already active token never creates a second
        endpoint; the stored record is updated instead. A disabled token
        gets a fresh endpoint.

        Args:
            token: 64-character hex device token.
            user_id: Optional owner identifier.

        Returns:
            The stored registration.

        Raises:
            ValidationError: If the token format is invalid.
        """
        _require_valid_token(token)
        now = self._clock()

        existing = await self.store.get(token)
        if existing is not None and existing.active:
            updated = replace(
                existing,
                user_id=user_id or existing.user_id,
                last_updated=now,
            )
            await self.store.upsert(updated)
            logger.info(
                "Device %s already registered, refreshed record",
                token_preview(token),
            )
            return updated

        user_data = (
            json.dumps({"userId": user_id, "registrationDate": now.isoformat()})
            if user_id else None
        )
        endpoint_arn = await self._call(
            "create endpoint",
            lambda: self.gateway.create_endpoint(token, user_data),
        )

        registration = DeviceRegistration(
            device_token=token,
            platform_endpoint_arn=endpoint_arn,
            user_id=user_id,
            registration_date=now,
            last_updated=now,
            active=True,
        )
        await self.store.upsert(registration)
        logger.info(
            "Registered device %s → %s", token_preview(token), endpoint_arn,
        )
        return registration

    async def update_token(
        self, endpoint_arn: str, new_token: str,
    ) -> DeviceRegistration:
        """Rotate the token behind an existing endpoint.

        The endpoint handle, user id and registration date are kept; the
        stored record moves to the new token key. If another endpoint
        already holds new_token, that endpoint is deleted at the gateway
        first and its record is replaced.

        Raises:
            ValidationError: If new_token is malformed.
            DeviceNotFoundError: If no registration uses endpoint_arn.
            TransportError: If the stale endpoint cannot be deleted; nothing
                is changed in that case.
        """
        _require_valid_token(new_token)

        existing = await self.store.get_by_endpoint(endpoint_arn)
        if existing is None:
            raise DeviceNotFoundError(
                f"No registration for endpoint {endpoint_arn}",
                context={"endpoint_arn": endpoint_arn},
            )

        holder = await self.store.get(new_token)
        if holder is not None and holder.platform_endpoint_arn != endpoint_arn:
            # Another endpoint still claims this token, so it is stale.
            await self._call(
                "delete endpoint",
                lambda: self.gateway.delete_endpoint(holder.platform_endpoint_arn),
            )
            logger.info(
                "Retired endpoint %s previously holding token %s",
                holder.platform_endpoint_arn, token_preview(new_token),
            )

        await self._call(
            "update endpoint",
            lambda: self.gateway.set_endpoint_attributes(
                endpoint_arn, {"Token": new_token, "Enabled": "true"},
            ),
        )

        rotated = replace(
            existing,
            device_token=new_token,
            last_updated=self._clock(),
            active=True,
        )
        await self.store.replace_token(existing.device_token, rotated)
        logger.info(
            "Rotated token %s → %s on %s",
            token_preview(existing.device_token), token_preview(new_token),
            endpoint_arn,
        )
        return rotated

    async def remove_invalid(self, endpoint_arns: Sequence[str]) -> list[str]:
        """Delete endpoints confirmed invalid and disable their records.

        Each handle is processed independently; a failed deletion is
        logged and the batch continues.

        Args:
            endpoint_arns: Handles reported invalid.

        Returns:
            Successfully deleted handles, in input order.
        """
        removed: list[str] = []

        for arn in endpoint_arns:
            try:
                await self._call(
                    "delete endpoint",
                    lambda arn=arn: self.gateway.delete_endpoint(arn),
                )
            except Exception as e:
                logger.error("Failed to delete endpoint %s: %s", arn, e)
                continue

            removed.append(arn)
            try:
                await self.store.mark_disabled(arn, self._clock().isoformat())
            except Exception as e:
                logger.error(
                    "Endpoint %s deleted but store update failed: %s", arn, e,
                )

        if removed:
            logger.info(
                "Removed %d/%d invalid endpoints", len(removed), len(endpoint_arns),
            )
        return removed

    async def unregister(self, token: str) -> None:
        """Delete a device's endpoint and its stored record.

        Raises:
            ValidationError: If the token format is invalid.
            DeviceNotFoundError: If the token is not registered.
        """
        _require_valid_token(token)
        existing = await self.store.get(token)
        if existing is None:
            raise DeviceNotFoundError(
                "Device not found",
                context={"token_preview": token_preview(token)},
            )

        await self._call(
            "delete endpoint",
            lambda: self.gateway.delete_endpoint(existing.platform_endpoint_arn),
        )
        await self.store.delete(token)
        logger.info("Unregistered device %s", token_preview(token))

    # ═══════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════

    async def validate_gateway_health(self) -> bool:
        """Check the platform application is reachable and enabled.

        Never raises: transport errors are logged and reported as False.
        """
        try:
            attributes = await self.gateway.get_application_attributes()
        except Exception as e:
            logger.warning("Push platform health check failed: %s", e)
            return False

        if attributes.get("Enabled") != "true":
            logger.warning(
                "Push platform application is disabled (Enabled=%s)",
                attributes.get("Enabled"),
            )
            return False
        return True

    async def get(self, token: str) -> Optional[DeviceRegistration]:
        return await self.store.get(token)

    async def list_devices(
        self, user_id: str, limit: int = 10,
    ) -> list[DeviceRegistration]:
        return await self.store.list_by_user(user_id, limit)

    async def census(self) -> EndpointCensus:
        """Count registrations by state."""
        active, disabled = await self.store.count_by_status()
        return EndpointCensus(active=active, invalid=disabled)
