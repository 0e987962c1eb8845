"""Spend Notifier — Alert Dispatcher.

Publishes one logical spend alert to a multi-protocol topic. The primary
publish carries the long message as the default body plus email, SMS and
(when push is configured) APNS overrides. If the primary publish fails
because of the push channel, a second publish goes out without the push
override so email and SMS still receive the alert.

Every dispatch records delivery metrics exactly once, and push metrics
separately whenever push was attempted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from spend_notifier.config import PushConfig
from spend_notifier.models import (
    AlertContext,
    CostSnapshot,
    DeliveryMetrics,
    DeliveryOutcome,
)
from spend_notifier.notifier.destination import (
    PublishDestination,
    PublishRequest,
    is_valid_topic_arn,
)
from spend_notifier.notifier.formatters import (
    compute_alert_context,
    format_long_message,
    format_push_payload,
    format_short_message,
    format_subject,
    rank_top_services,
)
from spend_notifier.utils.errors import AlertDeliveryError, ValidationError
from spend_notifier.utils.logger import get_logger
from spend_notifier.utils.metrics import MetricsCollector
from spend_notifier.utils.resilience import (
    RetryPolicy,
    execute_with_retry,
    is_push_channel_fault,
)

logger = get_logger(__name__)

PRIMARY_CHANNELS = ("email", "sms")
PUSH_CHANNEL = "push"
MAX_ATTRIBUTE_LENGTH = 256


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one retried publish: a message id or the final error."""

    message_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AlertDispatcher:
    """Formats and publishes spend alerts with push fallback.

    Holds no per-alert state; each dispatch() call is independent.

    Attributes:
        destination: Multi-protocol topic client.
        metrics: Metrics collector.
        policy: Retry policy applied to each publish.
    """

    def __init__(
        self,
        destination: PublishDestination,
        metrics: MetricsCollector,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.destination = destination
        self.metrics = metrics
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def dispatch(
        self,
        snapshot: CostSnapshot,
        context: AlertContext,
        topic_arn: str,
        push_config: Optional[PushConfig] = None,
    ) -> DeliveryOutcome:
        """Deliver one alert to every configured channel.

        Args:
            snapshot: Cost snapshot that triggered the alert.
            context: Breach details.
            topic_arn: Destination topic address.
            push_config: Push settings; push is only attempted when given.

        Returns:
            DeliveryOutcome for the dispatch.

        Raises:
            ValidationError: If topic_arn is malformed.
            AlertDeliveryError: If both primary and fallback publish fail.
            Exception: The original publish error when the failure is not
                attributable to the push channel.
        """
        if not is_valid_topic_arn(topic_arn):
            raise ValidationError(
                f"Invalid topic ARN: {topic_arn!r}",
                context={"topic_arn": topic_arn},
            )

        start = time.monotonic()
        push_attempted = push_config is not None
        channels = PRIMARY_CHANNELS + ((PUSH_CHANNEL,) if push_attempted else ())
        retries = 0

        def count_retry(_attempt: int) -> None:
            nonlocal retries
            retries += 1

        request = self._build_request(snapshot, context, topic_arn, push_config)
        payload_size = request.size
        errors: list[str] = []

        logger.info(
            "Dispatching %s alert: total=%s threshold=%s channels=%s size=%dB",
            context.alert_level.value, snapshot.total_cost, context.threshold,
            ",".join(channels), payload_size,
        )

        primary = await self._publish(request, "primary publish", count_retry)

        if primary.ok:
            outcome = self._outcome(
                True, channels, push_attempted, False, errors,
                start, retries, payload_size, primary.message_id,
            )
            logger.info(
                "Alert delivered via %s (msg=%s, retries=%d)",
                ",".join(channels), primary.message_id, retries,
            )
            await self._record(outcome, push_attempted)
            return outcome

        errors.append(str(primary.error))

        if not (push_attempted and is_push_channel_fault(primary.error)):
            outcome = self._outcome(
                False, channels, False, False, errors,
                start, retries, payload_size,
            )
            logger.error(
                "Alert delivery failed on %s: %s",
                ",".join(channels), primary.error,
            )
            await self._record(outcome, push_attempted)
            raise primary.error

        # ── Fallback: same alert without the push override ──
        logger.warning(
            "Push channel failure, falling back to %s: %s",
            ",".join(PRIMARY_CHANNELS), primary.error,
        )
        fallback_request = self._fallback_request(
            request, push_config, str(primary.error),
        )
        fallback = await self._publish(
            fallback_request, "fallback publish", count_retry,
        )

        if fallback.ok:
            outcome = self._outcome(
                True, PRIMARY_CHANNELS, False, True, errors,
                start, retries, payload_size, fallback.message_id,
            )
            logger.info(
                "Fallback alert delivered via %s (msg=%s, retries=%d)",
                ",".join(PRIMARY_CHANNELS), fallback.message_id, retries,
            )
            await self._record(outcome, push_attempted)
            return outcome

        errors.append(f"Fallback failed: {fallback.error}")
        outcome = self._outcome(
            False, channels, False, True, errors,
            start, retries, payload_size,
        )
        logger.error(
            "Alert delivery failed on primary and fallback paths: %s",
            "; ".join(errors),
        )
        await self._record(outcome, push_attempted)
        raise AlertDeliveryError(
            f"Alert delivery failed: {'; '.join(errors)}",
            outcome=outcome,
            context={"topic_arn": topic_arn, "channels": list(channels)},
        ) from fallback.error

    async def send_test_alert(
        self,
        topic_arn: str,
        push_config: Optional[PushConfig] = None,
    ) -> DeliveryOutcome:
        """Dispatch a fixed sample alert to verify channel wiring.

        The sample is $15.50 spent against a $10.00 threshold, driven by
        EC2, S3 and Lambda.
        """
        now = datetime.now(timezone.utc)
        snapshot = CostSnapshot(
            total_cost=Decimal("15.50"),
            service_breakdown={
                "Amazon Elastic Compute Cloud - Compute": Decimal("10.00"),
                "Amazon Simple Storage Service": Decimal("3.50"),
                "AWS Lambda": Decimal("2.00"),
            },
            period_start=now - timedelta(days=15),
            period_end=now,
            projected_monthly=Decimal("31.00"),
            currency="USD",
            last_updated=now,
        )
        context = compute_alert_context(
            snapshot, Decimal("10.00"), rank_top_services(snapshot),
        )
        logger.info("Sending test alert to %s", topic_arn)
        return await self.dispatch(snapshot, context, topic_arn, push_config)

    def validate_channels(self, topic_arn: str) -> dict[str, bool]:
        """Report which channels the topic address can serve.

        Only the address shape is checked; subscriptions are not queried.
        """
        valid = is_valid_topic_arn(topic_arn)
        return {"email": valid, "sms": valid, "push": valid}

    # ── Internals ─────────────────────────────────────────

    def _build_request(
        self,
        snapshot: CostSnapshot,
        context: AlertContext,
        topic_arn: str,
        push_config: Optional[PushConfig],
    ) -> PublishRequest:
        long_message = format_long_message(snapshot, context)
        overrides = {
            "email": long_message,
            "sms": format_short_message(snapshot, context),
        }
        attributes = {
            "alert_level": context.alert_level.value,
            "spend_amount": str(snapshot.total_cost),
            "threshold": str(context.threshold),
            "delivery_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if push_config is not None:
            payload_json = format_push_payload(snapshot, context).to_json()
            overrides[push_config.protocol] = payload_json
            attributes["push_payload_size"] = str(len(payload_json.encode("utf-8")))

        return PublishRequest(
            topic_arn=topic_arn,
            default_message=long_message,
            overrides=overrides,
            subject=format_subject(context),
            attributes=attributes,
        )

    @staticmethod
    def _fallback_request(
        request: PublishRequest,
        push_config: PushConfig,
        original_error: str,
    ) -> PublishRequest:
        reduced = request.without(push_config.protocol)
        attributes = {k: v for k, v in reduced.attributes.items()
                      if k != "push_payload_size"}
        attributes["fallback_reason"] = "push delivery failed"
        attributes["original_error"] = original_error[:MAX_ATTRIBUTE_LENGTH]
        return PublishRequest(
            topic_arn=reduced.topic_arn,
            default_message=reduced.default_message,
            overrides=reduced.overrides,
            subject=f"{reduced.subject} (push delivery failed)",
            attributes=attributes,
        )

    async def _publish(
        self,
        request: PublishRequest,
        name: str,
        on_retry: Callable[[int], None],
    ) -> PublishResult:
        try:
            message_id = await execute_with_retry(
                lambda: self.destination.publish(request),
                self.policy,
                on_retry=on_retry,
                sleep=self._sleep,
                operation_name=name,
            )
        except Exception as e:
            return PublishResult(error=e)
        return PublishResult(message_id=message_id)

    @staticmethod
    def _outcome(
        success: bool,
        channels: tuple[str, ...],
        push_delivered: bool,
        fallback_used: bool,
        errors: list[str],
        start: float,
        retries: int,
        payload_size: int,
        message_id: Optional[str] = None,
    ) -> DeliveryOutcome:
        return DeliveryOutcome(
            success=success,
            channels=tuple(channels),
            push_delivered=push_delivered,
            fallback_used=fallback_used,
            errors=tuple(errors),
            metrics=DeliveryMetrics(
                elapsed_ms=(time.monotonic() - start) * 1000,
                retry_count=retries,
                payload_size=payload_size,
            ),
            message_id=message_id,
        )

    async def _record(
        self, outcome: DeliveryOutcome, push_attempted: bool,
    ) -> None:
        await self.metrics.record_alert_delivery(
            outcome.channels, outcome.success, outcome.metrics.retry_count,
        )
        if push_attempted:
            await self.metrics.record_push_notification(
                1, outcome.push_delivered, 0,
            )
        if outcome.fallback_used:
            await self.metrics.record_fallback_usage(
                PRIMARY_CHANNELS, outcome.success,
            )
