"""Spend Notifier — Metrics.

Named numeric data points with dimension tags, pushed to an injected
sink. Recording is fire-and-forget: a failing sink is logged and never
propagates to the caller.

Usage:
    metrics = MetricsCollector(LoggingMetricsSink(), namespace="SpendMonitor")
    await metrics.record_alert_delivery(["email", "sms"], True, retry_count=1)

    timer = metrics.timer("HealthCheck")
    ...
    await timer.stop(success=True)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from spend_notifier.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MetricDatum:
    """A single data point."""

    name: str
    value: float
    unit: str = "Count"
    dimensions: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class MetricsSink(Protocol):
    """Destination for metric batches (CloudWatch, StatsD, logs...)."""

    async def put_metrics(
        self, namespace: str, data: Sequence[MetricDatum]
    ) -> None:
        ...


class LoggingMetricsSink:
    """Sink that writes each data point to the log at DEBUG level."""

    def __init__(self) -> None:
        self._log = get_logger("spend_notifier.metrics")

    async def put_metrics(
        self, namespace: str, data: Sequence[MetricDatum]
    ) -> None:
        for datum in data:
            self._log.debug(
                "metric %s/%s=%s %s %s",
                namespace, datum.name, datum.value, datum.unit,
                datum.dimensions or "",
            )


def _status(success: bool) -> str:
    return "Success" if success else "Failure"


class _Timer:
    """Measures one operation and records duration + result on stop()."""

    def __init__(self, collector: "MetricsCollector", operation: str) -> None:
        self._collector = collector
        self._operation = operation
        self._start = time.monotonic()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._start) * 1000

    async def stop(self, success: bool) -> float:
        elapsed = self.elapsed_ms
        await self._collector.record_execution_duration(
            self._operation, elapsed, success,
        )
        await self._collector.record_execution_result(self._operation, success)
        return elapsed


class MetricsCollector:
    """Builds domain metrics and forwards them to a sink.

    Attributes:
        namespace: Metric namespace passed to the sink.
    """

    def __init__(
        self,
        sink: Optional[MetricsSink] = None,
        namespace: str = "SpendMonitor",
    ) -> None:
        self._sink: MetricsSink = sink or LoggingMetricsSink()
        self.namespace = namespace

    def timer(self, operation: str) -> _Timer:
        """Start timing an operation; call stop() when it finishes."""
        return _Timer(self, operation)

    async def record_execution_duration(
        self, operation: str, duration_ms: float, success: bool,
    ) -> None:
        await self._put([
            MetricDatum(
                "ExecutionDuration", duration_ms, "Milliseconds",
                {"Operation": operation, "Status": _status(success)},
            ),
        ])

    async def record_execution_result(
        self, operation: str, success: bool,
    ) -> None:
        await self._put([
            MetricDatum(
                "ExecutionCount", 1, "Count",
                {"Operation": operation, "Status": _status(success)},
            ),
            MetricDatum(
                "SuccessRate" if success else "ErrorRate", 1, "Count",
                {"Operation": operation},
            ),
        ])

    async def record_alert_delivery(
        self,
        channels: Sequence[str],
        success: bool,
        retry_count: int = 0,
    ) -> None:
        """Record one dispatch result plus a per-channel data point."""
        data = [
            MetricDatum("AlertDeliveryCount", 1, "Count",
                        {"Status": _status(success)}),
            MetricDatum("AlertChannelCount", len(channels), "Count"),
        ]
        if retry_count > 0:
            data.append(MetricDatum("AlertRetryCount", retry_count, "Count"))
        for channel in channels:
            data.append(MetricDatum(
                "ChannelDelivery", 1 if success else 0, "Count",
                {"Channel": channel, "Status": _status(success)},
            ))
        await self._put(data)

    async def record_push_notification(
        self,
        device_count: int,
        success: bool,
        invalid_tokens: int = 0,
    ) -> None:
        data = [
            MetricDatum("PushNotificationCount", 1, "Count",
                        {"Status": _status(success)}),
            MetricDatum("PushDeviceCount", device_count, "Count"),
        ]
        if invalid_tokens > 0:
            data.append(
                MetricDatum("PushInvalidTokens", invalid_tokens, "Count")
            )
        await self._put(data)

    async def record_fallback_usage(
        self, channels: Sequence[str], success: bool,
    ) -> None:
        await self._put([
            MetricDatum(
                "PushFallbackUsed", 1, "Count",
                {"Channels": ",".join(channels), "Status": _status(success)},
            ),
        ])

    async def record_threshold_breach(
        self, current_spend: float, threshold: float, exceed_amount: float,
    ) -> None:
        data = [
            MetricDatum("ThresholdBreach", 1, "Count"),
            MetricDatum("ThresholdExceedAmount", exceed_amount, "None"),
        ]
        if threshold > 0:
            data.append(MetricDatum(
                "ThresholdExceedPercentage",
                exceed_amount / threshold * 100, "Percent",
            ))
        await self._put(data)

    async def record_certificate_health(
        self,
        valid: bool,
        days_until_expiration: Optional[int],
        warnings: int,
        errors: int,
    ) -> None:
        data = [
            MetricDatum("CertificateValid", 1 if valid else 0, "Count"),
            MetricDatum("CertificateWarnings", warnings, "Count"),
            MetricDatum("CertificateErrors", errors, "Count"),
        ]
        if days_until_expiration is not None:
            data.append(MetricDatum(
                "CertificateDaysUntilExpiration", days_until_expiration, "Count",
            ))
        await self._put(data)

    async def _put(self, data: list[MetricDatum]) -> None:
        try:
            await self._sink.put_metrics(self.namespace, data)
        except Exception as e:
            logger.error(
                "Failed to publish %d metrics to %s: %s",
                len(data), self.namespace, e,
            )
