"""Spend Notifier — Push Health & Feedback Monitor.

One monitoring cycle runs four independent sub-checks in order:

  1. credential   platform application reachable and enabled
  2. certificate  days until the push certificate expires
  3. feedback     prune endpoints the platform reports invalid
  4. census       active / invalid / total registrations

A failing sub-check degrades the report; it never stops the remaining
checks and run_cycle() never raises.

Usage:
    monitor = PushHealthMonitor(registry, gateway, feedback, metrics, config.health)
    report = await monitor.run_cycle()
    if report.overall is HealthStatus.CRITICAL: ...
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from spend_notifier.config import HealthConfig
from spend_notifier.devices.gateway import FeedbackSource, PushGateway
from spend_notifier.devices.registry import DeviceRegistry
from spend_notifier.models import (
    ComponentHealth,
    EndpointCensus,
    HealthReport,
    HealthStatus,
    parse_timestamp,
    utcnow,
)
from spend_notifier.utils.errors import FeedbackScanError
from spend_notifier.utils.logger import get_logger
from spend_notifier.utils.metrics import MetricsCollector

logger = get_logger(__name__)

CERTIFICATE_LIFETIME_DAYS = 365


def _parse_attribute_time(value: str) -> datetime:
    """Parse a gateway timestamp: ISO-8601 or epoch seconds/milliseconds."""
    text = value.strip()
    try:
        epoch = float(text)
    except ValueError:
        parsed = parse_timestamp(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if epoch > 1e11:
        epoch /= 1000
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class PushHealthMonitor:
    """Validates push platform health and reconciles endpoint feedback.

    Attributes:
        registry: Device registry (credential check, pruning, census).
        gateway: Push gateway (application attributes).
        feedback: Source of invalid endpoint handles.
        metrics: Metrics collector.
        config: Health thresholds.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        gateway: PushGateway,
        feedback: FeedbackSource,
        metrics: MetricsCollector,
        config: Optional[HealthConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.feedback = feedback
        self.metrics = metrics
        self.config = config or HealthConfig()
        self._clock = clock

    async def run_cycle(self) -> HealthReport:
        """Run all sub-checks and build the health report."""
        start = time.monotonic()
        timer = self.metrics.timer("PushHealthCheck")
        logger.info("Starting push health cycle")

        credential_ok, credential = await self._check_credential()
        cert_state, days_left, certificate = await self._check_certificate()
        removed, feedback_errors, feedback = await self._reconcile_feedback()
        endpoints = await self._census()

        recommendations: list[str] = []
        if not credential_ok:
            recommendations.append(
                "Check the push platform application configuration and credentials"
            )
        if cert_state == HealthStatus.CRITICAL:
            recommendations.append("Renew the push certificate immediately")
        elif cert_state == HealthStatus.WARNING:
            recommendations.append("Plan push certificate renewal")
        if feedback_errors:
            recommendations.append("Review endpoints that could not be pruned")

        if not credential_ok or cert_state == HealthStatus.CRITICAL:
            overall = HealthStatus.CRITICAL
        elif cert_state == HealthStatus.WARNING or feedback_errors:
            overall = HealthStatus.WARNING
        else:
            overall = HealthStatus.HEALTHY

        report = HealthReport(
            overall=overall,
            credential=credential,
            certificate=certificate,
            feedback=feedback,
            endpoints=endpoints,
            days_until_expiration=days_left,
            removed_endpoints=removed,
            feedback_errors=feedback_errors,
            recommendations=recommendations,
            checked_at=self._clock(),
            duration_ms=(time.monotonic() - start) * 1000,
        )

        logger.info(
            "Push health cycle done: overall=%s credential=%s certificate=%s "
            "removed=%d feedback_errors=%d active=%d invalid=%d",
            overall.value, credential.status, certificate.status,
            len(removed), len(feedback_errors),
            endpoints.active, endpoints.invalid,
        )
        await self.metrics.record_certificate_health(
            cert_state == HealthStatus.HEALTHY,
            days_left,
            1 if cert_state == HealthStatus.WARNING else 0,
            1 if cert_state == HealthStatus.CRITICAL else 0,
        )
        if removed:
            await self.metrics.record_push_notification(
                endpoints.total, True, len(removed),
            )
        await timer.stop(overall != HealthStatus.CRITICAL)
        return report

    # ── Sub-checks ────────────────────────────────────────

    async def _check_credential(self) -> tuple[bool, ComponentHealth]:
        try:
            ok = await self.registry.validate_gateway_health()
        except Exception as e:
            logger.error("Credential check raised: %s", e)
            ok = False

        if ok:
            return True, ComponentHealth(
                HealthStatus.HEALTHY.value,
                ["Platform application is accessible and enabled"],
            )
        return False, ComponentHealth(
            HealthStatus.CRITICAL.value,
            ["Platform application validation failed - check configuration"],
        )

    async def _check_certificate(
        self,
    ) -> tuple[HealthStatus, Optional[int], ComponentHealth]:
        """Estimate days until the push certificate expires.

        Uses the explicit expiry attribute when the gateway reports one,
        otherwise assumes a one-year certificate issued at CreationTime.
        """
        try:
            attributes = await self.gateway.get_application_attributes()
            expiry_raw = attributes.get("AppleCertificateExpiryDate")
            if expiry_raw:
                expires_at = _parse_attribute_time(expiry_raw)
                source = "reported"
            else:
                created_raw = attributes.get("CreationTime")
                if not created_raw:
                    raise ValueError("no certificate expiry or creation time attribute")
                expires_at = _parse_attribute_time(created_raw) + timedelta(
                    days=CERTIFICATE_LIFETIME_DAYS,
                )
                source = "estimated"
        except Exception as e:
            logger.warning("Certificate check failed: %s", e)
            return HealthStatus.WARNING, None, ComponentHealth(
                HealthStatus.WARNING.value,
                [f"Certificate validation inconclusive: {e}"],
            )

        days_left = (expires_at - self._clock()).days
        if days_left < 0:
            state = HealthStatus.CRITICAL
            detail = f"Push certificate expired {-days_left} days ago ({source})"
        elif days_left <= self.config.certificate_warning_days:
            state = HealthStatus.WARNING
            detail = f"Push certificate expires in {days_left} days ({source})"
        else:
            state = HealthStatus.HEALTHY
            detail = f"Certificate healthy, {days_left} days remaining ({source})"

        logger.info("Certificate check: %s", detail)
        return state, days_left, ComponentHealth(state.value, [detail])

    async def _reconcile_feedback(
        self,
    ) -> tuple[list[str], list[str], ComponentHealth]:
        errors: list[str] = []
        try:
            invalid = await self.feedback.invalid_endpoints()
        except FeedbackScanError as e:
            # Partial scan: prune what was confirmed, report the rest.
            logger.warning("Feedback scan incomplete: %s", e)
            invalid = list(e.invalid)
            errors.extend(e.errors)
        except Exception as e:
            logger.warning("Feedback fetch failed: %s", e)
            errors.append(f"Feedback fetch failed: {e}")
            return [], errors, ComponentHealth(HealthStatus.WARNING.value, errors[:])

        if not invalid:
            if errors:
                return [], errors, ComponentHealth(HealthStatus.WARNING.value, errors[:])
            return [], errors, ComponentHealth(
                HealthStatus.HEALTHY.value, ["No invalid endpoints reported"],
            )

        try:
            removed = await self.registry.remove_invalid(invalid)
        except Exception as e:
            logger.error("Endpoint pruning failed: %s", e)
            removed = []
            errors.append(f"Endpoint pruning failed: {e}")

        removed_set = set(removed)
        for handle in invalid:
            if handle not in removed_set:
                errors.append(f"Failed to remove endpoint {handle}")

        details = [f"Removed {len(removed)} of {len(invalid)} invalid endpoints"]
        status = HealthStatus.WARNING if errors else HealthStatus.HEALTHY
        return removed, errors, ComponentHealth(status.value, details + errors)

    async def _census(self) -> EndpointCensus:
        try:
            return await self.registry.census()
        except Exception as e:
            logger.warning("Endpoint census failed: %s", e)
            return EndpointCensus()
