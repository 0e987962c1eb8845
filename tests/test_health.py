"""Tests for the push health and feedback monitor."""

import pytest

from conftest import FIXED_NOW, TOKEN_A, TOKEN_B, TOKEN_C, FakeFeedback, throttled
from spend_notifier.config import HealthConfig
from spend_notifier.devices.gateway import GatewayFeedbackSource
from spend_notifier.health import PushHealthMonitor, _parse_attribute_time
from spend_notifier.models import HealthStatus
from spend_notifier.utils.errors import FeedbackScanError, TransportError


@pytest.fixture
def make_monitor(registry, gateway, metrics):
    def _make(feedback=None, warning_days=30):
        return PushHealthMonitor(
            registry, gateway, feedback or FakeFeedback(), metrics,
            HealthConfig(certificate_warning_days=warning_days),
            clock=lambda: FIXED_NOW,
        )
    return _make


class TestOverallStatus:

    async def test_healthy(self, make_monitor, sink):
        report = await make_monitor().run_cycle()
        assert report.overall is HealthStatus.HEALTHY
        assert report.credential.status == "healthy"
        assert report.days_until_expiration == 212
        assert report.recommendations == []
        assert report.checked_at == FIXED_NOW
        assert [d.value for d in sink.named("CertificateValid")] == [1]
        assert sink.named("ExecutionCount")[0].dimensions["Operation"] == "PushHealthCheck"

    async def test_credential_failure_is_critical_regardless(self, make_monitor, gateway):
        gateway.app_attributes["Enabled"] = "false"
        gateway.app_attributes["AppleCertificateExpiryDate"] = "2030-01-01T00:00:00Z"

        report = await make_monitor().run_cycle()

        assert report.overall is HealthStatus.CRITICAL
        assert report.credential.status == "critical"
        assert report.certificate.status == "healthy"
        assert report.feedback_errors == []
        assert any("credentials" in r for r in report.recommendations)

    async def test_credential_transport_error_is_critical(self, make_monitor, gateway):
        gateway.app_error = TransportError("unreachable", status_code=503)
        report = await make_monitor().run_cycle()
        assert report.overall is HealthStatus.CRITICAL
        assert report.days_until_expiration is None
        assert report.certificate.status == "warning"

    async def test_feedback_errors_are_warning(self, make_monitor, registry, gateway):
        kept = (await registry.register(TOKEN_A)).platform_endpoint_arn
        gateway.fail_delete.add(kept)

        report = await make_monitor(FakeFeedback([kept])).run_cycle()

        assert report.overall is HealthStatus.WARNING
        assert report.removed_endpoints == []
        assert report.feedback_errors == [f"Failed to remove endpoint {kept}"]


class TestCertificate:

    async def test_reported_expiry_inside_warning_window(self, make_monitor, gateway):
        gateway.app_attributes["AppleCertificateExpiryDate"] = "2024-06-21T12:00:00Z"
        report = await make_monitor().run_cycle()
        assert report.days_until_expiration == 20
        assert report.certificate.status == "warning"
        assert report.overall is HealthStatus.WARNING
        assert "Plan push certificate renewal" in report.recommendations

    async def test_expired_is_critical(self, make_monitor, gateway):
        gateway.app_attributes["AppleCertificateExpiryDate"] = "2024-05-01T00:00:00Z"
        report = await make_monitor().run_cycle()
        assert report.days_until_expiration < 0
        assert report.overall is HealthStatus.CRITICAL
        assert "Renew the push certificate immediately" in report.recommendations

    async def test_estimate_from_creation_time(self, make_monitor, gateway):
        gateway.app_attributes["CreationTime"] = "2023-06-20T12:00:00Z"
        report = await make_monitor().run_cycle()
        assert report.days_until_expiration == 18
        assert "estimated" in report.certificate.details[0]

    async def test_wider_warning_window(self, make_monitor):
        report = await make_monitor(warning_days=365).run_cycle()
        assert report.certificate.status == "warning"

    async def test_missing_attributes_inconclusive(self, make_monitor, gateway):
        gateway.app_attributes = {"Enabled": "true"}
        report = await make_monitor().run_cycle()
        assert report.certificate.status == "warning"
        assert report.days_until_expiration is None
        assert report.overall is HealthStatus.WARNING

    @pytest.mark.parametrize("raw", [
        "2024-01-01T00:00:00Z",
        "2024-01-01T00:00:00+00:00",
        "1704067200",
        "1704067200000",
    ])
    def test_attribute_time_formats(self, raw):
        parsed = _parse_attribute_time(raw)
        assert (parsed.year, parsed.month, parsed.day, parsed.hour) == (2024, 1, 1, 0)
        assert parsed.utcoffset().total_seconds() == 0


class TestFeedback:

    async def test_invalid_endpoints_are_pruned(self, make_monitor, registry, sink):
        arns = [(await registry.register(t)).platform_endpoint_arn for t in (TOKEN_A, TOKEN_B)]
        report = await make_monitor(FakeFeedback([arns[0]])).run_cycle()

        assert report.removed_endpoints == [arns[0]]
        assert report.feedback.status == "healthy"
        assert (report.endpoints.active, report.endpoints.invalid) == (1, 1)
        assert [d.value for d in sink.named("PushInvalidTokens")] == [1]

    async def test_fetch_failure_does_not_stop_other_checks(self, make_monitor, registry):
        await registry.register(TOKEN_A)
        report = await make_monitor(FakeFeedback(error=ConnectionError("feed down"))).run_cycle()

        assert report.overall is HealthStatus.WARNING
        assert report.feedback_errors[0].startswith("Feedback fetch failed")
        assert report.credential.status == "healthy"
        assert report.endpoints.active == 1

    async def test_no_invalid_endpoints(self, make_monitor):
        report = await make_monitor(FakeFeedback([])).run_cycle()
        assert report.feedback.details == ["No invalid endpoints reported"]

    async def test_metrics_failure_is_swallowed(self, registry, gateway):
        from conftest import RecordingSink
        from spend_notifier.utils.metrics import MetricsCollector

        monitor = PushHealthMonitor(
            registry, gateway, FakeFeedback(),
            MetricsCollector(RecordingSink(fail=True)), clock=lambda: FIXED_NOW,
        )
        assert (await monitor.run_cycle()).overall is HealthStatus.HEALTHY


class TestGatewayFeedbackSource:

    async def test_reports_disabled_bad_token_and_unreadable(self, gateway):
        good = gateway.add_endpoint(TOKEN_A)
        disabled = gateway.add_endpoint(TOKEN_B, enabled=False)
        bad_token = gateway.add_endpoint("not-a-token")
        unreadable = gateway.add_endpoint(TOKEN_C)
        gateway.unreadable.add(unreadable)

        invalid = await GatewayFeedbackSource(gateway).invalid_endpoints()

        assert good not in invalid
        assert invalid == [disabled, bad_token, unreadable]

    async def test_listing_failure_propagates(self, gateway):
        gateway.list_error = TransportError("denied", status_code=403)
        with pytest.raises(TransportError):
            await GatewayFeedbackSource(gateway).invalid_endpoints()

    async def test_end_to_end_with_monitor(self, make_monitor, registry, gateway):
        registration = await registry.register(TOKEN_A)
        gateway.endpoints[registration.platform_endpoint_arn]["Enabled"] = "false"

        report = await make_monitor(GatewayFeedbackSource(gateway)).run_cycle()

        assert report.removed_endpoints == [registration.platform_endpoint_arn]
        assert not (await registry.get(TOKEN_A)).active

    @pytest.mark.parametrize("error", [
        throttled(),
        TransportError("Service unavailable", status_code=503),
        TimeoutError("read timed out"),
    ])
    async def test_transient_read_failure_leaves_endpoint_unchecked(self, gateway, error):
        live = gateway.add_endpoint(TOKEN_A)
        disabled = gateway.add_endpoint(TOKEN_B, enabled=False)
        gateway.read_errors[live] = error

        with pytest.raises(FeedbackScanError) as excinfo:
            await GatewayFeedbackSource(gateway).invalid_endpoints()

        assert excinfo.value.invalid == [disabled]
        assert len(excinfo.value.errors) == 1
        assert live in excinfo.value.errors[0]

    async def test_throttled_read_keeps_live_endpoint(self, make_monitor, registry, gateway):
        live = (await registry.register(TOKEN_A)).platform_endpoint_arn
        dead = (await registry.register(TOKEN_B)).platform_endpoint_arn
        gateway.endpoints[dead]["Enabled"] = "false"
        gateway.read_errors[live] = throttled()

        report = await make_monitor(GatewayFeedbackSource(gateway)).run_cycle()

        assert report.removed_endpoints == [dead]
        assert live in gateway.endpoints
        assert (await registry.get(TOKEN_A)).active
        assert report.overall is HealthStatus.WARNING
        assert report.feedback.status == "warning"
        assert any(live in e for e in report.feedback_errors)

    async def test_only_unchecked_endpoints_is_warning(self, make_monitor, registry, gateway):
        live = (await registry.register(TOKEN_A)).platform_endpoint_arn
        gateway.read_errors[live] = throttled()

        report = await make_monitor(GatewayFeedbackSource(gateway)).run_cycle()

        assert report.removed_endpoints == []
        assert ("delete_endpoint", live) not in gateway.calls
        assert report.overall is HealthStatus.WARNING
