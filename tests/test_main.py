"""Tests for the SpendNotifier orchestrator cycles."""

from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import APP_ARN, TOKEN_A, TOPIC_ARN, FakeDestination, FakeFeedback, push_failure
from spend_notifier.config import AlertConfig, AppConfig, HealthConfig, PushConfig, RetryConfig
from spend_notifier.main import SpendNotifier
from spend_notifier.models import HealthStatus


class FakeCostSource:
    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot
        self.error = error

    async def get_snapshot(self):
        if self.error is not None:
            raise self.error
        return self.snapshot


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        alert=AlertConfig(topic_arn=TOPIC_ARN, threshold=Decimal("10.00")),
        retry=RetryConfig(),
        push=PushConfig(False, "", ""),
        health=HealthConfig(),
        database_path=str(tmp_path / "app.db"),
        log_level="WARNING",
        alert_interval_minutes=60,
    )


@pytest.fixture
def make_app(app_config, sink, sleep):
    def _make(cost_source, destination=None, gateway=None, feedback=None, config=None):
        return SpendNotifier(
            config or app_config, cost_source, destination or FakeDestination(),
            gateway=gateway, feedback=feedback, metrics_sink=sink, sleep=sleep,
        )
    return _make


class TestAlertCycle:

    async def test_within_budget_sends_nothing(self, make_app, snapshot):
        destination = FakeDestination()
        app = make_app(FakeCostSource(replace(snapshot, total_cost=Decimal("10.00"))), destination)
        assert await app.run_alert_cycle() is None
        assert destination.requests == []
        assert app.cycle_count == 1
        assert app.errors_count == 0

    async def test_breach_dispatches(self, make_app, snapshot, sink):
        destination = FakeDestination()
        app = make_app(FakeCostSource(snapshot), destination)
        outcome = await app.run_alert_cycle()
        assert outcome.success
        assert outcome.channels == ("email", "sms")
        assert len(destination.requests) == 1
        assert len(sink.named("ThresholdBreach")) == 1

    async def test_push_enabled_uses_fallback(self, make_app, app_config, snapshot):
        config = replace(app_config, push=PushConfig(True, APP_ARN, "com.example"))
        destination = FakeDestination([push_failure()])
        app = make_app(FakeCostSource(snapshot), destination, config=config)
        outcome = await app.run_alert_cycle()
        assert outcome.fallback_used
        assert "APNS" in destination.requests[0].overrides

    async def test_source_failure_is_counted_not_raised(self, make_app):
        app = make_app(FakeCostSource(error=ConnectionError("billing API down")))
        assert await app.run_alert_cycle() is None
        assert app.errors_count == 1

    async def test_bad_topic_is_counted(self, make_app, app_config, snapshot):
        config = replace(app_config, alert=replace(app_config.alert, topic_arn="bogus"))
        app = make_app(FakeCostSource(snapshot), config=config)
        assert await app.run_alert_cycle() is None
        assert app.errors_count == 1

    async def test_send_test_alert(self, make_app):
        destination = FakeDestination()
        outcome = await make_app(FakeCostSource(), destination).send_test_alert()
        assert outcome.success
        assert destination.requests[0].attributes["spend_amount"] == "15.50"


class TestHealthCycle:

    async def test_without_gateway(self, make_app):
        app = make_app(FakeCostSource())
        assert app.monitor is None
        assert await app.run_health_cycle() is None

    async def test_with_gateway(self, make_app, gateway):
        app = make_app(FakeCostSource(), gateway=gateway, feedback=FakeFeedback())
        await app.store.initialize()
        try:
            await app.registry.register(TOKEN_A)
            report = await app.run_health_cycle()
        finally:
            await app.store.close()
        assert report.endpoints.active == 1
        assert report.credential.status == HealthStatus.HEALTHY.value


class TestLifecycle:

    async def test_start_schedules_jobs_and_stop(self, make_app, gateway):
        app = make_app(FakeCostSource(), gateway=gateway)
        await app.start()
        try:
            assert app.running
            job_ids = {job.id for job in app._scheduler.get_jobs()}
            assert job_ids == {"alert_cycle", "health_cycle"}
        finally:
            await app.stop()
        assert not app.running

    async def test_alert_only_without_gateway(self, make_app):
        app = make_app(FakeCostSource())
        await app.start()
        try:
            assert [job.id for job in app._scheduler.get_jobs()] == ["alert_cycle"]
        finally:
            await app.stop()
