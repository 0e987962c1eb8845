"""Shared fixtures and in-memory fakes for the external collaborators."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

import pytest

from spend_notifier.config import PushConfig
from spend_notifier.devices.registry import DeviceRegistry
from spend_notifier.devices.store import DeviceStore
from spend_notifier.models import CostSnapshot
from spend_notifier.notifier.destination import PublishRequest
from spend_notifier.notifier.formatters import compute_alert_context, rank_top_services
from spend_notifier.utils.errors import TransportError
from spend_notifier.utils.metrics import MetricDatum, MetricsCollector
from spend_notifier.utils.resilience import RetryPolicy

TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:spend-alerts"
APP_ARN = "arn:aws:sns:us-east-1:123456789012:app/APNS/spend-monitor"
TOKEN_A = "a" * 64
TOKEN_B = "0123456789abcdef" * 4
TOKEN_C = "F" * 64
FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def throttled(message: str = "Rate exceeded") -> TransportError:
    return TransportError(message, error_code="Throttling", status_code=400)


def push_failure(message: str = "Endpoint is disabled") -> TransportError:
    return TransportError(message, error_code="EndpointDisabled", status_code=400)


# ═══════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[tuple[str, list[MetricDatum]]] = []

    async def put_metrics(self, namespace: str, data: Sequence[MetricDatum]) -> None:
        if self.fail:
            raise ConnectionError("metrics backend down")
        self.batches.append((namespace, list(data)))

    def named(self, name: str) -> list[MetricDatum]:
        return [d for _, batch in self.batches for d in batch if d.name == name]


class FakeDestination:
    """Publish destination driven by a script of results.

    Each entry is an exception to raise or a message id to return; once
    the script runs out every publish succeeds.
    """

    def __init__(self, script: Optional[list] = None) -> None:
        self.script = list(script or [])
        self.requests: list[PublishRequest] = []

    async def publish(self, request: PublishRequest) -> str:
        self.requests.append(request)
        if self.script:
            result = self.script.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return f"msg-{len(self.requests)}"


class FakeGateway:
    """In-memory push gateway."""

    def __init__(self) -> None:
        self.endpoints: dict[str, dict[str, str]] = {}
        self.app_attributes: dict[str, str] = {
            "Enabled": "true",
            "CreationTime": "2024-01-01T00:00:00Z",
        }
        self.app_error: Optional[Exception] = None
        self.fail_delete: set[str] = set()
        self.unreadable: set[str] = set()
        self.read_errors: dict[str, Exception] = {}
        self.list_error: Optional[Exception] = None
        self.calls: list[tuple] = []
        self._seq = 0

    def add_endpoint(self, token: str, enabled: bool = True) -> str:
        self._seq += 1
        arn = f"{APP_ARN.replace(':app/', ':endpoint/')}/{self._seq}"
        self.endpoints[arn] = {"Token": token, "Enabled": "true" if enabled else "false"}
        return arn

    async def create_endpoint(self, token: str, user_data: Optional[str] = None) -> str:
        self.calls.append(("create_endpoint", token, user_data))
        arn = self.add_endpoint(token)
        if user_data:
            self.endpoints[arn]["CustomUserData"] = user_data
        return arn

    async def delete_endpoint(self, endpoint_arn: str) -> None:
        self.calls.append(("delete_endpoint", endpoint_arn))
        if endpoint_arn in self.fail_delete:
            raise TransportError("Access denied", error_code="AuthorizationError", status_code=403)
        self.endpoints.pop(endpoint_arn, None)

    async def get_endpoint_attributes(self, endpoint_arn: str) -> dict[str, str]:
        self.calls.append(("get_endpoint_attributes", endpoint_arn))
        if endpoint_arn in self.read_errors:
            raise self.read_errors[endpoint_arn]
        if endpoint_arn in self.unreadable or endpoint_arn not in self.endpoints:
            raise TransportError("Endpoint does not exist", error_code="NotFound", status_code=404)
        return dict(self.endpoints[endpoint_arn])

    async def set_endpoint_attributes(self, endpoint_arn: str, attributes: dict[str, str]) -> None:
        self.calls.append(("set_endpoint_attributes", endpoint_arn, dict(attributes)))
        self.endpoints.setdefault(endpoint_arn, {}).update(attributes)

    async def get_application_attributes(self) -> dict[str, str]:
        self.calls.append(("get_application_attributes",))
        if self.app_error is not None:
            raise self.app_error
        return dict(self.app_attributes)

    async def list_endpoints(self) -> list[str]:
        self.calls.append(("list_endpoints",))
        if self.list_error is not None:
            raise self.list_error
        return list(self.endpoints)


class FakeFeedback:
    def __init__(self, handles: Optional[list[str]] = None, error: Optional[Exception] = None) -> None:
        self.handles = handles or []
        self.error = error

    async def invalid_endpoints(self) -> list[str]:
        if self.error is not None:
            raise self.error
        return list(self.handles)


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def snapshot() -> CostSnapshot:
    """$15.50 spent, driven by EC2, S3 and Lambda."""
    return CostSnapshot(
        total_cost=Decimal("15.50"),
        service_breakdown={
            "EC2": Decimal("10.00"),
            "S3": Decimal("3.50"),
            "Lambda": Decimal("2.00"),
        },
        period_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 1, 15, tzinfo=timezone.utc),
        projected_monthly=Decimal("31.00"),
        currency="USD",
        last_updated=datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def context(snapshot):
    return compute_alert_context(snapshot, Decimal("10.00"), rank_top_services(snapshot))


@pytest.fixture
def push_config() -> PushConfig:
    return PushConfig(enabled=True, platform_application_arn=APP_ARN, bundle_id="com.example.spendmonitor")


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def metrics(sink) -> MetricsCollector:
    return MetricsCollector(sink, namespace="Test")


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, backoff_multiplier=2.0)


@pytest.fixture
async def store(tmp_path):
    device_store = DeviceStore(str(tmp_path / "devices.db"))
    await device_store.initialize()
    yield device_store
    await device_store.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def registry(gateway, store, policy, sleep) -> DeviceRegistry:
    return DeviceRegistry(gateway, store, policy, sleep, clock=lambda: FIXED_NOW)
