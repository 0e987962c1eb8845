"""Spend Notifier — Data Models.

Dataclasses for every entity the notifier passes around: the cost
snapshot received from the billing collaborator, the derived alert
context, the push payload, the outcome of a dispatch, device
registrations and the health report.

Persisted/serialized models include:
  - to_dict() / to_db_dict(): conversion for JSON or SQLite
  - from_dict() / from_db_row(): reconstruction
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional


def to_decimal(value: Any) -> Decimal:
    """Coerce a number or numeric string to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or pass a datetime through."""
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════
# Cost Models
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CostSnapshot:
    """A point-in-time reading of aggregated billing data.

    Attributes:
        total_cost: Spend so far in the billing period.
        service_breakdown: Service name → cost. Insertion order is kept
            only to break ranking ties.
        period_start: Start of the billing period.
        period_end: End of the observed window.
        projected_monthly: Projected month-end total.
        currency: ISO currency code.
        last_updated: When the upstream data was produced.
    """

    total_cost: Decimal
    service_breakdown: Mapping[str, Decimal]
    period_start: datetime
    period_end: datetime
    projected_monthly: Decimal
    currency: str = "USD"
    last_updated: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CostSnapshot":
        """Build a snapshot from the cost source's JSON-like payload.

        Accepts either ``period: {start, end}`` or flat
        ``period_start``/``period_end`` keys.

        Args:
            data: Raw snapshot dictionary.

        Returns:
            A CostSnapshot instance.
        """
        period = data.get("period") or {}
        return cls(
            total_cost=to_decimal(data["total_cost"]),
            service_breakdown={
                name: to_decimal(cost)
                for name, cost in (data.get("service_breakdown") or {}).items()
            },
            period_start=parse_timestamp(
                period.get("start", data.get("period_start"))
            ),
            period_end=parse_timestamp(period.get("end", data.get("period_end"))),
            projected_monthly=to_decimal(data.get("projected_monthly", 0)),
            currency=data.get("currency", "USD"),
            last_updated=(
                parse_timestamp(data["last_updated"])
                if data.get("last_updated") else utcnow()
            ),
        )


@dataclass(frozen=True)
class ServiceCost:
    """One service's share of the total spend.

    Attributes:
        service_name: Billing service name.
        cost: Spend attributed to the service.
        percentage: Share of the total cost, rounded to 2 decimals.
    """

    service_name: str
    cost: Decimal
    percentage: Decimal


class AlertLevel(str, Enum):
    """Severity of a threshold breach."""

    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class AlertContext:
    """Derived facts about a single threshold breach.

    Only constructed when the total exceeds the threshold.
    """

    threshold: Decimal
    exceed_amount: Decimal
    percentage_over: Decimal
    top_services: tuple[ServiceCost, ...]
    alert_level: AlertLevel

    @property
    def top_service(self) -> Optional[ServiceCost]:
        return self.top_services[0] if self.top_services else None


# ═══════════════════════════════════════════════════════════
# Delivery Models
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PushPayload:
    """Structured mobile push notification.

    Serializes to the APNS wire shape; from_dict() inverts to_dict()
    exactly so the payload survives a JSON round trip.
    """

    title: str
    body: str
    subtitle: str
    badge: int
    sound: str
    custom_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "aps": {
                "alert": {
                    "title": self.title,
                    "body": self.body,
                    "subtitle": self.subtitle,
                },
                "badge": self.badge,
                "sound": self.sound,
                "content-available": 1,
            },
            "customData": dict(self.custom_data),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PushPayload":
        aps = data["aps"]
        alert = aps["alert"]
        return cls(
            title=alert["title"],
            body=alert["body"],
            subtitle=alert["subtitle"],
            badge=aps["badge"],
            sound=aps["sound"],
            custom_data=dict(data.get("customData", {})),
        )

    @classmethod
    def from_json(cls, text: str) -> "PushPayload":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class DeliveryMetrics:
    """Timing and size figures for one dispatch."""

    elapsed_ms: float
    retry_count: int
    payload_size: int


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one dispatch call. Never mutated after it is returned.

    Attributes:
        success: Whether the alert reached at least email and SMS.
        channels: Channels on the path that completed (or all attempted
            channels when delivery failed).
        push_delivered: Whether the push channel received the alert.
        fallback_used: Whether the reduced channel set was published.
        errors: Failure messages in the order they happened.
        metrics: Elapsed time, retries and payload size.
        message_id: Destination message id of the successful publish.
    """

    success: bool
    channels: tuple[str, ...]
    push_delivered: bool
    fallback_used: bool
    errors: tuple[str, ...]
    metrics: DeliveryMetrics
    message_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "channels": list(self.channels),
            "push_delivered": self.push_delivered,
            "fallback_used": self.fallback_used,
            "errors": list(self.errors),
            "metrics": {
                "elapsed_ms": round(self.metrics.elapsed_ms, 1),
                "retry_count": self.metrics.retry_count,
                "payload_size": self.metrics.payload_size,
            },
            "message_id": self.message_id,
        }


# ═══════════════════════════════════════════════════════════
# Device Models
# ═══════════════════════════════════════════════════════════


@dataclass
class DeviceRegistration:
    """A registered mobile push endpoint.

    Attributes:
        device_token: 64-character hexadecimal token (primary key).
        platform_endpoint_arn: Opaque handle issued by the push gateway.
        user_id: Optional owner identifier.
        registration_date: When the token was first registered.
        last_updated: Last register/refresh/disable time.
        active: False once the endpoint has been invalidated.
    """

    device_token: str
    platform_endpoint_arn: str
    user_id: Optional[str] = None
    registration_date: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    active: bool = True

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary of SQLite column values."""
        return {
            "device_token": self.device_token,
            "platform_endpoint_arn": self.platform_endpoint_arn,
            "user_id": self.user_id,
            "registration_date": self.registration_date.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "active": 1 if self.active else 0,
        }

    @classmethod
    def from_db_row(cls, row: Mapping[str, Any]) -> "DeviceRegistration":
        """Reconstruct from a database row dictionary."""
        return cls(
            device_token=row["device_token"],
            platform_endpoint_arn=row["platform_endpoint_arn"],
            user_id=row.get("user_id"),
            registration_date=parse_timestamp(row["registration_date"]),
            last_updated=parse_timestamp(row["last_updated"]),
            active=bool(row.get("active", 1)),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for API responses."""
        d = self.to_db_dict()
        d["active"] = self.active
        return d


@dataclass(frozen=True)
class EndpointCensus:
    """Counts of registered endpoints by state."""

    active: int = 0
    invalid: int = 0

    @property
    def total(self) -> int:
        return self.active + self.invalid


# ═══════════════════════════════════════════════════════════
# Health Models
# ═══════════════════════════════════════════════════════════


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class ComponentHealth:
    """Status and detail lines for one sub-check."""

    status: str
    details: list[str] = field(default_factory=list)


@dataclass
class HealthReport:
    """Result of one health/feedback monitoring cycle."""

    overall: HealthStatus
    credential: ComponentHealth
    certificate: ComponentHealth
    feedback: ComponentHealth
    endpoints: EndpointCensus
    days_until_expiration: Optional[int] = None
    removed_endpoints: list[str] = field(default_factory=list)
    feedback_errors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=utcnow)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging or a status endpoint."""
        return {
            "overall": self.overall.value,
            "components": {
                "credential": {
                    "status": self.credential.status,
                    "details": list(self.credential.details),
                },
                "certificate": {
                    "status": self.certificate.status,
                    "details": list(self.certificate.details),
                    "days_until_expiration": self.days_until_expiration,
                },
                "feedback": {
                    "status": self.feedback.status,
                    "details": list(self.feedback.details),
                    "removed_endpoints": list(self.removed_endpoints),
                    "errors": list(self.feedback_errors),
                },
                "endpoints": {
                    "active": self.endpoints.active,
                    "invalid": self.endpoints.invalid,
                    "total": self.endpoints.total,
                },
            },
            "recommendations": list(self.recommendations),
            "checked_at": self.checked_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
        }
