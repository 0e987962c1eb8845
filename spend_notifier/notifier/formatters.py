"""Spend Notifier — Alert Message Formatters.

Turns one cost snapshot and its alert context into the channel-specific
representations published by the dispatcher:

  - long form (email / default body): banner, amounts, ranked services,
    recommendations
  - short form (SMS): one line, sized for payload-constrained channels
  - push payload: APNS-shaped structured notification

Also hosts the pure helpers that build an AlertContext from a snapshot.
All functions here are free of I/O and never mutate their inputs.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from spend_notifier.models import (
    AlertContext,
    AlertLevel,
    CostSnapshot,
    PushPayload,
    ServiceCost,
)
from spend_notifier.utils.errors import ConfigurationError, ValidationError

_CRITICAL_PERCENT = Decimal("50")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")

RECOMMENDATIONS = (
    "Review your cloud resources and usage patterns",
    "Consider scaling down or terminating unused resources",
    "Check for any unexpected charges or services",
    "Set up additional alarms for specific services",
)


def _money(amount: Decimal) -> str:
    """Format an amount as dollars with two decimals (e.g. '$15.50')."""
    return f"${amount.quantize(_CENT, rounding=ROUND_HALF_UP)}"


def _date(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def _date_range(snapshot: CostSnapshot) -> str:
    return f"{_date(snapshot.period_start)} - {_date(snapshot.period_end)}"


# ═══════════════════════════════════════════════════════════
# Alert Context
# ═══════════════════════════════════════════════════════════


def rank_top_services(
    snapshot: CostSnapshot,
    limit: int = 5,
    min_cost: Decimal = Decimal("1"),
) -> list[ServiceCost]:
    """Rank the services that drive the spend.

    Services below ``min_cost`` are dropped. The rest are sorted by cost
    descending; equal costs keep their order from the snapshot mapping.

    Args:
        snapshot: Cost snapshot with the per-service breakdown.
        limit: Maximum number of services to return.
        min_cost: Minimum cost for a service to be reported.

    Returns:
        Up to ``limit`` ServiceCost entries, highest first.
    """
    total = snapshot.total_cost
    eligible = [
        (name, cost) for name, cost in snapshot.service_breakdown.items()
        if cost >= min_cost
    ]
    # sorted() is stable, so mapping order breaks ties
    ranked = sorted(eligible, key=lambda item: item[1], reverse=True)

    services = []
    for name, cost in ranked[:limit]:
        percentage = (
            (cost / total * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP)
            if total > 0 else Decimal("0.00")
        )
        services.append(ServiceCost(name, cost, percentage))
    return services


def compute_alert_context(
    snapshot: CostSnapshot,
    threshold: Decimal,
    top_services: Sequence[ServiceCost],
) -> AlertContext:
    """Derive the alert context for a breached threshold.

    Args:
        snapshot: Current cost snapshot.
        threshold: Configured spend threshold.
        top_services: Ranked services (see rank_top_services).

    Returns:
        AlertContext with exceed amount, percentage and severity.

    Raises:
        ConfigurationError: If threshold is not positive.
        ValidationError: If the total does not exceed the threshold.
    """
    threshold = Decimal(str(threshold))
    if threshold <= 0:
        raise ConfigurationError(
            f"Spend threshold must be positive, got {threshold}",
            context={"threshold": str(threshold)},
        )

    exceed = snapshot.total_cost - threshold
    if exceed <= 0:
        raise ValidationError(
            f"Total cost {_money(snapshot.total_cost)} does not exceed "
            f"threshold {_money(threshold)}",
            context={
                "total_cost": str(snapshot.total_cost),
                "threshold": str(threshold),
            },
        )

    percentage_over = exceed / threshold * _HUNDRED
    level = (
        AlertLevel.CRITICAL if percentage_over > _CRITICAL_PERCENT
        else AlertLevel.WARNING
    )
    return AlertContext(
        threshold=threshold,
        exceed_amount=exceed,
        percentage_over=percentage_over,
        top_services=tuple(top_services),
        alert_level=level,
    )


# ═══════════════════════════════════════════════════════════
# Channel Formatters
# ═══════════════════════════════════════════════════════════


def format_subject(context: AlertContext) -> str:
    """E-mail subject line."""
    return f"Cloud Spend Alert: {_money(context.exceed_amount)} over budget"


def format_long_message(snapshot: CostSnapshot, context: AlertContext) -> str:
    """Format the full alert for email and the default topic body.

    The services section is left out completely when there are no ranked
    services. The trailing timestamp comes from the snapshot, so the same
    inputs always render the same text.

    Args:
        snapshot: Current cost snapshot.
        context: Alert context for the breach.

    Returns:
        Multi-line plain text message.
    """
    lines = [
        f"🚨 Cloud Spend Alert - {context.alert_level.value}",
        "",
        "Your cloud spending has exceeded the configured threshold.",
        "",
        f"💰 Current Spending: {_money(snapshot.total_cost)}",
        f"🎯 Threshold: {_money(context.threshold)}",
        f"📈 Over Budget: {_money(context.exceed_amount)} "
        f"({context.percentage_over:.1f}%)",
        f"📊 Projected Monthly: {_money(snapshot.projected_monthly)}",
        "",
        f"📅 Period: {_date_range(snapshot)}",
        "",
    ]

    if context.top_services:
        lines.append("🔝 Top Cost-Driving Services:")
        for rank, service in enumerate(context.top_services, 1):
            lines.append(
                f"{rank}. {service.service_name}: {_money(service.cost)} "
                f"({service.percentage:.1f}%)"
            )
        lines.append("")

    lines.append("💡 Recommendations:")
    lines.extend(f"• {tip}" for tip in RECOMMENDATIONS)
    lines.append("")
    lines.append(
        f"⏰ Data as of: {snapshot.last_updated:%Y-%m-%d %H:%M:%S} UTC"
    )

    return "\n".join(lines)


def format_short_message(snapshot: CostSnapshot, context: AlertContext) -> str:
    """Format the single-line SMS variant.

    Returns:
        e.g. "Cloud Spend Alert: $15.50 spent (over $10.00 threshold by
        $5.50). Top service: EC2 ($10.00) Projected monthly: $31.00"
    """
    top = context.top_service
    top_text = (
        f" Top service: {top.service_name} ({_money(top.cost)})" if top else ""
    )
    return (
        f"Cloud Spend Alert: {_money(snapshot.total_cost)} spent "
        f"(over {_money(context.threshold)} threshold by "
        f"{_money(context.exceed_amount)}).{top_text} "
        f"Projected monthly: {_money(snapshot.projected_monthly)}"
    )


def new_alert_id() -> str:
    """Unique alert id: millisecond timestamp plus a random component."""
    return f"spend-alert-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def format_push_payload(
    snapshot: CostSnapshot, context: AlertContext,
) -> PushPayload:
    """Build the mobile push notification for an alert.

    Each call generates a fresh alert id.

    Args:
        snapshot: Current cost snapshot.
        context: Alert context for the breach.

    Returns:
        PushPayload ready for APNS serialization.
    """
    critical = context.alert_level is AlertLevel.CRITICAL
    top = context.top_service
    return PushPayload(
        title="Cloud Spend Alert",
        body=(
            f"{_money(snapshot.total_cost)} spent - "
            f"{_money(context.exceed_amount)} over budget"
        ),
        subtitle=(
            "Critical Budget Exceeded" if critical
            else "Budget Threshold Exceeded"
        ),
        badge=1,
        sound="critical-alert.caf" if critical else "default",
        custom_data={
            "spendAmount": float(snapshot.total_cost),
            "threshold": float(context.threshold),
            "exceedAmount": float(context.exceed_amount),
            "topService": top.service_name if top else "Unknown",
            "alertId": new_alert_id(),
        },
    )
