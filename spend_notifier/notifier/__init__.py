"""Spend Notifier — Notifier Package.

Multi-channel spend alert delivery.
Components:
  - formatters: long, SMS and push representations of one alert
  - destination: publish request and topic client interface
  - dispatcher: retried publish with push fallback
"""

from spend_notifier.notifier.destination import PublishDestination, PublishRequest
from spend_notifier.notifier.dispatcher import AlertDispatcher
from spend_notifier.notifier.formatters import (
    compute_alert_context,
    format_long_message,
    format_push_payload,
    format_short_message,
    rank_top_services,
)

__all__ = [
    "AlertDispatcher",
    "PublishDestination",
    "PublishRequest",
    "compute_alert_context",
    "format_long_message",
    "format_push_payload",
    "format_short_message",
    "rank_top_services",
]
