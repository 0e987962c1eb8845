"""Spend Notifier — Devices Package.

Mobile push endpoint lifecycle.
Components:
  - gateway: push gateway and feedback source interfaces
  - store: aiosqlite device-token store
  - registry: register / rotate / invalidate state machine
  - handler: device registration API request handler
"""

from spend_notifier.devices.gateway import (
    FeedbackSource,
    GatewayFeedbackSource,
    PushGateway,
    is_valid_device_token,
)
from spend_notifier.devices.handler import ApiRequest, ApiResponse, DeviceRegistrationHandler
from spend_notifier.devices.registry import DeviceRegistry
from spend_notifier.devices.store import DeviceStore

__all__ = [
    "ApiRequest",
    "ApiResponse",
    "DeviceRegistrationHandler",
    "DeviceRegistry",
    "DeviceStore",
    "FeedbackSource",
    "GatewayFeedbackSource",
    "PushGateway",
    "is_valid_device_token",
]
