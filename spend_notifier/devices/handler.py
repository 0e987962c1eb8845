"""Spend Notifier — Device Registration Request Handler.

Framework-neutral handler for the device registration API. Any HTTP
front end (API gateway event, ASGI app...) converts its request into an
ApiRequest and returns the ApiResponse:

  POST   /devices                 register  {deviceToken, userId?}
  PUT    /devices                 rotate    {currentToken, newToken}
  GET    /devices?userId=&limit=  list a user's active devices
  DELETE /devices/{deviceToken}   unregister
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote

from spend_notifier.devices.gateway import is_valid_device_token
from spend_notifier.devices.registry import DeviceRegistry
from spend_notifier.models import utcnow
from spend_notifier.utils.errors import DeviceNotFoundError, ValidationError
from spend_notifier.utils.logger import get_logger

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Api-Key",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
    "Content-Type": "application/json",
}
DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


@dataclass
class ApiRequest:
    method: str
    path: str
    body: Optional[str] = None
    query: dict[str, str] = field(default_factory=dict)


@dataclass
class ApiResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    def json(self) -> str:
        return json.dumps(self.body) if self.body else ""


def _error(status: int, message: str) -> ApiResponse:
    return ApiResponse(status, {"success": False, "error": message})


def _parse_body(request: ApiRequest) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        ValidationError: If the body is missing or not a JSON object.
    """
    if not request.body:
        raise ValidationError("Request body is required")
    try:
        data = json.loads(request.body)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Request body is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


class DeviceRegistrationHandler:
    """Routes device API requests to the DeviceRegistry.

    Validation problems map to 400, unknown devices to 404 and any
    other failure to 500; the handler itself never raises.
    """

    def __init__(self, registry: DeviceRegistry) -> None:
        self.registry = registry

    async def handle(self, request: ApiRequest) -> ApiResponse:
        method = request.method.upper()
        path = request.path.rstrip("/") or "/"
        logger.info("Device API %s %s", method, path)

        if method == "OPTIONS":
            return ApiResponse(200)

        try:
            if path == "/devices" and method == "POST":
                return await self._register(request)
            if path == "/devices" and method == "PUT":
                return await self._update(request)
            if path == "/devices" and method == "GET":
                return await self._list(request)
            if path.startswith("/devices/") and method == "DELETE":
                return await self._delete(path[len("/devices/"):])
            return _error(404, "Not Found")
        except ValidationError as e:
            return _error(400, str(e))
        except DeviceNotFoundError:
            return _error(404, "Device not found")
        except Exception as e:
            logger.error("Device API %s %s failed: %s", method, path, e)
            return _error(500, str(e) or "Internal Server Error")

    async def _register(self, request: ApiRequest) -> ApiResponse:
        data = _parse_body(request)
        token = data.get("deviceToken")
        if not token:
            raise ValidationError("Device token is required")

        registration = await self.registry.register(token, data.get("userId"))
        return ApiResponse(201, {
            "success": True,
            "platformEndpointArn": registration.platform_endpoint_arn,
            "registrationDate": registration.registration_date.isoformat(),
        })

    async def _update(self, request: ApiRequest) -> ApiResponse:
        data = _parse_body(request)
        current = data.get("currentToken", "")
        new = data.get("newToken", "")
        if not (is_valid_device_token(current) and is_valid_device_token(new)):
            raise ValidationError("Invalid device token format")

        existing = await self.registry.get(current)
        if existing is None:
            raise DeviceNotFoundError("Device not found")

        rotated = await self.registry.update_token(
            existing.platform_endpoint_arn, new,
        )
        return ApiResponse(200, {
            "success": True,
            "platformEndpointArn": rotated.platform_endpoint_arn,
            "lastUpdated": rotated.last_updated.isoformat(),
        })

    async def _list(self, request: ApiRequest) -> ApiResponse:
        user_id = request.query.get("userId")
        if not user_id:
            raise ValidationError("userId query parameter is required")
        try:
            limit = int(request.query.get("limit", DEFAULT_LIST_LIMIT))
        except ValueError as e:
            raise ValidationError("limit must be an integer") from e
        limit = max(1, min(limit, MAX_LIST_LIMIT))

        devices = await self.registry.list_devices(user_id, limit)
        return ApiResponse(200, {
            "success": True,
            "devices": [d.to_dict() for d in devices],
        })

    async def _delete(self, raw_token: str) -> ApiResponse:
        token = unquote(raw_token)
        if not token:
            raise ValidationError("Device token path parameter is required")

        await self.registry.unregister(token)
        return ApiResponse(200, {
            "success": True,
            "deletedAt": utcnow().isoformat(),
        })
