"""Spend Notifier — Configuration Loader.

Loads and validates application configuration from config/settings.yaml.
Resolves environment variables referenced via ${VAR_NAME} syntax after
loading the project .env file. Uses frozen dataclasses for type-safe
configuration access.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from spend_notifier.utils.errors import ConfigurationError
from spend_notifier.utils.logger import get_logger
from spend_notifier.utils.resilience import RetryPolicy

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)}")


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AlertConfig:
    """Where alerts go and when they fire."""

    topic_arn: str
    threshold: Decimal
    min_service_cost: Decimal = Decimal("1")
    top_service_limit: int = 5


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings for publish and gateway calls (seconds)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
        )


@dataclass(frozen=True)
class PushConfig:
    """Mobile push platform settings.

    Attributes:
        enabled: Whether alerts include the push channel.
        platform_application_arn: Gateway platform application handle.
        bundle_id: Mobile app bundle identifier.
        sandbox: Publish with the APNS_SANDBOX protocol key.
    """

    enabled: bool
    platform_application_arn: str
    bundle_id: str
    sandbox: bool = False

    @property
    def protocol(self) -> str:
        return "APNS_SANDBOX" if self.sandbox else "APNS"


@dataclass(frozen=True)
class HealthConfig:
    """Push health monitor settings."""

    certificate_warning_days: int = 30
    interval_minutes: int = 60


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    alert: AlertConfig
    retry: RetryConfig
    push: PushConfig
    health: HealthConfig
    database_path: str
    log_level: str
    alert_interval_minutes: int
    metrics_namespace: str = "SpendMonitor"


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR_NAME} references in YAML values.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with all ${VAR_NAME} placeholders replaced
        by their environment variable values.

    Raises:
        ConfigurationError: If a referenced environment variable is not set.
    """
    if isinstance(value, str):
        for var_name in ENV_VAR_PATTERN.findall(value):
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '${{{var_name}}}' is required but not set. "
                    f"Add it to your .env file or export it in your shell."
                )
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        ConfigurationError: If the file is missing, empty or invalid YAML.
    """
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not data:
        raise ConfigurationError(f"Configuration file is empty: {path}")

    logger.debug("Loaded configuration from %s", path)
    return data


def _as_bool(value: Any) -> bool:
    # Env-substituted values arrive as strings.
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}") from e


# ═══════════════════════════════════════════════════════════
# Dataclass Builders
# ═══════════════════════════════════════════════════════════


def _build_alert_config(data: dict[str, Any]) -> AlertConfig:
    """Build an AlertConfig from the 'alert' section.

    Raises:
        ConfigurationError: If the threshold is missing or not positive.
    """
    _validate_keys(data, ["topic_arn", "threshold"], "alert")

    threshold = _as_decimal(data["threshold"], "alert.threshold")
    if threshold <= 0:
        raise ConfigurationError(
            f"alert.threshold must be positive, got {threshold}"
        )

    return AlertConfig(
        topic_arn=str(data["topic_arn"]),
        threshold=threshold,
        min_service_cost=_as_decimal(
            data.get("min_service_cost", 1), "alert.min_service_cost",
        ),
        top_service_limit=int(data.get("top_service_limit", 5)),
    )


def _build_retry_config(data: dict[str, Any]) -> RetryConfig:
    config = RetryConfig(
        max_attempts=int(data.get("max_attempts", 3)),
        base_delay=float(data.get("base_delay_seconds", 1.0)),
        max_delay=float(data.get("max_delay_seconds", 30.0)),
        backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
    )
    config.to_policy()  # raises ConfigurationError on bad values
    return config


def _build_push_config(data: dict[str, Any]) -> PushConfig:
    """Build a PushConfig from the 'push' section.

    The platform application and bundle id are only required when push
    is enabled.
    """
    enabled = _as_bool(data.get("enabled", False))
    if enabled:
        _validate_keys(data, ["platform_application_arn", "bundle_id"], "push")

    return PushConfig(
        enabled=enabled,
        platform_application_arn=str(data.get("platform_application_arn", "")),
        bundle_id=str(data.get("bundle_id", "")),
        sandbox=_as_bool(data.get("sandbox", False)),
    )


def _build_health_config(data: dict[str, Any]) -> HealthConfig:
    return HealthConfig(
        certificate_warning_days=int(data.get("certificate_warning_days", 30)),
        interval_minutes=int(data.get("interval_minutes", 60)),
    )


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Validate that all required keys exist in a config section.

    Raises:
        ConfigurationError: If any required key is missing.
    """
    missing = [key for key in required if key not in data]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def load_config(
    settings_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> AppConfig:
    """Load the complete application configuration.

    Loads the .env file, parses settings.yaml, resolves environment
    variables, validates all required fields, and returns a typed
    AppConfig instance.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.

    Returns:
        A fully validated AppConfig instance.

    Raises:
        ConfigurationError: If the file is missing, a required field is
            absent, or a referenced env var is unset.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    settings = _resolve_env_vars(_load_yaml(settings_path or SETTINGS_PATH))
    _validate_keys(settings, ["alert", "database", "logging"], "settings")

    scheduler = settings.get("scheduler") or {}
    config = AppConfig(
        alert=_build_alert_config(settings["alert"]),
        retry=_build_retry_config(settings.get("retry") or {}),
        push=_build_push_config(settings.get("push") or {}),
        health=_build_health_config(settings.get("health") or {}),
        database_path=settings["database"]["path"],
        log_level=settings["logging"].get("level", "INFO"),
        alert_interval_minutes=int(scheduler.get("alert_interval_minutes", 60)),
        metrics_namespace=settings.get("metrics", {}).get(
            "namespace", "SpendMonitor",
        ),
    )

    logger.info("Configuration loaded successfully")
    logger.debug("Database path: %s", config.database_path)
    logger.debug("Alert threshold: %s", config.alert.threshold)
    logger.debug("Push channel enabled: %s", config.push.enabled)

    return config
