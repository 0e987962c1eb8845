#!/usr/bin/env python3
"""Spend Notifier — Pre-flight Checker.

Validates the environment and configuration a deployment needs before
it assembles SpendNotifier with its cost source, publish destination
and push gateway adapters.

Usage:
    python scripts/run.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

BANNER = r"""
╔══════════════════════════════════════════════════════════╗
║                                                          ║
║              Spend Notifier v1.0                         ║
║     Cloud Spend Alerts · Email · SMS · Mobile Push       ║
║                                                          ║
╚══════════════════════════════════════════════════════════╝
"""

REQUIRED_ENV_VARS = [
    "SPEND_ALERT_TOPIC_ARN",
]

REQUIRED_FILES = [
    "config/settings.yaml",
]


def _masked(value: str) -> str:
    return value[:12] + "..." + value[-6:] if len(value) > 24 else "***"


def preflight_checks() -> bool:
    """Run pre-flight checks.

    Checks:
      - .env file exists
      - Required environment variables are set
      - settings.yaml exists and loads
      - Alert topic and push settings are usable
      - data/ and logs/ directories exist (creates them)

    Returns:
        True if all checks pass, False otherwise.
    """
    os.chdir(str(PROJECT_ROOT))
    ok = True

    env_path = PROJECT_ROOT / ".env"
    if not env_path.exists():
        print("⚠️  .env file not found, using the shell environment")
        print("   Copy .env.example to .env to keep settings in one place.")
    else:
        from dotenv import load_dotenv
        load_dotenv(env_path)
        print("✅ .env loaded")

    for var in REQUIRED_ENV_VARS:
        val = os.environ.get(var, "")
        if not val:
            print(f"❌ {var} not set")
            ok = False
        else:
            print(f"✅ {var} = {_masked(val)}")

    for f in REQUIRED_FILES:
        if not (PROJECT_ROOT / f).exists():
            print(f"❌ {f} not found!")
            ok = False
        else:
            print(f"✅ {f} exists")

    for d in ("data", "logs"):
        (PROJECT_ROOT / d).mkdir(exist_ok=True)
        print(f"✅ {d}/ directory ready")

    if not ok:
        return False

    from spend_notifier.config import load_config
    from spend_notifier.notifier.destination import is_valid_topic_arn
    from spend_notifier.utils.errors import ConfigurationError

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"❌ Configuration invalid: {e}")
        return False
    print(f"✅ Configuration loaded (threshold ${config.alert.threshold})")

    if not is_valid_topic_arn(config.alert.topic_arn):
        print(f"❌ alert.topic_arn is not a valid topic ARN: {config.alert.topic_arn}")
        ok = False
    else:
        print("✅ Alert topic ARN valid")

    if config.push.enabled:
        print(f"✅ Push enabled ({config.push.protocol}, bundle {config.push.bundle_id})")
    else:
        print("⚠️  Push disabled (alerts go to email and SMS only)")

    return ok


def main() -> None:
    """Entry point: run checks and report."""
    print(BANNER)

    print("═══ Pre-flight Checks ═══\n")
    if not preflight_checks():
        print("\n❌ Pre-flight checks failed! Fix the issues above and try again.")
        sys.exit(1)

    print("\n✅ All checks passed!")


if __name__ == "__main__":
    main()
