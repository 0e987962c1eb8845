"""Spend Notifier — shared utilities (logging, errors, retry, metrics)."""
