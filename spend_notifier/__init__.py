"""Spend Notifier — cloud spend alerts over email, SMS and mobile push."""

__version__ = "1.0.0"
