"""Tests for the console formatter and log helpers."""

import logging

from spend_notifier.utils.logger import RESET, ColoredFormatter, token_preview


def _record(level=logging.WARNING, msg="disk almost full"):
    return logging.LogRecord("spend_notifier.test", level, __file__, 1, msg, None, None)


def test_colored_formatter_leaves_record_untouched():
    record = _record()
    console = ColoredFormatter(fmt="%(levelname)s │ %(message)s")
    plain = logging.Formatter(fmt="%(levelname)-8s │ %(message)s")

    colored_line = console.format(record)
    file_line = plain.format(record)

    assert "\033[33m" in colored_line and RESET in colored_line
    assert record.levelname == "WARNING"
    assert "\033[" not in file_line
    assert file_line == "WARNING  │ disk almost full"


def test_colored_formatter_is_repeatable():
    record = _record(logging.ERROR)
    console = ColoredFormatter(fmt="%(levelname)s")
    assert console.format(record) == console.format(record)


def test_token_preview():
    assert token_preview("a" * 64) == "aaaaaaaa..."
    assert token_preview("") == "none"
    assert token_preview(12345678901) == "12345678..."
