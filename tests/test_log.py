"""Unit tests for the loguru setup."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator

import pytest
from loguru import logger

from tabspaces.overlay.log import setup_logging


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    noisy = {name: logging.getLogger(name).level for name in ("redis", "asyncio")}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, noisy_level in noisy.items():
        logging.getLogger(name).setLevel(noisy_level)
    logger.remove()
    logger.add(sys.stderr)


def test_stdlib_records_reach_loguru(restore_logging: None) -> None:
    setup_logging("info")
    messages: list[str] = []
    logger.add(messages.append, format="{level} {message}")

    logging.getLogger("tabspaces.overlay.discard").warning("Could not move focus away from active tab %s", 5)

    assert [m.strip() for m in messages] == ["WARNING Could not move focus away from active tab 5"]


def test_third_party_loggers_follow_the_level(restore_logging: None) -> None:
    setup_logging("INFO")
    assert logging.getLogger("redis").level == logging.WARNING

    setup_logging("DEBUG")
    assert logging.getLogger("redis").level == logging.DEBUG
