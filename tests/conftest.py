"""Shared pytest fixtures for display watchdog tests.

Fakes live in ``tests.mocks`` and builders in ``tests.helpers``; prefer
direct instantiation of those in tests. The fixtures here cover the few
pieces of global state tests must not leak: environment variables and the
root logger configuration.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from unittest import mock

import pytest

from display_watchdog.tracker import DeviceFailureTracker, HealthTable


@pytest.fixture
def clean_env() -> Iterator[None]:
    """Run the test with no WATCHDOG_* variables in the environment."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("WATCHDOG_")}
    with mock.patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Restore root and package logger state after tests that call setup_logging."""
    root = logging.getLogger()
    package_logger = logging.getLogger("display_watchdog")
    httpx_logger = logging.getLogger("httpx")
    saved = (root.level, root.handlers[:], package_logger.level, httpx_logger.level)
    yield
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    package_logger.setLevel(saved[2])
    httpx_logger.setLevel(saved[3])


@pytest.fixture
def tracker() -> DeviceFailureTracker:
    return DeviceFailureTracker(HealthTable(), summary_interval=300.0)
