"""
Pytest configuration for clawgate tests

Shared fixtures for cron/gateway tests
"""
import asyncio
import time
from unittest.mock import Mock

import pytest


async def _wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_for():
    """Poll until predicate() is truthy; fail the test on timeout"""
    return _wait_for


@pytest.fixture
def store_path(tmp_path):
    """Cron store path whose parent directory does not exist yet"""
    return tmp_path / "state" / "cron" / "jobs.json"


@pytest.fixture
def log():
    """Leveled logger double"""
    return Mock()
