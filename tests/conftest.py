"""pytest configuration for Sentinel tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeHandle:
    """In-memory transport handle that records what the relay sends it."""

    def __init__(self, conn_id: str, alive: bool = True):
        self.conn_id = conn_id
        self.alive = alive
        self.sent: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> bool:
        if not self.alive:
            return False
        self.sent.append((event, data))
        return True

    def events(self, name: str) -> list:
        return [data for event, data in self.sent if event == name]

    def __repr__(self) -> str:
        return f"FakeHandle({self.conn_id})"


@pytest.fixture
def make_handle():
    return FakeHandle


async def settle(rounds: int = 10) -> None:
    """Let spawned callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def drain():
    return settle
