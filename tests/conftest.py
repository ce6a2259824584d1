from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from app.schemas.items import Item
from app.services.item_store import StoreChangeHandler, StoreWatch


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryItemStore:
    """Item store double with a version counter as modification marker."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.items = [Item.model_validate(r) for r in records or []]
        self.version = 0
        self.reads = 0
        self.failures_left = 0
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    def set_items(self, records: list[dict[str, Any]]) -> None:
        self.items = [Item.model_validate(r) for r in records]
        self.version += 1

    def touch(self) -> None:
        """Bump the marker without changing the content."""
        self.version += 1

    def fail(self, error: Exception, times: int = 1_000_000) -> None:
        self.error = error
        self.failures_left = times

    async def read(self) -> list[Item]:
        self.reads += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None and self.failures_left > 0:
            self.failures_left -= 1
            raise self.error
        return list(self.items)

    def marker(self) -> int:
        return self.version

    def watch(self, handler: StoreChangeHandler, interval: float = 1.0) -> StoreWatch:
        return StoreWatch(self.marker, handler, interval=interval)


async def settle(rounds: int = 5) -> None:
    """Let pending background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryItemStore:
    return InMemoryItemStore(
        [
            {"id": 1, "name": "Laptop", "price": 100},
            {"id": 2, "name": "Headphones", "price": 200},
        ]
    )


@pytest.fixture
def items_file(tmp_path: Path) -> Path:
    path = tmp_path / "items.json"
    path.write_text(
        json.dumps(
            [
                {"id": 1, "name": "Test Item 1", "category": "Test", "price": 100},
                {"id": 2, "name": "Test Item 2", "category": "Test", "price": 200},
                {"id": 3, "name": "Desk Lamp", "category": "Home", "price": 30},
            ]
        ),
        encoding="utf-8",
    )
    return path
