"""
Shared fixtures and in-memory fakes for the topic cache tests.
"""

from __future__ import annotations

import asyncio
import copy
import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from core.vinted import Order
from topics.repository import NotFoundError
from topics.schemas import Item

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def catalog_payload() -> dict[str, Any]:
    """A decoded /api/v2/catalog/items body with three items."""
    return json.loads((FIXTURES / "catalog_items.json").read_text())


class FakeRepository:
    """Dict-backed stand-in for TopicRepository."""

    def __init__(self) -> None:
        self.topics: dict[str, int] = {}
        self.items: dict[int, dict[int, Item]] = {}
        self.refreshed_at: dict[int, datetime] = {}
        self.upserts: list[tuple[int, list[int]]] = []
        self.reads: list[tuple[int, Order]] = []

    async def lookup_or_create_topic(self, name: str) -> int:
        return self.topics.setdefault(name, len(self.topics) + 1)

    async def topic_refreshed_at(self, topic_id: int) -> datetime | None:
        return self.refreshed_at.get(topic_id)

    async def upsert_items(self, items: list[Item], topic_id: int) -> None:
        for stored in self.items.values():
            for item in items:
                stored.pop(item.id, None)
        bucket = self.items.setdefault(topic_id, {})
        for item in items:
            bucket[item.id] = item
        self.upserts.append((topic_id, [i.id for i in items]))

    async def items_for_topic(self, topic_id: int, order: Order = Order.NEWEST_FIRST) -> list[Item]:
        bucket = self.items.get(topic_id) or {}
        if not bucket:
            raise NotFoundError(f"Topic {topic_id} has no stored items.")
        self.reads.append((topic_id, order))
        items = sorted(bucket.values(), key=lambda i: i.id, reverse=True)
        if order in (Order.PRICE_LOW_TO_HIGH, Order.PRICE_HIGH_TO_LOW):
            priced = [i for i in items if i.price is not None]
            unpriced = [i for i in items if i.price is None]
            priced.sort(key=lambda i: Decimal(i.price), reverse=order == Order.PRICE_HIGH_TO_LOW)
            items = priced + unpriced
        return items


class FakeVintedClient:
    """Records searches; optionally blocks on `gate` or raises `error`."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        self.calls: list[tuple[str, Order, str]] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.cleanup_s = 0.0

    async def search(self, topic: str, order: Order, currency: str) -> dict[str, Any]:
        self.calls.append((topic, order, currency))
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                # Simulates a client that needs time to unwind when cancelled.
                if self.cleanup_s:
                    await asyncio.sleep(self.cleanup_s)
                raise
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def fake_client(catalog_payload) -> FakeVintedClient:
    return FakeVintedClient(catalog_payload)
