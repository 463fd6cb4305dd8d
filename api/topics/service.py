"""
Topic cache orchestration.

Flow for one `(topic, order)` request:
1) Resolve the topic row (created on first sight)
2) Hit: stored items exist -> return them sorted, schedule a background refresh
3) Miss: fetch from Vinted -> shape -> upsert in one transaction -> return

Concurrent misses (and a refresh racing a miss) for the same key share one
fetch through a single-flight group. Nothing here knows about HTTP.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from core import settings
from core.singleflight import SingleFlight
from core.vinted import Order, VintedClient, to_order

from . import shaping
from .refresh import RefreshRegistry
from .repository import NotFoundError, TopicRepository
from .schemas import ItemCollection

logger = logging.getLogger(__name__)


class TopicTimeoutError(RuntimeError):
    pass


@dataclass(frozen=True)
class TopicLookup:
    topic: str
    topic_id: int
    order: Order
    collection: ItemCollection
    from_cache: bool


def clean_topic(topic: str) -> str:
    name = (topic or "").strip()
    if not name:
        raise ValueError("Topic must not be empty.")
    return name


def stored_order(order: Order) -> Order:
    """
    The order cached items are served in. No relevance rank is stored, so
    relevance falls back to newest first.
    """
    return Order.NEWEST_FIRST if order == Order.RELEVANCE else order


class TopicCache:
    def __init__(
        self,
        repository: TopicRepository,
        client: VintedClient,
        registry: RefreshRegistry,
        *,
        currency: str = "GBP",
        timeout_s: float = 30.0,
        refresh_min_interval_s: float = 0.0,
    ) -> None:
        self.repository = repository
        self.client = client
        self.registry = registry
        self.currency = currency
        self.timeout_s = timeout_s
        self.refresh_min_interval_s = refresh_min_interval_s
        self._flights: SingleFlight[ItemCollection] = SingleFlight()

    @classmethod
    def from_env(cls, repository: TopicRepository, client: VintedClient) -> "TopicCache":
        registry = RefreshRegistry(
            timeout_s=settings.topic_refresh_timeout_s(),
            max_pending=settings.topic_refresh_max_pending(),
        )
        return cls(
            repository,
            client,
            registry,
            currency=settings.vinted_currency(),
            timeout_s=settings.topic_request_timeout_s(),
            refresh_min_interval_s=settings.topic_refresh_min_interval_s(),
        )

    async def get_topic(
        self,
        topic: str,
        order: Order | str | None = None,
        *,
        timeout_s: float | None = None,
    ) -> TopicLookup:
        """
        Serve `topic` from storage when possible, otherwise fetch and persist it.

        Raises ValueError for a blank topic, TopicTimeoutError when the deadline
        elapses, and the client's or repository's error when the miss path fails.
        """
        name = clean_topic(topic)
        resolved = order if isinstance(order, Order) else to_order(order)
        deadline = self.timeout_s if timeout_s is None else timeout_s

        try:
            return await asyncio.wait_for(self._get_topic(name, resolved), timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise TopicTimeoutError(f"Topic {name!r} did not resolve within {deadline}s.") from exc

    async def _get_topic(self, name: str, order: Order) -> TopicLookup:
        topic_id = await self.repository.lookup_or_create_topic(name)

        served = stored_order(order)
        try:
            items = await self.repository.items_for_topic(topic_id, served)
        except NotFoundError:
            logger.info("topic_cache_miss topic=%r order=%s topic_id=%s", name, order.value, topic_id)
            collection = await self.fetch_and_store(name, order, topic_id)
            return TopicLookup(name, topic_id, order, collection, from_cache=False)

        logger.info(
            "topic_cache_hit topic=%r order=%s topic_id=%s items=%s",
            name,
            order.value,
            topic_id,
            len(items),
        )
        self.registry.schedule((name, order), lambda: self.refresh(name, order, topic_id))
        return TopicLookup(name, topic_id, served, ItemCollection(items=items), from_cache=True)

    async def fetch_and_store(self, name: str, order: Order, topic_id: int) -> ItemCollection:
        return await self._flights.do(
            (name, order),
            lambda: self._fetch_and_store(name, order, topic_id),
        )

    async def _fetch_and_store(self, name: str, order: Order, topic_id: int) -> ItemCollection:
        raw = await self.client.search(name, order, self.currency)
        collection = shaping.normalize(raw)
        await self.repository.upsert_items(collection.items, topic_id)
        return collection

    async def refresh(self, name: str, order: Order, topic_id: int) -> ItemCollection | None:
        """
        Background refresh body. Returns None when the stored copy is still fresh.
        """
        if self.refresh_min_interval_s > 0:
            refreshed_at = await self.repository.topic_refreshed_at(topic_id)
            if refreshed_at is not None and _age(refreshed_at) < timedelta(seconds=self.refresh_min_interval_s):
                logger.debug("topic_refresh_fresh topic=%r order=%s", name, order.value)
                return None
        return await self.fetch_and_store(name, order, topic_id)

    async def close(self) -> None:
        await self.registry.shutdown()


def _age(ts: datetime) -> timedelta:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - ts
