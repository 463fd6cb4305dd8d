"""
Topic cache persistence.
This module is where topic/item/photo/thumbnail SQL lives.

Writes go through `upsert_items` only: one transaction per batch, photos and
thumbnails written before the item that references them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

import asyncpg

from core.db import Database
from core.vinted import Order

from .schema import SCHEMA_SQL
from .schemas import Item, Photo, Thumbnail

logger = logging.getLogger(__name__)

# Errors asyncpg raises for a broken statement or a broken connection.
_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PersistenceError(RuntimeError):
    def __init__(self, message: str, *, item_id: int | None = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class NotFoundError(RuntimeError):
    pass


# Prices are stored as the decimal strings Vinted sends.
_PRICE_SQL = "CASE WHEN i.price ~ '^-?[0-9]+(\\.[0-9]+)?$' THEN i.price::numeric END"

_ORDER_BY_SQL = {
    Order.NEWEST_FIRST: "i.id DESC",
    Order.RELEVANCE: "i.id DESC",
    Order.PRICE_LOW_TO_HIGH: f"{_PRICE_SQL} ASC NULLS LAST, i.id DESC",
    Order.PRICE_HIGH_TO_LOW: f"{_PRICE_SQL} DESC NULLS LAST, i.id DESC",
}


_UPSERT_PHOTO_SQL = """
INSERT INTO photos (
  id, image_no, width, height, dominant_color, dominant_color_opaque,
  url, is_main, is_suspicious, full_size_url, is_hidden
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
ON CONFLICT (id) DO UPDATE
SET image_no = EXCLUDED.image_no,
    width = EXCLUDED.width,
    height = EXCLUDED.height,
    dominant_color = EXCLUDED.dominant_color,
    dominant_color_opaque = EXCLUDED.dominant_color_opaque,
    url = EXCLUDED.url,
    is_main = EXCLUDED.is_main,
    is_suspicious = EXCLUDED.is_suspicious,
    full_size_url = EXCLUDED.full_size_url,
    is_hidden = EXCLUDED.is_hidden
"""

_UPSERT_THUMBNAIL_SQL = """
INSERT INTO thumbnails (photo_id, type, url, width, height, original_size)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (photo_id, type) DO UPDATE
SET url = EXCLUDED.url,
    width = EXCLUDED.width,
    height = EXCLUDED.height,
    original_size = EXCLUDED.original_size
"""

_UPSERT_ITEM_SQL = """
INSERT INTO items (
  id, title, price, is_visible, discount, currency, brand_title,
  user_id, user_login, url, promoted, photo_id, favourite_count, is_favourite,
  badge, conversion, service_fee, total_item_price, total_item_price_rounded,
  view_count, size_title, content_source, status, icon_badges,
  search_tracking_params, topic_id
)
VALUES (
  $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
  $14, $15, $16, $17, $18, $19, $20, $21, $22, $23, $24, $25, $26
)
ON CONFLICT (id) DO UPDATE
SET title = EXCLUDED.title,
    price = EXCLUDED.price,
    is_visible = EXCLUDED.is_visible,
    discount = EXCLUDED.discount,
    currency = EXCLUDED.currency,
    brand_title = EXCLUDED.brand_title,
    user_id = EXCLUDED.user_id,
    user_login = EXCLUDED.user_login,
    url = EXCLUDED.url,
    promoted = EXCLUDED.promoted,
    photo_id = EXCLUDED.photo_id,
    favourite_count = EXCLUDED.favourite_count,
    is_favourite = EXCLUDED.is_favourite,
    badge = EXCLUDED.badge,
    conversion = EXCLUDED.conversion,
    service_fee = EXCLUDED.service_fee,
    total_item_price = EXCLUDED.total_item_price,
    total_item_price_rounded = EXCLUDED.total_item_price_rounded,
    view_count = EXCLUDED.view_count,
    size_title = EXCLUDED.size_title,
    content_source = EXCLUDED.content_source,
    status = EXCLUDED.status,
    icon_badges = EXCLUDED.icon_badges,
    search_tracking_params = EXCLUDED.search_tracking_params,
    topic_id = EXCLUDED.topic_id,
    updated_at = now()
"""


def _photo_from_row(row: dict[str, Any], thumbnails: list[Thumbnail]) -> Photo:
    return Photo(
        id=row["p_id"],
        image_no=row["p_image_no"],
        width=row["p_width"],
        height=row["p_height"],
        dominant_color=row["p_dominant_color"],
        dominant_color_opaque=row["p_dominant_color_opaque"],
        url=row["p_url"],
        is_main=row["p_is_main"],
        is_suspicious=row["p_is_suspicious"],
        full_size_url=row["p_full_size_url"],
        is_hidden=row["p_is_hidden"],
        thumbnails=thumbnails,
    )


def _item_from_row(row: dict[str, Any], photo: Photo | None) -> Item:
    return Item(
        id=row["id"],
        title=row["title"],
        price=row["price"],
        is_visible=row["is_visible"],
        discount=row["discount"],
        currency=row["currency"],
        brand_title=row["brand_title"],
        user_id=row["user_id"],
        user_login=row["user_login"],
        url=row["url"],
        promoted=row["promoted"],
        photo=photo,
        favourite_count=row["favourite_count"],
        is_favourite=row["is_favourite"],
        badge=row["badge"],
        conversion=row["conversion"],
        service_fee=row["service_fee"],
        total_item_price=row["total_item_price"],
        total_item_price_rounded=row["total_item_price_rounded"],
        view_count=row["view_count"],
        size_title=row["size_title"],
        content_source=row["content_source"],
        status=row["status"],
        icon_badges=row["icon_badges"],
        search_tracking_params=row["search_tracking_params"],
    )


async def apply_schema(db: Database) -> None:
    """
    Create the topic cache tables if they don't exist yet.
    """
    await db.execute(SCHEMA_SQL)
    logger.info("topic_schema_applied")


class TopicRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def lookup_or_create_topic(self, name: str) -> int:
        """
        Return the id of topic `name`, creating the row on first use.

        A single conflict-resolving INSERT, so concurrent callers with the
        same name all get the same id.
        """
        try:
            row = await self.db.fetch_one(
                """
                INSERT INTO topics (name)
                VALUES ($1)
                ON CONFLICT (name) DO UPDATE
                SET name = EXCLUDED.name
                RETURNING id
                """,
                name,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to look up topic {name!r}: {exc}") from exc
        if row is None:
            raise PersistenceError(f"Failed to look up topic {name!r}.")
        return int(row["id"])

    async def topic_refreshed_at(self, topic_id: int) -> datetime | None:
        try:
            row = await self.db.fetch_one("SELECT refreshed_at FROM topics WHERE id = $1", topic_id)
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to read topic {topic_id}: {exc}") from exc
        return None if row is None else row["refreshed_at"]

    async def upsert_items(self, items: list[Item], topic_id: int) -> None:
        """
        Insert-or-update a batch of items (with photos and thumbnails) under `topic_id`.

        All-or-nothing: the first failing item rolls back the whole batch and
        is named in the raised PersistenceError.
        """
        try:
            async with self.db.transaction() as conn:
                for item in items:
                    try:
                        await self._upsert_item(conn, item, topic_id)
                    except _DB_ERRORS as exc:
                        raise PersistenceError(
                            f"Failed to upsert item {item.id}: {exc}",
                            item_id=item.id,
                        ) from exc
                await conn.execute("UPDATE topics SET refreshed_at = now() WHERE id = $1", topic_id)
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to commit items for topic {topic_id}: {exc}") from exc

        logger.info("topic_items_upserted topic_id=%s count=%s", topic_id, len(items))

    async def _upsert_item(self, conn: asyncpg.Connection, item: Item, topic_id: int) -> None:
        photo = item.photo
        if photo is not None:
            await conn.execute(
                _UPSERT_PHOTO_SQL,
                photo.id,
                photo.image_no,
                photo.width,
                photo.height,
                photo.dominant_color,
                photo.dominant_color_opaque,
                photo.url,
                photo.is_main,
                photo.is_suspicious,
                photo.full_size_url,
                photo.is_hidden,
            )
            if photo.thumbnails:
                await conn.executemany(
                    _UPSERT_THUMBNAIL_SQL,
                    [(photo.id, t.type, t.url, t.width, t.height, t.original_size) for t in photo.thumbnails],
                )

        await conn.execute(
            _UPSERT_ITEM_SQL,
            item.id,
            item.title,
            item.price,
            item.is_visible,
            item.discount,
            item.currency,
            item.brand_title,
            item.user_id,
            item.user_login,
            item.url,
            item.promoted,
            photo.id if photo is not None else None,
            item.favourite_count,
            item.is_favourite,
            item.badge,
            item.conversion,
            item.service_fee,
            item.total_item_price,
            item.total_item_price_rounded,
            item.view_count,
            item.size_title,
            item.content_source,
            item.status,
            item.icon_badges,
            item.search_tracking_params,
            topic_id,
        )

    async def items_for_topic(self, topic_id: int, order: Order = Order.NEWEST_FIRST) -> list[Item]:
        """
        Read every stored item for a topic in `order`, with photo and thumbnails.

        Stored items carry no relevance rank, so `relevance` reads newest first.
        Raises NotFoundError when the topic has no items.
        """
        order_by = _ORDER_BY_SQL[Order(order)]
        try:
            rows = await self.db.fetch_all(
                f"""
                SELECT
                  i.*,
                  p.id AS p_id,
                  p.image_no AS p_image_no,
                  p.width AS p_width,
                  p.height AS p_height,
                  p.dominant_color AS p_dominant_color,
                  p.dominant_color_opaque AS p_dominant_color_opaque,
                  p.url AS p_url,
                  p.is_main AS p_is_main,
                  p.is_suspicious AS p_is_suspicious,
                  p.full_size_url AS p_full_size_url,
                  p.is_hidden AS p_is_hidden
                FROM items i
                LEFT JOIN photos p ON p.id = i.photo_id
                WHERE i.topic_id = $1
                ORDER BY {order_by}
                """,
                topic_id,
            )
            if not rows:
                raise NotFoundError(f"Topic {topic_id} has no stored items.")

            photo_ids = [r["p_id"] for r in rows if r["p_id"] is not None]
            thumb_rows = await self.db.fetch_all(
                """
                SELECT photo_id, type, url, width, height, original_size
                FROM thumbnails
                WHERE photo_id = ANY($1::bigint[])
                ORDER BY photo_id, type
                """,
                photo_ids,
            ) if photo_ids else []
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to read items for topic {topic_id}: {exc}") from exc

        thumbnails: dict[int, list[Thumbnail]] = {}
        for t in thumb_rows:
            thumbnails.setdefault(t["photo_id"], []).append(
                Thumbnail(
                    type=t["type"],
                    url=t["url"],
                    width=t["width"],
                    height=t["height"],
                    original_size=t["original_size"],
                )
            )

        items: list[Item] = []
        for r in rows:
            photo = _photo_from_row(r, thumbnails.get(r["p_id"], [])) if r["p_id"] is not None else None
            items.append(_item_from_row(r, photo))
        return items
