"""
Topic cache entities.

`None` is the explicit "absent" marker for every nullable field; it is
stored as SQL NULL and serialised as JSON null. Monetary fields are opaque
decimal strings exactly as Vinted sends them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Thumbnail(BaseModel):
    type: str = Field(..., min_length=1)
    url: str | None = None
    width: int | None = None
    height: int | None = None
    original_size: Any = None


class Photo(BaseModel):
    id: int
    image_no: int | None = None
    width: int | None = None
    height: int | None = None
    dominant_color: str | None = None
    dominant_color_opaque: str | None = None
    url: str | None = None
    is_main: bool | None = None
    is_suspicious: bool | None = None
    full_size_url: str | None = None
    is_hidden: bool | None = None
    thumbnails: list[Thumbnail] = Field(default_factory=list)


class Item(BaseModel):
    id: int
    title: str
    price: str | None = None
    is_visible: bool | None = None
    discount: Any = None
    currency: str | None = None
    brand_title: str | None = None
    user_id: int | None = None
    user_login: str | None = None
    url: str | None = None
    promoted: bool | None = None
    photo: Photo | None = None
    favourite_count: int | None = None
    is_favourite: bool | None = None
    badge: Any = None
    conversion: Any = None
    service_fee: str | None = None
    total_item_price: str | None = None
    total_item_price_rounded: Any = None
    view_count: int | None = None
    size_title: str | None = None
    content_source: str | None = None
    status: str | None = None
    icon_badges: list[Any] | None = None
    search_tracking_params: dict[str, Any] | None = None


class Pagination(BaseModel):
    current_page: int | None = None
    total_pages: int | None = None
    total_entries: int | None = None
    per_page: int | None = None
    time: int | None = None


class ItemCollection(BaseModel):
    # Only `items` is persisted; the rest describes one upstream search.
    items: list[Item] = Field(default_factory=list)
    dominant_brand: Any = None
    search_tracking_params: dict[str, Any] | None = None
    pagination: Pagination | None = None
    code: int | None = None
