"""
Shape a raw Vinted catalog response into topic cache entities.

Pure functions: no I/O, no logging side effects beyond debug output.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from core.vinted import DecodeError

from .schemas import Item, ItemCollection, Pagination, Photo, Thumbnail


def _money(value: Any) -> str | None:
    """
    Vinted sends prices either as "12.50" or as {"amount": "12.50", "currency_code": "GBP"}.
    """
    if value is None:
        return None
    if isinstance(value, dict):
        amount = value.get("amount")
        return None if amount is None else str(amount)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    raise DecodeError(f"Unexpected money value: {value!r}")


def _money_currency(value: Any) -> str | None:
    if isinstance(value, dict):
        code = value.get("currency_code")
        return str(code) if code else None
    return None


def _dict(value: Any, field: str) -> dict[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise DecodeError(f"Expected an object for {field!r}, got {type(value).__name__}.")
    return value


def _thumbnail(raw: dict[str, Any]) -> Thumbnail:
    return Thumbnail(
        type=raw.get("type"),
        url=raw.get("url"),
        width=raw.get("width"),
        height=raw.get("height"),
        original_size=raw.get("original_size"),
    )


def _photo(raw: dict[str, Any] | None) -> Photo | None:
    if raw is None or raw.get("id") is None:
        return None

    thumbnails_raw = raw.get("thumbnails") or []
    if not isinstance(thumbnails_raw, list):
        raise DecodeError("Photo thumbnails must be a list.")

    # Vinted occasionally repeats a thumbnail type; the last one wins.
    thumbnails: dict[str, Thumbnail] = {}
    for t in thumbnails_raw:
        thumb = _thumbnail(_dict(t, "thumbnail") or {})
        thumbnails[thumb.type] = thumb

    return Photo(
        id=raw["id"],
        image_no=raw.get("image_no"),
        width=raw.get("width"),
        height=raw.get("height"),
        dominant_color=raw.get("dominant_color"),
        dominant_color_opaque=raw.get("dominant_color_opaque"),
        url=raw.get("url"),
        is_main=raw.get("is_main"),
        is_suspicious=raw.get("is_suspicious"),
        full_size_url=raw.get("full_size_url"),
        is_hidden=raw.get("is_hidden"),
        thumbnails=list(thumbnails.values()),
    )


def normalize_item(raw: dict[str, Any]) -> Item:
    if raw.get("id") is None:
        raise DecodeError("Item without an id.")
    if raw.get("title") is None:
        raise DecodeError(f"Item {raw['id']} has no title.")

    user = _dict(raw.get("user"), "user") or {}
    price = raw.get("price")

    try:
        return Item(
            id=raw["id"],
            title=raw["title"],
            price=_money(price),
            is_visible=raw.get("is_visible"),
            discount=raw.get("discount"),
            currency=raw.get("currency") or _money_currency(price),
            brand_title=raw.get("brand_title"),
            user_id=user.get("id"),
            user_login=user.get("login"),
            url=raw.get("url"),
            promoted=raw.get("promoted"),
            photo=_photo(_dict(raw.get("photo"), "photo")),
            favourite_count=raw.get("favourite_count"),
            is_favourite=raw.get("is_favourite"),
            badge=raw.get("badge"),
            conversion=raw.get("conversion"),
            service_fee=_money(raw.get("service_fee")),
            total_item_price=_money(raw.get("total_item_price")),
            total_item_price_rounded=raw.get("total_item_price_rounded"),
            view_count=raw.get("view_count"),
            size_title=raw.get("size_title"),
            content_source=raw.get("content_source"),
            status=raw.get("status"),
            icon_badges=raw.get("icon_badges"),
            search_tracking_params=_dict(raw.get("search_tracking_params"), "search_tracking_params"),
        )
    except ValidationError as exc:
        raise DecodeError(f"Item {raw.get('id')} does not match the expected shape: {exc}") from exc


def normalize(raw: dict[str, Any]) -> ItemCollection:
    """
    Turn a decoded `/api/v2/catalog/items` body into an `ItemCollection`.

    Raises DecodeError when the body or any item has the wrong shape.
    """
    if not isinstance(raw, dict):
        raise DecodeError("Vinted response must be a JSON object.")

    items_raw = raw.get("items")
    if not isinstance(items_raw, list):
        raise DecodeError("Vinted response has no items list.")

    items = [normalize_item(_dict(it, "item") or {}) for it in items_raw]

    pagination_raw = _dict(raw.get("pagination"), "pagination")
    try:
        pagination = Pagination.model_validate(pagination_raw) if pagination_raw is not None else None
    except ValidationError as exc:
        raise DecodeError(f"Pagination does not match the expected shape: {exc}") from exc

    code = raw.get("code")
    return ItemCollection(
        items=items,
        dominant_brand=raw.get("dominant_brand"),
        search_tracking_params=_dict(raw.get("search_tracking_params"), "search_tracking_params"),
        pagination=pagination,
        code=code if isinstance(code, int) else None,
    )
