"""
Vinted catalog search client.

Used endpoints:
- GET /                      -> Set-Cookie with the anonymous session cookie
- GET /api/v2/catalog/items  -> {"items": [...], "pagination": {...}, ...}

The client only talks to the network. It never retries and never touches
the database; shaping the payload into entities lives in `topics/shaping.py`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SEARCH_PATH = "/api/v2/catalog/items"
ACCEPT_HEADER = "application/json, text/plain, */*"


class Order(str, Enum):
    NEWEST_FIRST = "newest_first"
    RELEVANCE = "relevance"
    PRICE_HIGH_TO_LOW = "price_high_to_low"
    PRICE_LOW_TO_HIGH = "price_low_to_high"


def to_order(value: str | None) -> Order:
    """
    Map a free-form order string to `Order`. Unknown values mean newest first.
    """
    raw = (value or "").strip().lower()
    try:
        return Order(raw)
    except ValueError:
        return Order.NEWEST_FIRST


# Vinted failures are explicit and separable from other runtime errors.
class VintedError(RuntimeError):
    pass


class CredentialError(VintedError):
    pass


class TransportError(VintedError):
    pass


class DecodeError(VintedError):
    pass


def _normalize_base_url(base_url: str) -> str:
    base_url = (base_url or "").strip()
    if not base_url:
        raise VintedError("VINTED_BASE_URL is empty.")
    return base_url.rstrip("/")


def _find_cookie(set_cookie_headers: list[str], name: str) -> str | None:
    for header in set_cookie_headers:
        for part in header.split(";"):
            part = part.strip()
            if part.startswith(f"{name}="):
                return part
    return None


class VintedClient:
    def __init__(
        self,
        base_url: str,
        *,
        user_agent: str = "Mozilla/5.0",
        session_cookie_name: str = "_vinted_fr_session",
        cookie: str = "",
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = _normalize_base_url(base_url)
        self.user_agent = user_agent
        self.session_cookie_name = session_cookie_name
        self.cookie = cookie
        self.timeout_s = timeout_s
        # Tests pass an httpx.MockTransport here.
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
            headers={"User-Agent": self.user_agent},
        )

    async def fetch_session_cookie(self, client: httpx.AsyncClient) -> str:
        """
        Return the `name=value` session cookie handed out by the site root.
        """
        headers = {"Cookie": self.cookie} if self.cookie else {}
        try:
            resp = await client.get("/", headers=headers)
        except httpx.HTTPError as exc:
            raise CredentialError(f"Failed to reach {self.base_url} for a session cookie: {exc}") from exc

        cookie = _find_cookie(resp.headers.get_list("set-cookie"), self.session_cookie_name)
        if cookie is None:
            raise CredentialError(
                f"Session cookie {self.session_cookie_name!r} not found (status {resp.status_code})."
            )
        return cookie

    async def search(self, topic: str, order: Order, currency: str) -> dict[str, Any]:
        """
        Run one catalog search and return the decoded JSON body.

        Raises CredentialError, TransportError or DecodeError; never retries.
        """
        params = {"search_text": topic, "currency": currency, "order": Order(order).value}

        async with self._client() as client:
            cookie = await self.fetch_session_cookie(client)
            try:
                resp = await client.get(
                    SEARCH_PATH,
                    params=params,
                    headers={"Cookie": cookie, "Accept": ACCEPT_HEADER},
                )
            except httpx.HTTPError as exc:
                raise TransportError(f"Vinted search request failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise CredentialError(f"Vinted rejected the session cookie: {resp.status_code}")
        if resp.status_code != 200:
            # Avoid dumping huge bodies; include a small snippet.
            body = resp.text[:300]
            raise TransportError(f"Vinted search failed: {resp.status_code} {body}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise DecodeError("Vinted returned a non-JSON body.") from exc

        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise DecodeError("Vinted response has no items list.")

        logger.info(
            "vinted_search topic=%r order=%s currency=%s items=%s",
            topic,
            params["order"],
            currency,
            len(data["items"]),
        )
        return data
