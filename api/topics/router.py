"""
FastAPI router for topic cache endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from core.vinted import CredentialError, DecodeError, TransportError

from .repository import PersistenceError
from .service import TopicCache, TopicTimeoutError

router = APIRouter()


def get_topic_cache(request: Request) -> TopicCache:
    return request.app.state.topic_cache


@router.get("/vintedTopic/{topic}-{order}")
async def vinted_topic(
    topic: str,
    order: str,
    cache: TopicCache = Depends(get_topic_cache),
) -> dict:
    """
    Return cached listings for a topic, fetching them from Vinted on a cold cache.

    `order` is one of newest_first, relevance, price_high_to_low,
    price_low_to_high; anything else means newest_first.
    """
    try:
        result = await cache.get_topic(topic, order)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (CredentialError, TransportError, DecodeError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except TopicTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc

    collection = result.collection
    return {
        "topic": result.topic,
        "order": result.order.value,
        "cached": result.from_cache,
        "count": len(collection.items),
        "items": [item.model_dump() for item in collection.items],
        "pagination": collection.pagination.model_dump() if collection.pagination else None,
    }
