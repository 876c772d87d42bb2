"""
Storefront widget endpoints.

POST    /api/suggestions     cart + shop origin -> up to two suggestions
OPTIONS /api/suggestions     CORS preflight
POST    /api/track           suggestion click events

Only the configured storefront origin is allowed. Apart from malformed
submissions (400) the widget always gets a 200 with a possibly empty list.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.deps import get_http_client, get_llm_client, get_session_factory
from app.schemas import SuggestionRequest, SuggestionResponse, SuggestionResult
from app.services import persistence
from app.services.catalog import collect_candidates
from app.services.cart import is_skippable, normalize_storefront_cart
from app.services.llm import LLMClient
from app.services.ranker import rank_suggestions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["suggestions"])


def cors_headers(settings: Settings) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.allowed_origin,
        "Vary": "Origin",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Cache-Control": "no-store",
    }


def _json(content: Any, settings: Settings, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=cors_headers(settings))


async def _read_json(request: Request) -> Any:
    """Parsed body, or raises ValueError."""
    return json.loads(await request.body())


@router.options("/suggestions")
async def suggestions_preflight(settings: Settings = Depends(get_settings)) -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(settings))


@router.post("/suggestions", response_model=SuggestionResponse)
async def suggest(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
    llm: Optional[LLMClient] = Depends(get_llm_client),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JSONResponse:
    request_id = str(uuid.uuid4())

    try:
        body = await _read_json(request)
    except ValueError:
        return _json({"error": "Invalid JSON"}, settings, status.HTTP_400_BAD_REQUEST)

    try:
        req = SuggestionRequest.model_validate(body)
    except ValidationError as exc:
        logger.info("Rejected suggestion request request_id=%s: %s", request_id, exc)
        return _json({"error": "Missing cart.items"}, settings, status.HTTP_400_BAD_REQUEST)

    cart = normalize_storefront_cart(req.cart.model_dump())
    logger.info(
        "Suggestion request request_id=%s items=%d total=%.2f shop=%s",
        request_id, len(cart.items), cart.total, req.shop_origin,
    )

    if is_skippable(cart):
        logger.info("Skipping empty or zero-total cart request_id=%s", request_id)
        await persistence.record_suggestion_log(
            sessions,
            request_id=request_id,
            cart_token=cart.token,
            result=SuggestionResult(provider="skip", fallback_reason="EMPTY_OR_ZERO_CART"),
        )
        return _json(SuggestionResponse().model_dump(exclude_none=True), settings)

    candidates = []
    if req.shop_origin:
        candidates = await collect_candidates(
            req.shop_origin, cart.product_ids, settings=settings, client=client
        )

    result = await rank_suggestions(
        cart, candidates, llm=llm, settings=settings, request_id=request_id
    )
    await persistence.record_suggestion_log(
        sessions, request_id=request_id, cart_token=cart.token, result=result
    )

    response = SuggestionResponse(suggestions=result.suggestions)
    return _json(response.model_dump(exclude_none=True), settings)


@router.post("/track")
async def track_click(request: Request, settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Log a suggestion click from the widget."""
    try:
        event = await _read_json(request)
    except ValueError:
        return _json({"error": "Invalid JSON"}, settings, status.HTTP_400_BAD_REQUEST)

    if isinstance(event, dict):
        suggestion = event.get("suggestion") if isinstance(event.get("suggestion"), dict) else {}
        logger.info(
            "Click tracked event=%s suggestion_id=%s at=%s",
            event.get("eventType"), suggestion.get("id"), event.get("timestamp"),
        )
    else:
        logger.info("Click tracked (unstructured): %r", event)
    return _json({"received": True}, settings)
