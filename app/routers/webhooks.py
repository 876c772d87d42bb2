"""
Shopify webhook receiver.

POST /api/webhooks/shopify        (carts/create, carts/update)

Once the signature checks out the response is always 200: suggestion or
persistence trouble must not make Shopify retry the delivery.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.deps import get_llm_client, get_session_factory, verify_shopify_webhook
from app.schemas import SuggestionResult
from app.services import agent, persistence
from app.services.cart import is_skippable, normalize_webhook_cart
from app.services.llm import LLMClient
from app.services.persistence import WriteOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _parse_body(body: bytes, request_id: str) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except ValueError:
        logger.error("Invalid JSON payload request_id=%s", request_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict):
        logger.error("Webhook payload is not an object request_id=%s", request_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    return payload


@router.post("/shopify")
async def shopify_cart_webhook(
    body: bytes = Depends(verify_shopify_webhook),
    x_shopify_webhook_id: Optional[str] = Header(default=None),
    x_shopify_topic: Optional[str] = Header(default=None),
    x_shopify_shop_domain: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    llm: Optional[LLMClient] = Depends(get_llm_client),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    """
    Verify, record, normalize, and forward a cart to the suggestion agent.
    Idempotent: re-delivering the same webhook id is acknowledged without
    re-running the pipeline.
    """
    started = time.monotonic()
    request_id = str(uuid.uuid4())

    payload = _parse_body(body, request_id)
    line_items = payload.get("line_items")
    logger.info(
        "Webhook received request_id=%s topic=%s shop=%s token=%s items=%d",
        request_id, x_shopify_topic, x_shopify_shop_domain, payload.get("token"),
        len(line_items) if isinstance(line_items, list) else 0,
    )

    idempotency_key = x_shopify_webhook_id or persistence.body_idempotency_key(body)
    outcome = await persistence.record_webhook_event(
        sessions,
        idempotency_key=idempotency_key,
        topic=x_shopify_topic or "",
        shop_domain=x_shopify_shop_domain,
        raw_body=body.decode("utf-8", errors="replace"),
        hmac_valid=True,
    )
    if outcome is WriteOutcome.DUPLICATE:
        return {"ok": True, "duplicate": True, "request_id": request_id}

    cart = normalize_webhook_cart(payload)
    logger.info(
        "Cart normalized request_id=%s items=%d total=%.2f",
        request_id, len(cart.items), cart.total,
    )

    if is_skippable(cart):
        result = SuggestionResult(provider="skip", fallback_reason="EMPTY_OR_ZERO_CART")
    else:
        await persistence.record_cart_snapshot(sessions, cart)
        result = await agent.suggest_with_timeout(
            cart, llm=llm, settings=settings, request_id=request_id
        )

    await persistence.record_suggestion_log(
        sessions, request_id=request_id, cart_token=cart.token, result=result
    )

    latency_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Webhook done request_id=%s latency_ms=%d provider=%s suggestions=%d",
        request_id, latency_ms, result.provider, len(result.suggestions),
    )
    return {
        "ok": True,
        "request_id": request_id,
        "latency_ms": latency_ms,
        "cart": cart.model_dump(),
        "ai": result.to_payload(),
    }
