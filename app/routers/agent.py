"""
Direct access to the cart suggestion agent.

GET  /api/ai-agent      liveness
POST /api/ai-agent      {cart: {items: [{id, name, price, quantity}]}} -> agent result
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.deps import get_llm_client
from app.schemas import AgentRequest
from app.services.agent import suggest_with_timeout
from app.services.cart import normalize_canonical_cart
from app.services.llm import LLMClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai-agent", tags=["agent"])


@router.get("")
async def agent_alive() -> Dict[str, bool]:
    return {"ok": True}


@router.post("")
async def agent_suggest(
    request: Request,
    settings: Settings = Depends(get_settings),
    llm: Optional[LLMClient] = Depends(get_llm_client),
) -> Dict[str, Any]:
    request_id = str(uuid.uuid4())
    try:
        req = AgentRequest.model_validate(json.loads(await request.body()))
    except (ValueError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cart is required and cannot be empty.",
        )

    cart = normalize_canonical_cart(req.cart)
    if not cart.items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cart is required and cannot be empty.",
        )

    logger.info(
        "Agent request request_id=%s items=%d total=%.2f",
        request_id, len(cart.items), cart.total,
    )
    result = await suggest_with_timeout(
        cart, llm=llm, settings=settings, request_id=request_id
    )
    return {"request_id": request_id, **result.to_payload()}
