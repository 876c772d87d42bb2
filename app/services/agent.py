"""
Free-form cart suggestion agent.

The webhook pipeline forwards every normalized cart here. The model proposes
two complementary products priced within a window of the cart total; when the
model is unavailable or its answer is unusable, a fixed accessory list
filtered to the same window is returned instead.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from app.config import Settings
from app.schemas import Cart, Suggestion, SuggestionResult
from app.services.llm import LLMClient, extract_json

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 2
BUDGET_MIN_RATIO = 0.1
BUDGET_MAX_RATIO = 0.5


@dataclass(frozen=True)
class _Accessory:
    name: str
    reason: str
    price: float


FALLBACK_ACCESSORIES: List[_Accessory] = [
    _Accessory("Leather belt", "An elegant finish for the outfit", 35),
    _Accessory("Premium socks", "Everyday comfort and style", 18),
    _Accessory("Travel bag", "Handy for trips and weekends", 45),
    _Accessory("RFID wallet", "Secure and elegant", 32),
    _Accessory("Wool scarf", "Warm and comfortable", 28),
]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-")


def budget_window(cart: Cart) -> tuple[float, float]:
    return cart.total * BUDGET_MIN_RATIO, cart.total * BUDGET_MAX_RATIO


def fallback_suggestions(cart: Cart) -> List[Suggestion]:
    """Static accessories whose price sits inside the cart's budget window."""
    lo, hi = budget_window(cart)
    return [
        Suggestion(
            id=slugify(a.name),
            title=a.name,
            estimated_price=a.price,
            reason=a.reason,
        )
        for a in FALLBACK_ACCESSORIES
        if lo <= a.price <= hi
    ][:MAX_SUGGESTIONS]


def build_agent_prompt(cart: Cart) -> str:
    lo, hi = budget_window(cart)
    lines = "\n".join(f"- {i.name}: {i.unit_price:.2f}" for i in cart.items)
    return "\n".join([
        "You are an e-commerce assistant.",
        "Based on this cart, suggest exactly 2 complementary products",
        "closely related to the products already selected.",
        "",
        "Current cart contains:",
        lines,
        f"Total: {cart.total:.2f}",
        "",
        "Rules:",
        f"- Each product should cost between {round(lo)} and {round(hi)}",
        "- Be specific with product names",
        "- Keep reasons short (max 10 words)",
        "",
        'Return ONLY a JSON object with a "products" key like this, nothing else:',
        '{"products": [',
        '  {"product_name": "Product Name", "reason": "Short reason", "estimated_price": 25},',
        '  {"product_name": "Another Product", "reason": "Another reason", "estimated_price": 35}',
        "]}",
    ])


def parse_agent_products(raw: Any) -> List[Suggestion]:
    """
    Accept `{"products": [...]}`, a bare list, or a single product object.
    Each entry needs a name, a reason and a numeric estimated_price.
    """
    if isinstance(raw, dict):
        if isinstance(raw.get("products"), list):
            entries = raw["products"]
        elif isinstance(raw.get("suggestions"), list):
            entries = raw["suggestions"]
        else:
            entries = [raw]
    elif isinstance(raw, list):
        entries = raw
    else:
        return []

    out: List[Suggestion] = []
    for e in entries:
        if not isinstance(e, dict):
            continue
        name = e.get("product_name")
        reason = e.get("reason")
        price = e.get("estimated_price")
        if not name or not reason:
            continue
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            continue
        out.append(
            Suggestion(
                id=slugify(str(name)),
                title=str(name),
                estimated_price=float(price),
                reason=str(reason),
            )
        )
        if len(out) == MAX_SUGGESTIONS:
            break
    return out


async def suggest_for_cart(
    cart: Cart,
    *,
    llm: Optional[LLMClient],
    settings: Settings,
    request_id: str = "-",
) -> SuggestionResult:
    """Never raises; the fallback reason is recorded on the result."""
    started = time.monotonic()
    error: Optional[str] = None
    suggestions: List[Suggestion] = []

    if llm is None:
        error = "LLM_NOT_CONFIGURED"
    else:
        messages = [{"role": "user", "content": build_agent_prompt(cart)}]
        try:
            text = await llm.complete(messages, temperature=0.7, max_tokens=200)
            logger.debug("Agent raw response request_id=%s: %s", request_id, text)
            suggestions = parse_agent_products(extract_json(text))
            if not suggestions:
                error = "No valid suggestions generated"
        except Exception as exc:
            logger.error("Agent LLM call failed request_id=%s: %s", request_id, exc)
            error = str(exc) or exc.__class__.__name__

    if error is None:
        result = SuggestionResult(
            provider="primary-llm", model=llm.model, suggestions=suggestions
        )
    else:
        logger.warning(
            "Agent using fallback request_id=%s reason=%s", request_id, error
        )
        result = SuggestionResult(
            provider="fallback",
            model=llm.model if llm is not None else None,
            suggestions=fallback_suggestions(cart),
            fallback_reason=error,
        )

    result.latency_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Agent done request_id=%s provider=%s suggestions=%d latency_ms=%d",
        request_id, result.provider, len(result.suggestions), result.latency_ms,
    )
    return result


async def suggest_with_timeout(
    cart: Cart,
    *,
    llm: Optional[LLMClient],
    settings: Settings,
    request_id: str = "-",
) -> SuggestionResult:
    """Bound the whole agent call; a timeout cancels it and yields a fallback."""
    try:
        return await asyncio.wait_for(
            suggest_for_cart(cart, llm=llm, settings=settings, request_id=request_id),
            timeout=settings.llm_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Agent timed out after %.1fs request_id=%s",
            settings.llm_timeout_seconds, request_id,
        )
        return SuggestionResult(
            provider="fallback",
            model=llm.model if llm is not None else None,
            suggestions=fallback_suggestions(cart),
            fallback_reason="AI_AGENT_TIMEOUT",
        )
