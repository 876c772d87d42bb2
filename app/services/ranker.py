"""
Suggestion ranking for a cart against catalog candidates.

Strategies, in priority order:
  1. no candidates           -> mono-product heuristic (always two suggestions)
  2. LLM configured          -> model picks two ids from the supplied candidates
  3. anything else / failure -> stable price-proximity sort, top two

The ranker never raises for upstream trouble; the chosen strategy and the
reason for any fallback are carried on the returned SuggestionResult.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional

from app.config import Settings
from app.schemas import Cart, Candidate, Suggestion, SuggestionResult
from app.services.llm import LLMClient, extract_json

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 2
MAX_REASON_CHARS = 80
PACK_SIZE = 3
GENERIC_REASON = "Frequently bought together"

_SYSTEM_PROMPT = "You reply with valid JSON only, no additional text."


# ── Mono-product heuristic ───────────────────────────────────────────────────

def mono_product_suggestions(cart: Cart) -> List[Suggestion]:
    """Two suggestions built from the first cart item alone."""
    first = cart.items[0]
    ident = first.product_id or first.id
    if first.quantity < PACK_SIZE:
        pack_reason = f"You have {first.quantity} – a pack of {PACK_SIZE} saves on every unit"
    else:
        pack_reason = f"Stock up with a pack of {PACK_SIZE} and save"
    unit_price = first.unit_price if first.unit_price > 0 else None
    return [
        Suggestion(
            id=ident,
            variant_id=first.variant_id or first.id,
            title=f"{first.name} – pack of {PACK_SIZE}",
            estimated_price=unit_price * PACK_SIZE if unit_price else None,
            reason=pack_reason,
            action="set_quantity",
            quantity=max(PACK_SIZE, first.quantity),
        ),
        Suggestion(
            id=ident,
            variant_id=first.variant_id or first.id,
            title=f"One more {first.name}",
            estimated_price=unit_price,
            reason="A spare, or a gift for someone close",
            action="add",
            quantity=1,
        ),
    ]


# ── Price-proximity fallback ─────────────────────────────────────────────────

def _to_suggestion(c: Candidate, reason: str = "") -> Suggestion:
    return Suggestion(
        id=c.id,
        variant_id=c.variant_id,
        title=c.title,
        estimated_price=c.price,
        reason=reason or GENERIC_REASON,
        action="add" if c.variant_id else "view",
    )


def price_proximity_suggestions(cart: Cart, candidates: List[Candidate]) -> List[Suggestion]:
    """
    Closest candidates by |price - first item price|.

    `sorted` is stable, so equal distances keep collector order. A missing
    price sorts as 0 but is reported as None.
    """
    anchor = cart.items[0].unit_price if cart.items else 0.0
    ranked = sorted(candidates, key=lambda c: abs((c.price or 0.0) - anchor))
    return [_to_suggestion(c) for c in ranked[:MAX_SUGGESTIONS]]


# ── LLM-ranked selection ─────────────────────────────────────────────────────

def build_ranking_prompt(cart: Cart, candidates: List[Candidate]) -> str:
    cart_lines = "\n".join(
        f"- {i.name or 'Unknown'} | qty:{i.quantity} | price:{i.unit_price:.2f}"
        for i in cart.items
    )
    cand_lines = "\n".join(
        f"- id:{c.id} | {c.title} | price:{c.price:.2f}" if c.price is not None
        else f"- id:{c.id} | {c.title} | price:unknown"
        for c in candidates
    )
    return "\n".join([
        "You are an e-commerce merchandising assistant.",
        "Pick exactly 2 products from CANDIDATES that best complement the CART.",
        "",
        "CART:",
        cart_lines,
        "",
        "CANDIDATES:",
        cand_lines,
        "",
        "Rules:",
        "- Use only ids listed in CANDIDATES, copied exactly.",
        "- Each reason is a short marketing line (max 12 words).",
        'Return ONLY: {"suggestions": [{"id": "<candidate id>", "reason": "<reason>"}]}',
    ])


def parse_ranked_selection(raw: Any, candidates: List[Candidate]) -> List[Suggestion]:
    """Keep only allowlisted ids, first occurrence wins, at most two."""
    if isinstance(raw, dict):
        raw = raw.get("suggestions", raw.get("products"))
    if not isinstance(raw, list):
        return []

    by_id = {c.id: c for c in candidates}
    out: List[Suggestion] = []
    picked: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        ident = entry.get("id")
        if ident is None:
            continue
        ident = str(ident)
        cand = by_id.get(ident)
        if cand is None:
            logger.info("Discarding LLM pick outside candidate set: %s", ident)
            continue
        if ident in picked:
            continue
        picked.add(ident)
        reason = entry.get("reason")
        reason = str(reason).strip()[:MAX_REASON_CHARS] if reason else ""
        out.append(_to_suggestion(cand, reason))
        if len(out) == MAX_SUGGESTIONS:
            break
    return out


async def llm_ranked_suggestions(
    cart: Cart,
    candidates: List[Candidate],
    llm: LLMClient,
    settings: Settings,
) -> List[Suggestion]:
    """Raises on transport/timeout errors; returns [] for unusable output."""
    shortlist = candidates[: settings.max_prompt_candidates]
    messages = [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": build_ranking_prompt(cart, shortlist)},
    ]
    text = await asyncio.wait_for(
        llm.complete(messages, temperature=0.2, max_tokens=300),
        timeout=settings.llm_timeout_seconds,
    )
    return parse_ranked_selection(extract_json(text), shortlist)


# ── Entry point ──────────────────────────────────────────────────────────────

async def rank_suggestions(
    cart: Cart,
    candidates: List[Candidate],
    *,
    llm: Optional[LLMClient],
    settings: Settings,
    request_id: str = "-",
) -> SuggestionResult:
    started = time.monotonic()

    def _done(result: SuggestionResult) -> SuggestionResult:
        result.latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Ranked request_id=%s provider=%s suggestions=%d fallback_reason=%s",
            request_id, result.provider, len(result.suggestions), result.fallback_reason,
        )
        return result

    if not cart.items:
        return _done(SuggestionResult(provider="skip", fallback_reason="EMPTY_CART"))

    if not candidates:
        return _done(SuggestionResult(
            provider="fallback",
            suggestions=mono_product_suggestions(cart),
            fallback_reason="NO_CANDIDATES",
        ))

    reason: str
    if llm is None:
        reason = "LLM_NOT_CONFIGURED"
    else:
        try:
            picks = await llm_ranked_suggestions(cart, candidates, llm, settings)
        except asyncio.TimeoutError:
            logger.warning("LLM ranking timed out request_id=%s", request_id)
            reason = "LLM_TIMEOUT"
        except Exception as exc:
            logger.error("LLM ranking failed request_id=%s: %s", request_id, exc)
            reason = "LLM_ERROR"
        else:
            if picks:
                return _done(SuggestionResult(
                    provider="primary-llm", model=llm.model, suggestions=picks,
                ))
            reason = "LLM_EMPTY"

    return _done(SuggestionResult(
        provider="fallback",
        model=llm.model if llm is not None else None,
        suggestions=price_proximity_suggestions(cart, candidates),
        fallback_reason=reason,
    ))

