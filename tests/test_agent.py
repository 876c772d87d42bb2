"""
Unit tests for the free-form cart suggestion agent.
"""
from __future__ import annotations

import json

import pytest

from app.schemas import Cart, CartItem
from app.services.agent import (
    fallback_suggestions,
    parse_agent_products,
    suggest_for_cart,
    suggest_with_timeout,
)


def _cart(total: float) -> Cart:
    return Cart(
        items=[CartItem(id="1", name="Organic cotton T-shirt", unit_price=total, quantity=1)],
        total=total,
    )


def test_fallback_respects_budget_window():
    # window for 85: 8.5 .. 42.5
    out = fallback_suggestions(_cart(85))
    assert [s.title for s in out] == ["Leather belt", "Premium socks"]
    assert all(8.5 <= s.estimated_price <= 42.5 for s in out)


def test_fallback_can_be_empty_for_tiny_carts():
    assert fallback_suggestions(_cart(10)) == []


@pytest.mark.parametrize(
    "raw",
    [
        {"products": [{"product_name": "Belt", "reason": "Matches", "estimated_price": 20}]},
        [{"product_name": "Belt", "reason": "Matches", "estimated_price": 20}],
        {"product_name": "Belt", "reason": "Matches", "estimated_price": 20},
    ],
)
def test_parse_agent_products_shapes(raw):
    out = parse_agent_products(raw)
    assert [(s.id, s.title, s.estimated_price) for s in out] == [("belt", "Belt", 20.0)]


def test_parse_agent_products_drops_incomplete_entries():
    raw = {"products": [
        {"product_name": "No price", "reason": "x"},
        {"product_name": "String price", "reason": "x", "estimated_price": "12"},
        {"reason": "no name", "estimated_price": 3},
        {"product_name": "Good one", "reason": "ok", "estimated_price": 9.5},
        {"product_name": "Second", "reason": "ok", "estimated_price": 11},
        {"product_name": "Third", "reason": "ok", "estimated_price": 12},
    ]}
    out = parse_agent_products(raw)
    assert [s.title for s in out] == ["Good one", "Second"]


@pytest.mark.asyncio
async def test_llm_success(settings, make_llm):
    reply = json.dumps({"products": [
        {"product_name": "Canvas tote", "reason": "Carry it all", "estimated_price": 15},
        {"product_name": "Linen scarf", "reason": "Light layer", "estimated_price": 22},
    ]})
    llm = make_llm(reply=reply)
    result = await suggest_for_cart(_cart(50), llm=llm, settings=settings)

    assert result.provider == "primary-llm"
    assert result.model == "fake-model"
    assert [s.title for s in result.suggestions] == ["Canvas tote", "Linen scarf"]
    prompt = llm.calls[0][0]["content"]
    assert "between 5 and 25" in prompt


@pytest.mark.asyncio
async def test_llm_garbage_uses_fallback_with_reason(settings, make_llm):
    result = await suggest_for_cart(_cart(85), llm=make_llm(reply="no idea"), settings=settings)
    assert result.provider == "fallback"
    assert result.fallback_reason == "No valid suggestions generated"
    assert len(result.suggestions) == 2


@pytest.mark.asyncio
async def test_llm_exception_uses_fallback(settings, make_llm):
    result = await suggest_for_cart(
        _cart(85), llm=make_llm(exc=ConnectionError("down")), settings=settings
    )
    assert result.provider == "fallback"
    assert result.fallback_reason == "down"


@pytest.mark.asyncio
async def test_no_llm_configured(settings):
    result = await suggest_for_cart(_cart(85), llm=None, settings=settings)
    assert result.provider == "fallback"
    assert result.fallback_reason == "LLM_NOT_CONFIGURED"
    assert result.model is None


@pytest.mark.asyncio
async def test_timeout_cancels_and_falls_back(settings, make_llm):
    settings.llm_timeout_seconds = 0.05
    result = await suggest_with_timeout(
        _cart(85), llm=make_llm(reply="{}", delay=1.0), settings=settings
    )
    assert result.provider == "fallback"
    assert result.fallback_reason == "AI_AGENT_TIMEOUT"
    assert result.model == "fake-model"
    # window for 85: 8.5 .. 42.5
    assert [s.title for s in result.suggestions] == ["Leather belt", "Premium socks"]
