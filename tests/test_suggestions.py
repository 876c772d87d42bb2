"""
Integration tests for the storefront suggestion and click-tracking endpoints.
"""
from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select

from app.deps import get_http_client, get_llm_client
from app.main import app
from app.models import SuggestionLog

from conftest import TEST_ORIGIN

URL = "/api/suggestions"
SHOP = "https://demo.myshopify.com"

STOREFRONT_CART = {
    "token": "ajax-token",
    "items": [
        {"id": 501, "variant_id": 501, "product_id": 50, "title": "Green tea", "price": 1100, "quantity": 1},
    ],
}


def _shop_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/recommendations/products.json":
            return httpx.Response(200, json={"products": [
                {"id": 50, "title": "Green tea", "price": 1100, "variants": [{"id": 501}]},
                {"id": 60, "title": "Teapot", "price": 1000, "variants": [{"id": 601}]},
                {"id": 70, "title": "Tea set", "price": 5000, "variants": [{"id": 701}]},
                {"id": 80, "title": "Honey", "price": 1200, "variants": [{"id": 801}]},
            ]})
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _assert_cors(resp: httpx.Response) -> None:
    assert resp.headers["access-control-allow-origin"] == TEST_ORIGIN
    assert "POST" in resp.headers["access-control-allow-methods"]


@pytest.mark.asyncio
async def test_preflight(client):
    resp = await client.options(URL, headers={"Origin": TEST_ORIGIN})
    assert resp.status_code == 204
    _assert_cors(resp)


@pytest.mark.asyncio
async def test_invalid_json_is_bad_request(client):
    resp = await client.post(URL, content=b"{oops", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    _assert_cors(resp)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"cart": {}},
        {"cart": {"items": "nope"}},
        {"cart": {"items": []}, "shopOrigin": "ftp://evil"},
    ],
)
async def test_structurally_invalid_input_is_bad_request(client, body):
    resp = await client.post(URL, json=body)
    assert resp.status_code == 400
    _assert_cors(resp)


@pytest.mark.asyncio
async def test_empty_cart_returns_no_suggestions(client):
    resp = await client.post(URL, json={"cart": {"items": []}, "shopOrigin": SHOP})
    assert resp.status_code == 200
    assert resp.json() == {"suggestions": []}


@pytest.mark.asyncio
async def test_without_shop_origin_uses_mono_product(client):
    resp = await client.post(URL, json={"cart": STOREFRONT_CART})

    assert resp.status_code == 200
    suggestions = resp.json()["suggestions"]
    assert len(suggestions) == 2
    assert {s["variant_id"] for s in suggestions} == {"501"}
    _assert_cors(resp)


@pytest.mark.asyncio
async def test_price_proximity_without_llm(client, session_factory):
    async with _shop_client() as shop:
        app.dependency_overrides[get_http_client] = lambda: shop
        resp = await client.post(URL, json={"cart": STOREFRONT_CART, "shopOrigin": SHOP})

    assert resp.status_code == 200
    ids = [s["id"] for s in resp.json()["suggestions"]]
    # cart item is 11.00; Teapot 10.00 and Honey 12.00 tie, collector order wins
    assert ids == ["60", "80"]

    async with session_factory() as session:
        log = (await session.execute(select(SuggestionLog))).scalar_one()
    assert log.provider == "fallback"
    assert log.cart_token == "ajax-token"
    assert log.payload["fallback_reason"] == "LLM_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_llm_selection_is_constrained_to_candidates(client, make_llm):
    llm = make_llm(reply=json.dumps({"suggestions": [
        {"id": "999", "reason": "Invented"},
        {"id": "70", "reason": "The full ritual"},
    ]}))
    app.dependency_overrides[get_llm_client] = lambda: llm

    async with _shop_client() as shop:
        app.dependency_overrides[get_http_client] = lambda: shop
        resp = await client.post(URL, json={"cart": STOREFRONT_CART, "shop_origin": SHOP + "/"})

    suggestions = resp.json()["suggestions"]
    assert [s["id"] for s in suggestions] == ["70"]
    assert suggestions[0]["reason"] == "The full ritual"
    assert suggestions[0]["estimated_price"] == 50.0
    assert suggestions[0]["action"] == "add"
    assert "id:50 " not in llm.calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_track_click(client):
    resp = await client.post(
        "/api/track",
        json={"eventType": "upsell_clicked", "suggestion": {"id": "60"}, "timestamp": "2026-01-01T00:00:00Z"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True}


@pytest.mark.asyncio
async def test_track_invalid_json(client):
    resp = await client.post("/api/track", content=b"nope")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_agent_endpoint(client):
    alive = await client.get("/api/ai-agent")
    assert alive.json() == {"ok": True}

    resp = await client.post(
        "/api/ai-agent",
        json={"cart": {"items": [{"id": "1", "name": "Jeans", "price": 60, "quantity": 1}], "total": 60}},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["provider"] == "fallback"
    assert data["fallback_reason"] == "LLM_NOT_CONFIGURED"
    # window 6..30
    assert [s["title"] for s in data["suggestions"]] == ["Premium socks", "Wool scarf"]


@pytest.mark.asyncio
async def test_agent_endpoint_rejects_empty_cart(client):
    resp = await client.post("/api/ai-agent", json={"cart": {"items": []}})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_zero_total_cart_skips_catalog_and_llm(client, session_factory, make_llm):
    shop_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        shop_calls.append(request.url.path)
        return httpx.Response(200, json={"products": [{"id": 9, "title": "Gift", "price": 500}]})

    llm = make_llm(reply=json.dumps({"suggestions": [{"id": "9", "reason": "Nice"}]}))
    app.dependency_overrides[get_llm_client] = lambda: llm
    cart = {"items": [{"id": 1, "product_id": 1, "title": "Free sample", "price": 0, "quantity": 1}]}

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as shop:
        app.dependency_overrides[get_http_client] = lambda: shop
        resp = await client.post(URL, json={"cart": cart, "shopOrigin": SHOP})

    assert resp.status_code == 200
    assert resp.json() == {"suggestions": []}
    _assert_cors(resp)
    assert shop_calls == []
    assert llm.calls == []

    async with session_factory() as session:
        log = (await session.execute(select(SuggestionLog))).scalar_one()
    assert log.provider == "skip"
    assert log.payload["fallback_reason"] == "EMPTY_OR_ZERO_CART"
