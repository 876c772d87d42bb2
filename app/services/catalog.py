"""
Complementary-product candidates from the shop's public storefront endpoints.

  GET {origin}/recommendations/products.json?product_id=..&limit=8   (per product)
  GET {origin}/products.json?limit=50                                (fallback)

Every fetch degrades to an empty list on failure; collect_candidates never raises.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from app.config import Settings
from app.schemas import Candidate

logger = logging.getLogger(__name__)


def _first_variant(product: Dict[str, Any]) -> Dict[str, Any]:
    variants = product.get("variants")
    if isinstance(variants, list) and variants and isinstance(variants[0], dict):
        return variants[0]
    return {}


def _price(raw: Any, *, minor_units: bool) -> Optional[float]:
    """None unless the value parses as a finite number."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        return None
    try:
        n = float(raw.strip() if isinstance(raw, str) else raw)
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(n):
        return None
    return n / 100 if minor_units else n


def parse_products(body: Any, *, minor_units: bool) -> List[Candidate]:
    """
    Validate a `{"products": [...]}` body into candidates.

    Recommendation products carry `price` in cents; /products.json carries
    variant prices as major-unit strings. Entries without an id are dropped.
    """
    if not isinstance(body, dict) or not isinstance(body.get("products"), list):
        return []

    out: List[Candidate] = []
    for p in body["products"]:
        if not isinstance(p, dict) or p.get("id") in (None, ""):
            continue
        variant = _first_variant(p)
        # Variant prices share the payload's unit (cents in recommendations).
        raw_price = p.get("price") if minor_units else None
        if raw_price is None:
            raw_price = variant.get("price")
        handle = p.get("handle")
        try:
            candidate = Candidate(
                id=str(p["id"]),
                title=str(p.get("title") or ""),
                price=_price(raw_price, minor_units=minor_units),
                variant_id=str(variant["id"]) if variant.get("id") is not None else None,
                handle=handle if isinstance(handle, str) else None,
            )
        except ValidationError as exc:
            logger.warning("Skipping malformed product %r: %s", p.get("id"), exc)
            continue
        out.append(candidate)
    return out


async def _get_products(
    client: httpx.AsyncClient,
    url: str,
    params: Dict[str, Any],
    *,
    minor_units: bool,
    timeout: float,
) -> List[Candidate]:
    try:
        resp = await client.get(url, params=params, timeout=timeout)
    except httpx.HTTPError as exc:
        logger.warning("Catalog fetch failed url=%s: %s", url, exc)
        return []
    if not resp.is_success:
        logger.warning(
            "Catalog fetch non-success url=%s status=%d", url, resp.status_code
        )
        return []
    try:
        body = resp.json()
    except ValueError:
        logger.warning("Catalog fetch returned non-JSON url=%s", url)
        return []
    return parse_products(body, minor_units=minor_units)


async def fetch_recommendations(
    client: httpx.AsyncClient, shop_origin: str, product_id: str, settings: Settings
) -> List[Candidate]:
    return await _get_products(
        client,
        f"{shop_origin}/recommendations/products.json",
        {"product_id": product_id, "limit": settings.recommendations_limit},
        minor_units=True,
        timeout=settings.catalog_timeout_seconds,
    )


async def fetch_catalog(
    client: httpx.AsyncClient, shop_origin: str, settings: Settings
) -> List[Candidate]:
    return await _get_products(
        client,
        f"{shop_origin}/products.json",
        {"limit": settings.catalog_limit},
        minor_units=False,
        timeout=settings.catalog_timeout_seconds,
    )


def exclude_and_dedupe(
    candidates: Iterable[Candidate], in_cart: Iterable[str]
) -> List[Candidate]:
    """Drop in-cart products and repeated ids, keeping first-seen order."""
    seen = set(in_cart)
    out: List[Candidate] = []
    for c in candidates:
        if c.id in seen:
            continue
        seen.add(c.id)
        out.append(c)
    return out


async def _collect(
    client: httpx.AsyncClient,
    shop_origin: str,
    product_ids: List[str],
    settings: Settings,
) -> List[Candidate]:
    sem = asyncio.Semaphore(max(1, settings.catalog_concurrency))

    async def _one(pid: str) -> List[Candidate]:
        async with sem:
            return await fetch_recommendations(client, shop_origin, pid, settings)

    batches = await asyncio.gather(*(_one(pid) for pid in product_ids))
    flat = [c for batch in batches for c in batch]

    if not flat:
        logger.info("No recommendations for %s – falling back to catalog", shop_origin)
        flat = await fetch_catalog(client, shop_origin, settings)

    return exclude_and_dedupe(flat, product_ids)


async def collect_candidates(
    shop_origin: str,
    product_ids: List[str],
    *,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Candidate]:
    """Fan out recommendation fetches, fall back to the catalog, filter the cart."""
    shop_origin = shop_origin.rstrip("/")
    if client is not None:
        candidates = await _collect(client, shop_origin, product_ids, settings)
    else:
        timeout = httpx.Timeout(settings.catalog_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout) as own:
            candidates = await _collect(own, shop_origin, product_ids, settings)

    logger.info(
        "Collected %d candidates from %s for %d cart products",
        len(candidates), shop_origin, len(product_ids),
    )
    return candidates
