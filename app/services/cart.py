"""
Cart normalization: provider-shaped line items -> canonical Cart.

Malformed numeric fields degrade to 0 instead of raising; the total is always
recomputed from the normalized items and never read from the source payload.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from app.schemas import Cart, CartItem

logger = logging.getLogger(__name__)


def to_number(value: Any) -> float:
    """Coerce a number or numeric string to a finite float, else 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        try:
            n = float(value.strip())
        except ValueError:
            return 0.0
        return n if math.isfinite(n) else 0.0
    return 0.0


def to_quantity(value: Any) -> int:
    n = to_number(value)
    return int(n) if n > 0 else 0


def _opt_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _build(
    raw_items: Any,
    *,
    name_keys: Iterable[str],
    minor_units: bool,
    token: Optional[str] = None,
) -> Cart:
    if not isinstance(raw_items, list):
        raw_items = []

    items: List[CartItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            logger.debug("Skipping non-object line item: %r", raw)
            continue
        price = to_number(raw.get("price"))
        if minor_units:
            price = price / 100
        name = next((str(raw[k]) for k in name_keys if raw.get(k)), "")
        items.append(
            CartItem(
                id=str(raw.get("id", "")),
                name=name,
                unit_price=price,
                quantity=to_quantity(raw.get("quantity")),
                product_id=_opt_id(raw.get("product_id")),
                variant_id=_opt_id(raw.get("variant_id")),
            )
        )

    total = 0.0
    for i in items:
        line = i.unit_price * i.quantity
        if not math.isfinite(line):
            logger.debug("Dropping overflowing line total for item %s", i.id)
            continue
        total += line
    if not math.isfinite(total):
        total = 0.0
    return Cart(items=items, total=total, token=token)


def normalize_webhook_cart(payload: Dict[str, Any]) -> Cart:
    """Shopify carts/create|update webhook body (prices in major units)."""
    token = payload.get("token") or payload.get("id")
    return _build(
        payload.get("line_items"),
        name_keys=("title", "name"),
        minor_units=False,
        token=str(token) if token else None,
    )


def normalize_storefront_cart(cart: Dict[str, Any]) -> Cart:
    """AJAX /cart.js body from the storefront widget (prices in cents)."""
    token = cart.get("token")
    return _build(
        cart.get("items"),
        name_keys=("product_title", "title", "name"),
        minor_units=True,
        token=str(token) if token else None,
    )


def normalize_canonical_cart(cart: Dict[str, Any]) -> Cart:
    """Already-canonical `{items: [{id, name, price, quantity}]}` carts."""
    token = cart.get("token")
    return _build(
        cart.get("items"),
        name_keys=("name", "title"),
        minor_units=False,
        token=str(token) if token else None,
    )


def is_skippable(cart: Cart) -> bool:
    """Empty carts and non-positive totals never reach the suggestion step."""
    return not cart.items or cart.total <= 0
