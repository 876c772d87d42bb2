"""
Pydantic schemas for request/response validation and the pipeline's value types.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Provider = Literal["primary-llm", "fallback", "skip"]
Action = Literal["add", "set_quantity", "view"]


# ── Canonical cart ───────────────────────────────────────────────────────────

class CartItem(BaseModel):
    id: str
    name: str
    unit_price: float
    quantity: int = Field(..., ge=0)
    product_id: Optional[str] = None
    variant_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Cart(BaseModel):
    items: List[CartItem] = []
    total: float = 0.0
    token: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def product_ids(self) -> List[str]:
        """Distinct product ids in cart order (falls back to the line id)."""
        seen: List[str] = []
        for item in self.items:
            pid = item.product_id or item.id
            if pid not in seen:
                seen.append(pid)
        return seen


# ── Catalog candidates & suggestions ─────────────────────────────────────────

class Candidate(BaseModel):
    id: str
    title: str
    price: Optional[float] = None
    variant_id: Optional[str] = None
    handle: Optional[str] = None


class Suggestion(BaseModel):
    id: str
    title: str
    estimated_price: Optional[float] = None
    reason: str = ""
    action: Optional[Action] = None
    variant_id: Optional[str] = None
    quantity: Optional[int] = None


class SuggestionResult(BaseModel):
    """Outcome of one suggestion attempt; persisted whole as the log payload."""
    provider: Provider
    model: Optional[str] = None
    suggestions: List[Suggestion] = []
    fallback_reason: Optional[str] = None
    latency_ms: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ── Inbound payloads ─────────────────────────────────────────────────────────

class StorefrontCart(BaseModel):
    """Subset of Shopify's AJAX /cart.js payload posted by the widget."""
    items: List[Dict[str, Any]]
    token: Optional[str] = None
    total_price: Optional[Any] = None

    model_config = ConfigDict(extra="ignore")


class SuggestionRequest(BaseModel):
    cart: StorefrontCart
    shop_origin: Optional[str] = Field(default=None, alias="shopOrigin")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("shop_origin")
    @classmethod
    def _http_origin(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not v.startswith(("https://", "http://")):
            raise ValueError("shopOrigin must be an http(s) origin")
        return v.rstrip("/")


class AgentRequest(BaseModel):
    cart: Dict[str, Any]

    model_config = ConfigDict(extra="ignore")


# ── Responses ────────────────────────────────────────────────────────────────

class SuggestionResponse(BaseModel):
    suggestions: List[Suggestion] = []


class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
