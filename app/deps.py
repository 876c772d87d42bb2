"""
FastAPI dependency utilities: Shopify webhook signature verification and the
injected clients (HTTP, LLM, DB session factory).
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.services.llm import LLMClient

logger = logging.getLogger(__name__)


# ── HMAC ─────────────────────────────────────────────────────────────────────

def compute_signature(body: bytes, secret: str) -> str:
    """base64(HMAC-SHA256(secret, body)) over the exact raw bytes."""
    digest = hmac.new(
        key=secret.encode(),
        msg=body,
        digestmod=hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode()


def verify_signature(body: bytes, secret: str, claimed: str) -> bool:
    """Constant-time comparison; never raises for a mismatch."""
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode(), claimed.strip().encode())


async def verify_shopify_webhook(
    request: Request,
    x_shopify_hmac_sha256: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> bytes:
    """
    Verify webhook authenticity via HMAC-SHA256.
    Returns the raw request body so routers don't need to re-read it.
    """
    if not settings.shopify_webhook_secret:
        logger.error("SHOPIFY_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Missing webhook secret",
        )

    if not x_shopify_hmac_sha256:
        logger.warning("Webhook rejected: missing X-Shopify-Hmac-Sha256 header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Shopify-Hmac-Sha256 header",
        )

    body = await request.body()

    if not verify_signature(body, settings.shopify_webhook_secret, x_shopify_hmac_sha256):
        logger.warning("Webhook rejected: signature mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook signature mismatch",
        )

    return body


# ── Injected clients ─────────────────────────────────────────────────────────

def get_http_client(request: Request) -> Optional[httpx.AsyncClient]:
    """Shared client built at startup; None lets callers open a short-lived one."""
    return getattr(request.app.state, "http_client", None)


def get_llm_client(request: Request) -> Optional[LLMClient]:
    return getattr(request.app.state, "llm_client", None)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    from app.database import AsyncSessionLocal
    return AsyncSessionLocal
