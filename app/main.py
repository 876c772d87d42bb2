"""
Cart upsell suggestion service – FastAPI entry point.
"""
from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI

from app.config import get_settings
from app.routers import admin, agent, suggestions, webhooks
from app.services.llm import build_llm_client

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Cart Upsell",
    version="1.0.0",
    description="Shopify cart webhooks and storefront upsell suggestions.",
)

# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(webhooks.router)
app.include_router(suggestions.router)
app.include_router(agent.router)
app.include_router(admin.router)


# ── Startup / shutdown ────────────────────────────────────────────────────────

@app.on_event("startup")
async def _startup() -> None:
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.catalog_timeout_seconds),
        follow_redirects=True,
    )
    app.state.llm_client = build_llm_client(settings)
    logger.info(
        "Upsell service ready (llm=%s, allowed_origin=%s)",
        settings.llm_model if app.state.llm_client else "disabled",
        settings.allowed_origin,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
    llm = getattr(app.state, "llm_client", None)
    if llm is not None:
        await llm.close()
    logger.info("Upsell service stopped.")
