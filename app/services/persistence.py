"""
Best-effort, append-only persistence for the webhook/suggestion pipeline.

Each write opens its own session and commits on its own; none of them is
transactional with the others. Failures are logged and reported as
WriteOutcome.FAILED rather than raised.
"""
from __future__ import annotations

import enum
import hashlib
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import CartSnapshot, SuggestionLog, WebhookEvent
from app.schemas import Cart, SuggestionResult

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


class WriteOutcome(str, enum.Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    FAILED = "failed"


def body_idempotency_key(raw_body: bytes) -> str:
    """Stand-in key when the sender omitted its webhook id header."""
    return "sha256:" + hashlib.sha256(raw_body).hexdigest()


async def record_webhook_event(
    factory: SessionFactory,
    *,
    idempotency_key: str,
    topic: str,
    shop_domain: Optional[str],
    raw_body: str,
    hmac_valid: bool,
) -> WriteOutcome:
    """
    Insert the delivery; a unique-constraint violation on idempotency_key
    means it was already processed.
    """
    try:
        async with factory() as session:
            session.add(
                WebhookEvent(
                    idempotency_key=idempotency_key,
                    topic=topic,
                    shop_domain=shop_domain,
                    raw_body=raw_body,
                    hmac_valid=hmac_valid,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("Duplicate webhook skipped: key=%s topic=%s", idempotency_key, topic)
                return WriteOutcome.DUPLICATE
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Webhook event insert failed key=%s: %s", idempotency_key, exc)
        return WriteOutcome.FAILED
    return WriteOutcome.CREATED


async def record_cart_snapshot(factory: SessionFactory, cart: Cart) -> WriteOutcome:
    try:
        async with factory() as session:
            session.add(
                CartSnapshot(
                    cart_token=cart.token or "",
                    total=cart.total,
                    items=[i.model_dump() for i in cart.items],
                )
            )
            await session.commit()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Cart snapshot insert failed token=%s: %s", cart.token, exc)
        return WriteOutcome.FAILED
    return WriteOutcome.CREATED


async def record_suggestion_log(
    factory: SessionFactory,
    *,
    request_id: str,
    cart_token: Optional[str],
    result: SuggestionResult,
) -> WriteOutcome:
    try:
        async with factory() as session:
            session.add(
                SuggestionLog(
                    request_id=request_id,
                    cart_token=cart_token,
                    provider=result.provider,
                    model=result.model,
                    payload=result.to_payload(),
                )
            )
            await session.commit()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Suggestion log insert failed request_id=%s: %s", request_id, exc)
        return WriteOutcome.FAILED
    return WriteOutcome.CREATED
