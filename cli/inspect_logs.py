#!/usr/bin/env python3
"""
CLI: inspect the suggestion pipeline.

Usage:
    # Last 20 suggestion logs
    python -m cli.inspect_logs --logs 20

    # Last 20 cart snapshots
    python -m cli.inspect_logs --snapshots 20

    # Check the LLM endpoint answers with the configured key
    python -m cli.inspect_logs --ping-llm

    # Print the X-Shopify-Hmac-Sha256 value for a payload file (manual replay)
    python -m cli.inspect_logs --sign payload.json
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from app.config import get_settings
from app.deps import compute_signature
from app.services.llm import build_llm_client


async def cmd_logs(limit: int) -> None:
    from app.database import AsyncSessionLocal
    from app.models import SuggestionLog

    async with AsyncSessionLocal() as session:
        rows = (
            await session.execute(
                select(SuggestionLog).order_by(SuggestionLog.created_at.desc()).limit(limit)
            )
        ).scalars().all()

    if not rows:
        print("No suggestion logs found.")
        return

    print(f"\n{'CREATED':<34} {'PROVIDER':<12} {'MODEL':<24} {'N':>2} REASON")
    print("-" * 100)
    for r in rows:
        n = len(r.payload.get("suggestions", []))
        reason = r.payload.get("fallback_reason") or "-"
        print(f"{str(r.created_at):<34} {r.provider:<12} {(r.model or '-'):<24} {n:>2} {reason}")


async def cmd_snapshots(limit: int) -> None:
    from app.database import AsyncSessionLocal
    from app.models import CartSnapshot

    async with AsyncSessionLocal() as session:
        rows = (
            await session.execute(
                select(CartSnapshot).order_by(CartSnapshot.created_at.desc()).limit(limit)
            )
        ).scalars().all()

    if not rows:
        print("No cart snapshots found.")
        return

    print(f"\n{'CREATED':<34} {'TOKEN':<36} {'ITEMS':>5} {'TOTAL':>10}")
    print("-" * 90)
    for r in rows:
        print(f"{str(r.created_at):<34} {(r.cart_token or '-'):<36} {len(r.items):>5} {r.total:>10.2f}")


async def cmd_ping_llm() -> None:
    settings = get_settings()
    llm = build_llm_client(settings)
    if llm is None:
        print("ERROR: LLM_API_KEY is not set.", file=sys.stderr)
        sys.exit(1)

    print(f"→ Calling {settings.llm_base_url} model={settings.llm_model}")
    try:
        text = await asyncio.wait_for(
            llm.complete(
                [{"role": "user", "content": 'Reply with {"ok": true}'}],
                temperature=0.0,
                max_tokens=20,
            ),
            timeout=settings.llm_timeout_seconds,
        )
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        await llm.close()
    print(f"  Response: {text}")


def cmd_sign(path: str) -> None:
    secret = get_settings().shopify_webhook_secret
    if not secret:
        print("ERROR: SHOPIFY_WEBHOOK_SECRET is not set.", file=sys.stderr)
        sys.exit(1)
    with open(path, "rb") as fh:
        print(compute_signature(fh.read(), secret))


def main() -> None:
    parser = argparse.ArgumentParser(description="Cart upsell CLI")
    parser.add_argument("--logs", type=int, metavar="N", help="Print the last N suggestion logs")
    parser.add_argument("--snapshots", type=int, metavar="N", help="Print the last N cart snapshots")
    parser.add_argument("--ping-llm", action="store_true", help="Check LLM connectivity")
    parser.add_argument("--sign", metavar="FILE", help="Print the webhook signature of FILE")
    args = parser.parse_args()

    if args.sign:
        cmd_sign(args.sign)
    elif args.ping_llm:
        asyncio.run(cmd_ping_llm())
    elif args.snapshots:
        asyncio.run(cmd_snapshots(args.snapshots))
    else:
        asyncio.run(cmd_logs(args.logs or 20))


if __name__ == "__main__":
    main()
