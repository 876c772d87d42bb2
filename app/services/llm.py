"""
Thin chat-completion client over any OpenAI-compatible endpoint (Groq by default).

The client is built once by the application and injected into the ranker and
the suggestion agent; nothing here holds module-level state.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from app.config import Settings

logger = logging.getLogger(__name__)

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


class LLMClient:
    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self.model = model

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = True,
    ) -> str:
        """Return the first choice's text ('' when the model sent none)."""
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        if completion.usage is not None:
            logger.debug(
                "LLM usage model=%s prompt_tokens=%s completion_tokens=%s",
                self.model,
                completion.usage.prompt_tokens,
                completion.usage.completion_tokens,
            )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def close(self) -> None:
        await self._client.close()


def build_llm_client(settings: Settings) -> Optional[LLMClient]:
    """None when no API key is configured; callers fall back deterministically."""
    if not settings.llm_configured:
        logger.warning("No LLM_API_KEY configured – suggestions use fallbacks only")
        return None
    client = AsyncOpenAI(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout_seconds,
        max_retries=0,
    )
    return LLMClient(client, settings.llm_model)


def extract_json(text: str) -> Any:
    """
    Parse the model output, tolerating prose around the JSON.

    Tries the whole text first, then the first bracketed object span, then the
    first array span. Returns None when nothing parses.
    """
    if not text:
        return None
    candidates = [text.strip()]
    for pattern in (_OBJECT_RE, _ARRAY_RE):
        m = pattern.search(text)
        if m:
            candidates.append(m.group(0))
    for chunk in candidates:
        try:
            return json.loads(chunk)
        except ValueError:
            continue
    return None
