# services/openai_llm.py
from __future__ import annotations

import logging

from openai import AsyncOpenAI, AuthenticationError, PermissionDeniedError, RateLimitError

from api.app.config import get_settings

logger = logging.getLogger(__name__)


async def extract_json(
    system_prompt: str,
    user_message: str,
    temperature: float = 0.2,
    max_tokens: int = 512,
) -> str:
    """Run a completion expecting JSON output (annotation, enrichment)."""
    settings = get_settings()
    client = AsyncOpenAI(api_key=settings.openai_api_key)

    response = await client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
        response_format={"type": "json_object"},
    )
    text = response.choices[0].message.content or "{}"
    logger.debug("LLM: got %d chars from %s", len(text), settings.openai_model)
    return text


def is_systemic(exc: Exception) -> bool:
    """Errors that will fail every following call too: bad key, no access, no quota."""
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return True
    if isinstance(exc, RateLimitError) and getattr(exc, "code", None) == "insufficient_quota":
        return True
    return False
