# services/semantic_annotator.py
"""
Semantic domain annotation of single lyric words.
"""
from __future__ import annotations

import json
import logging

from openai import OpenAIError

from ai.prompts import SEMANTIC_ANNOTATION, SEMANTIC_DOMAINS
from jobs.errors import SystemicJobError, UnitFailed
from services.openai_llm import extract_json, is_systemic

logger = logging.getLogger(__name__)


async def classify_word(word: str, line: str, song_title: str | None = None) -> dict:
    """Ask the LLM for the semantic domain of `word` as used in `line`."""
    user_input = (
        f"Song: {song_title or 'unknown'}\n"
        f"Line: {line}\n"
        f"Target word: {word}"
    )
    try:
        raw = await extract_json(SEMANTIC_ANNOTATION, user_input, max_tokens=128)
    except OpenAIError as exc:
        if is_systemic(exc):
            raise SystemicJobError(f"Annotator unavailable: {exc}") from exc
        raise UnitFailed(f"Annotator call failed for {word!r}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise UnitFailed(f"Annotator returned invalid JSON for {word!r}") from exc

    domain = str(data.get("domain", "")).upper()
    if domain not in SEMANTIC_DOMAINS:
        logger.warning("Unknown domain %r for %r, using NC", domain, word)
        domain = "NC"

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    return {
        "word": word,
        "domain": domain,
        "confidence": max(0.0, min(1.0, confidence)),
        "lemma": data.get("lemma") or word.lower(),
        "regionalism": bool(data.get("regionalism", False)),
    }
