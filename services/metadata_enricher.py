# services/metadata_enricher.py
"""
Song metadata enrichment (composer, year, genre, region).
"""
from __future__ import annotations

import json
import logging

from openai import OpenAIError

from ai.prompts import METADATA_ENRICHMENT
from jobs.errors import SystemicJobError, UnitFailed
from services.openai_llm import extract_json, is_systemic

logger = logging.getLogger(__name__)

FIELDS = ("composer", "release_year", "genre", "region")


async def enrich_song(title: str, artist: str | None = None) -> dict:
    user_input = f"Title: {title}\nArtist: {artist or 'unknown'}"
    try:
        raw = await extract_json(METADATA_ENRICHMENT, user_input, max_tokens=256)
    except OpenAIError as exc:
        if is_systemic(exc):
            raise SystemicJobError(f"Enricher unavailable: {exc}") from exc
        raise UnitFailed(f"Enrichment failed for {title!r}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise UnitFailed(f"Enricher returned invalid JSON for {title!r}") from exc

    result = {field: data.get(field) for field in FIELDS}
    year = result["release_year"]
    if year is not None:
        try:
            result["release_year"] = int(year)
        except (TypeError, ValueError):
            result["release_year"] = None
    result["confidence"] = data.get("confidence")
    logger.debug("Enriched %r: %s", title, result)
    return result
