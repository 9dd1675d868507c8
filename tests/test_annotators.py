# tests/test_annotators.py
"""Tests for the LLM-backed annotator and enricher (mocking the LLM calls)."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from openai import APIConnectionError, AuthenticationError

from jobs.errors import SystemicJobError, UnitFailed
from services.metadata_enricher import enrich_song
from services.semantic_annotator import classify_word

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


@pytest.mark.asyncio
async def test_classify_word_normalizes_output():
    mock_json = json.dumps({"domain": "na", "confidence": 1.4, "lemma": "sertão", "regionalism": True})
    with patch("services.semantic_annotator.extract_json", new_callable=AsyncMock, return_value=mock_json):
        result = await classify_word("sertões", "Eu vou pros sertões", "Asa Branca")
    assert result == {
        "word": "sertões",
        "domain": "NA",
        "confidence": 1.0,
        "lemma": "sertão",
        "regionalism": True,
    }


@pytest.mark.asyncio
async def test_unknown_domain_falls_back_to_nc():
    mock_json = json.dumps({"domain": "XYZ", "confidence": "high"})
    with patch("services.semantic_annotator.extract_json", new_callable=AsyncMock, return_value=mock_json):
        result = await classify_word("Oxente", "Oxente, menino")
    assert result["domain"] == "NC"
    assert result["confidence"] == 0.0
    assert result["lemma"] == "oxente"


@pytest.mark.asyncio
async def test_invalid_json_fails_the_unit():
    with patch("services.semantic_annotator.extract_json", new_callable=AsyncMock, return_value="not json"):
        with pytest.raises(UnitFailed):
            await classify_word("baião", "dança o baião")


@pytest.mark.asyncio
async def test_auth_error_is_systemic():
    exc = AuthenticationError("bad key", response=httpx.Response(401, request=REQUEST), body=None)
    with patch("services.semantic_annotator.extract_json", new_callable=AsyncMock, side_effect=exc):
        with pytest.raises(SystemicJobError):
            await classify_word("baião", "dança o baião")


@pytest.mark.asyncio
async def test_connection_error_fails_only_the_unit():
    exc = APIConnectionError(request=REQUEST)
    with patch("services.semantic_annotator.extract_json", new_callable=AsyncMock, side_effect=exc):
        with pytest.raises(UnitFailed):
            await classify_word("baião", "dança o baião")


@pytest.mark.asyncio
async def test_enrich_song():
    mock_json = json.dumps({
        "composer": "Luiz Gonzaga, Humberto Teixeira",
        "release_year": "1947",
        "genre": "baião",
        "region": "Nordeste",
        "confidence": 0.8,
    })
    with patch("services.metadata_enricher.extract_json", new_callable=AsyncMock, return_value=mock_json):
        result = await enrich_song("Asa Branca", "Luiz Gonzaga")
    assert result["release_year"] == 1947
    assert result["region"] == "Nordeste"
    assert result["confidence"] == 0.8


@pytest.mark.asyncio
async def test_enrich_song_bad_year():
    mock_json = json.dumps({"release_year": "anos 40"})
    with patch("services.metadata_enricher.extract_json", new_callable=AsyncMock, return_value=mock_json):
        result = await enrich_song("Xote das Meninas")
    assert result["release_year"] is None
    assert result["composer"] is None
