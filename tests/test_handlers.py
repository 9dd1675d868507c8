# tests/test_handlers.py
"""Tests for job handlers: unit splitting and checkpoint positions."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from jobs.checkpoint import Checkpoint
from jobs.errors import SystemicJobError, UnitFailed
from jobs.handlers import (
    CorpusEnrichmentHandler,
    SemanticAnnotationHandler,
    get_handler,
    tokenize_lyrics,
)

PAYLOAD = {
    "songs": [
        {"id": "asa-branca", "title": "Asa Branca", "lyrics": "Quando olhei a terra ardendo\nqual fogueira de São João"},
        {"id": "vozes", "title": "Vozes da Seca", "lyrics": "Seu doutô"},
    ]
}


def test_tokenize_keeps_line_context_and_skips_digits():
    tokens = tokenize_lyrics("Eu vou pro sertão\n\n1950 xote-baião d'água")
    assert [w for w, _ in tokens] == ["Eu", "vou", "pro", "sertão", "xote-baião", "d'água"]
    assert tokens[0][1] == "Eu vou pro sertão"


def test_semantic_count_units():
    assert SemanticAnnotationHandler().count_units(PAYLOAD) == 12


def test_semantic_units_resume_mid_song():
    handler = SemanticAnnotationHandler()
    units = list(handler.iter_units(PAYLOAD, Checkpoint("song_word", (0, 8))))
    assert [u.position.position for u in units] == [(0, 8), (0, 9), (1, 0), (1, 1)]
    assert units[0].data["word"] == "São"
    # last word of a song points at the first word of the next one
    assert units[1].next_position == Checkpoint("song_word", (1, 0))
    assert units[-1].next_position == Checkpoint("song_word", (2, 0))


def test_semantic_unit_keys_are_stable():
    handler = SemanticAnnotationHandler()
    first = [u.key for u in handler.iter_units(PAYLOAD, Checkpoint.start("song_word"))]
    again = [u.key for u in handler.iter_units(PAYLOAD, Checkpoint("song_word", (1, 0)))]
    assert first[-2:] == again
    assert len(set(first)) == len(first)


def test_malformed_payload_is_systemic():
    with pytest.raises(SystemicJobError):
        SemanticAnnotationHandler().count_units({"songs": "nope"})
    with pytest.raises(SystemicJobError):
        CorpusEnrichmentHandler().count_units({"songs": ["nope"]})


@pytest.mark.parametrize("field", ["lyrics", "title", "artist"])
def test_non_string_song_fields_are_systemic(field):
    song = {"id": "x", "title": "Xote", "lyrics": "bom dia", field: ["not", "a", "string"]}
    with pytest.raises(SystemicJobError, match=field):
        SemanticAnnotationHandler().count_units({"songs": [song]})
    with pytest.raises(SystemicJobError, match=field):
        next(CorpusEnrichmentHandler().iter_units({"songs": [song]}, Checkpoint.start("song_index")))


def test_unknown_job_type():
    with pytest.raises(SystemicJobError):
        get_handler("transcribe_audio")


def test_enrichment_units_one_per_song():
    handler = CorpusEnrichmentHandler()
    units = list(handler.iter_units(PAYLOAD, Checkpoint("song_index", (1,))))
    assert len(units) == 1
    assert units[0].key == "vozes"
    assert units[0].next_position == Checkpoint("song_index", (2,))


@pytest.mark.asyncio
async def test_enrichment_without_title_fails_only_that_unit():
    handler = CorpusEnrichmentHandler()
    units = list(handler.iter_units({"songs": [{"id": "x"}]}, Checkpoint.start("song_index")))
    with patch("jobs.handlers.enrich_song", new_callable=AsyncMock) as enrich:
        with pytest.raises(UnitFailed):
            await handler.process(units[0])
    enrich.assert_not_called()


@pytest.mark.asyncio
async def test_semantic_process_calls_annotator():
    handler = SemanticAnnotationHandler()
    unit = next(handler.iter_units(PAYLOAD, Checkpoint.start("song_word")))
    with patch("jobs.handlers.classify_word", new_callable=AsyncMock, return_value={"domain": "AB"}) as classify:
        result = await handler.process(unit)
    assert result == {"domain": "AB"}
    classify.assert_awaited_once_with("Quando", "Quando olhei a terra ardendo", "Asa Branca")
