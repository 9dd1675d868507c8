# jobs/handlers.py
"""
Job handlers: how each job type splits its payload into units,
where each unit sits in checkpoint space, and how one unit is processed.

Handlers are stateless. Everything they need comes from the job payload,
so any invocation can pick up from any checkpoint.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from jobs.checkpoint import Checkpoint
from jobs.errors import SystemicJobError, UnitFailed
from jobs.types import JobType
from services.metadata_enricher import enrich_song
from services.semantic_annotator import classify_word

logger = logging.getLogger(__name__)

WORD_RE = re.compile(r"[^\W\d_]+(?:['-][^\W\d_]+)*")

TEXT_FIELDS = ("lyrics", "title", "artist")


@dataclass(frozen=True)
class WorkUnit:
    key: str
    position: Checkpoint
    next_position: Checkpoint
    data: dict[str, Any] = field(default_factory=dict)


class JobHandler(Protocol):
    checkpoint_kind: str

    def count_units(self, payload: dict) -> int: ...

    def iter_units(self, payload: dict, start: Checkpoint) -> Iterator[WorkUnit]: ...

    async def process(self, unit: WorkUnit) -> dict: ...


# ─────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────

def _songs(payload: dict) -> list[dict]:
    songs = (payload or {}).get("songs")
    if not isinstance(songs, list):
        raise SystemicJobError("Malformed payload: 'songs' must be a list")
    for i, song in enumerate(songs):
        if not isinstance(song, dict):
            raise SystemicJobError(f"Malformed payload: song {i} is not an object")
        for name in TEXT_FIELDS:
            value = song.get(name)
            if value is not None and not isinstance(value, str):
                raise SystemicJobError(f"Malformed payload: song {i} field '{name}' must be a string")
    return songs


def tokenize_lyrics(lyrics: str) -> list[tuple[str, str]]:
    """Split lyrics into (word, line) pairs, line kept as annotation context."""
    tokens: list[tuple[str, str]] = []
    for line in (lyrics or "").splitlines():
        stripped = line.strip()
        for match in WORD_RE.finditer(stripped):
            tokens.append((match.group(0), stripped))
    return tokens


# ─────────────────────────────────────────────
# semantic annotation: one unit per word, checkpoint (song, word)
# ─────────────────────────────────────────────

class SemanticAnnotationHandler:
    checkpoint_kind = "song_word"

    def count_units(self, payload: dict) -> int:
        return sum(len(tokenize_lyrics(song.get("lyrics", ""))) for song in _songs(payload))

    def iter_units(self, payload: dict, start: Checkpoint) -> Iterator[WorkUnit]:
        songs = _songs(payload)
        song_start, word_start = start.position
        for s in range(song_start, len(songs)):
            song = songs[s]
            tokens = tokenize_lyrics(song.get("lyrics", ""))
            first = word_start if s == song_start else 0
            for w in range(first, len(tokens)):
                word, line = tokens[w]
                if w + 1 < len(tokens):
                    nxt = (s, w + 1)
                else:
                    nxt = (s + 1, 0)
                yield WorkUnit(
                    key=f"{song.get('id', s)}:{w}",
                    position=Checkpoint(self.checkpoint_kind, (s, w)),
                    next_position=Checkpoint(self.checkpoint_kind, nxt),
                    data={"word": word, "line": line, "title": song.get("title")},
                )

    async def process(self, unit: WorkUnit) -> dict:
        return await classify_word(unit.data["word"], unit.data["line"], unit.data.get("title"))


# ─────────────────────────────────────────────
# corpus enrichment: one unit per song, checkpoint (song,)
# ─────────────────────────────────────────────

class CorpusEnrichmentHandler:
    checkpoint_kind = "song_index"

    def count_units(self, payload: dict) -> int:
        return len(_songs(payload))

    def iter_units(self, payload: dict, start: Checkpoint) -> Iterator[WorkUnit]:
        songs = _songs(payload)
        for i in range(start.position[0], len(songs)):
            song = songs[i]
            yield WorkUnit(
                key=str(song.get("id", i)),
                position=Checkpoint(self.checkpoint_kind, (i,)),
                next_position=Checkpoint(self.checkpoint_kind, (i + 1,)),
                data={"title": song.get("title", ""), "artist": song.get("artist")},
            )

    async def process(self, unit: WorkUnit) -> dict:
        if not unit.data["title"]:
            raise UnitFailed(f"Song {unit.key} has no title")
        return await enrich_song(unit.data["title"], unit.data.get("artist"))


HANDLERS: dict[str, JobHandler] = {
    JobType.SEMANTIC_ANNOTATION.value: SemanticAnnotationHandler(),
    JobType.CORPUS_ENRICHMENT.value: CorpusEnrichmentHandler(),
}


def get_handler(job_type: str) -> JobHandler:
    handler = HANDLERS.get(job_type)
    if handler is None:
        raise SystemicJobError(f"Unknown job type: {job_type}")
    return handler
