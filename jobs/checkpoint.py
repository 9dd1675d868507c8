# jobs/checkpoint.py
"""
Resumption positions.

A checkpoint is the position of the next unit to process. Each job kind
has its own shape (a song index, a song/word pair) but all of them
are tuples of non-negative ints ordered lexicographically, so the
resume protocol never has to know which kind it is holding.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from jobs.errors import CheckpointKindMismatch

KIND_ARITY: dict[str, int] = {
    "song_word": 2,
    "song_index": 1,
}


@dataclass(frozen=True)
class Checkpoint:
    kind: str
    position: tuple[int, ...]

    def __post_init__(self) -> None:
        arity = KIND_ARITY.get(self.kind)
        if arity is None:
            raise ValueError(f"Unknown checkpoint kind: {self.kind}")
        position = tuple(int(p) for p in self.position)
        if len(position) != arity:
            raise ValueError(f"{self.kind} checkpoint needs {arity} indexes, got {len(position)}")
        if any(p < 0 for p in position):
            raise ValueError(f"Checkpoint indexes must be non-negative: {position}")
        object.__setattr__(self, "position", position)

    @classmethod
    def start(cls, kind: str) -> Checkpoint:
        return cls(kind, (0,) * KIND_ARITY.get(kind, 0))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(data["kind"], tuple(data["position"]))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "position": list(self.position)}

    def _check_kind(self, other: Checkpoint) -> None:
        if not isinstance(other, Checkpoint):
            raise TypeError(f"Cannot compare Checkpoint with {type(other).__name__}")
        if other.kind != self.kind:
            raise CheckpointKindMismatch(f"{self.kind} vs {other.kind}")

    def __lt__(self, other: Checkpoint) -> bool:
        self._check_kind(other)
        return self.position < other.position

    def __le__(self, other: Checkpoint) -> bool:
        self._check_kind(other)
        return self.position <= other.position

    def __gt__(self, other: Checkpoint) -> bool:
        self._check_kind(other)
        return self.position > other.position

    def __ge__(self, other: Checkpoint) -> bool:
        self._check_kind(other)
        return self.position >= other.position

    def __str__(self) -> str:
        return f"{self.kind}{list(self.position)}"
