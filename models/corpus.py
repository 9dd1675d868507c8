# models/corpus.py
from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDPrimaryKey
from models.job import JSONType


class Corpus(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "corpora"

    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # order in the enrichment sequence, lowest first
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # [{"id": ..., "title": ..., "artist": ..., "lyrics": ...}]
    songs: Mapped[list] = mapped_column(JSONType, default=list)
