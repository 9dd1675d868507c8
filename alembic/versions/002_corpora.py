"""corpora and corpus-linked jobs

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── corpora ──
    op.create_table(
        "corpora",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("songs", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── processing_jobs.corpus_id ──
    op.add_column("processing_jobs", sa.Column("corpus_id", postgresql.UUID(as_uuid=True), nullable=True))
    op.create_index("ix_processing_jobs_corpus_id", "processing_jobs", ["corpus_id"])


def downgrade() -> None:
    op.drop_index("ix_processing_jobs_corpus_id", table_name="processing_jobs")
    op.drop_column("processing_jobs", "corpus_id")
    op.drop_table("corpora")
