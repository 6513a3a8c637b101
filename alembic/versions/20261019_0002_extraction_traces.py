"""Add extraction traces linking stored knowledge back to its model call."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "extraction_traces",
        sa.Column("trace_id", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("extractor_id", sa.String(), nullable=False),
        sa.Column("input_text", sa.Text(), nullable=False),
        sa.Column("span_id", sa.String(), nullable=True),
        sa.Column("char_start", sa.Integer(), nullable=True),
        sa.Column("char_end", sa.Integer(), nullable=True),
        sa.Column("matched_pattern", sa.String(), nullable=True),
        sa.Column("matched_text", sa.Text(), nullable=True),
        sa.Column("llm_prompt", sa.Text(), nullable=True),
        sa.Column("llm_response", sa.Text(), nullable=True),
        sa.Column("llm_model", sa.String(), nullable=True),
        sa.Column("llm_tokens_used", sa.Integer(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["unit_id"],
            ["conversation_units.unit_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("trace_id"),
    )
    op.create_index("ix_extraction_traces_unit_id", "extraction_traces", ["unit_id"])
    op.create_index(
        "idx_extraction_traces_target",
        "extraction_traces",
        ["target_type", "target_id"],
    )


def downgrade() -> None:
    op.drop_index("idx_extraction_traces_target", table_name="extraction_traces")
    op.drop_index("ix_extraction_traces_unit_id", table_name="extraction_traces")
    op.drop_table("extraction_traces")
