"""Initial schema: task queue, conversational units, primitives and claims."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("priority_value", sa.Integer(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("backoff_json", sa.Text(), nullable=False),
        sa.Column("checkpoint_json", sa.Text(), nullable=True),
        sa.Column("execute_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("group_id", sa.String(), nullable=True),
        sa.Column("depends_on", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_task_type", "tasks", ["task_type"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_session_id", "tasks", ["session_id"])
    op.create_index("idx_tasks_queue", "tasks", ["status", "priority_value", "execute_at"])

    op.create_table(
        "task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_events_task_id", "task_events", ["task_id"])
    op.create_index("ix_task_events_event_type", "task_events", ["event_type"])
    op.create_index("idx_task_events_task_time", "task_events", ["task_id", "created_at"])

    op.create_table(
        "conversation_units",
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("speaker", sa.String(), nullable=False, server_default="user"),
        sa.Column("raw_text", sa.Text(), nullable=False),
        sa.Column("sanitized_text", sa.Text(), nullable=False),
        sa.Column("stage", sa.String(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("unit_id"),
    )
    op.create_index("ix_conversation_units_session_id", "conversation_units", ["session_id"])
    op.create_index("ix_conversation_units_processed", "conversation_units", ["processed"])

    op.create_table(
        "spans",
        sa.Column("span_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("char_start", sa.Integer(), nullable=False),
        sa.Column("char_end", sa.Integer(), nullable=False),
        sa.Column("text_excerpt", sa.Text(), nullable=False),
        sa.Column("matched_by", sa.String(), nullable=False),
        sa.Column("pattern_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["unit_id"],
            ["conversation_units.unit_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("span_id"),
    )
    op.create_index("ix_spans_unit_id", "spans", ["unit_id"])

    op.create_table(
        "propositions",
        sa.Column("proposition_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("predicate", sa.String(), nullable=True),
        sa.Column("obj", sa.String(), nullable=True),
        sa.Column("proposition_type", sa.String(), nullable=False),
        sa.Column("span_ids_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["unit_id"],
            ["conversation_units.unit_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("proposition_id"),
    )
    op.create_index("ix_propositions_unit_id", "propositions", ["unit_id"])

    op.create_table(
        "stances",
        sa.Column("stance_id", sa.String(), nullable=False),
        sa.Column("proposition_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("holder", sa.String(), nullable=False, server_default="speaker"),
        sa.Column("epistemic_json", sa.Text(), nullable=False),
        sa.Column("volitional_json", sa.Text(), nullable=False),
        sa.Column("deontic_json", sa.Text(), nullable=False),
        sa.Column("affective_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["proposition_id"],
            ["propositions.proposition_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("stance_id"),
    )
    op.create_index("ix_stances_proposition_id", "stances", ["proposition_id"])
    op.create_index("ix_stances_unit_id", "stances", ["unit_id"])

    op.create_table(
        "relations",
        sa.Column("relation_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("subtype", sa.String(), nullable=False, server_default="unspecified"),
        sa.Column("strength", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["source_id"],
            ["propositions.proposition_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["target_id"],
            ["propositions.proposition_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("relation_id"),
    )
    op.create_index("ix_relations_unit_id", "relations", ["unit_id"])

    op.create_table(
        "entities",
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("canonical_name", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("aliases_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("mention_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_referenced", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entity_id"),
    )
    op.create_index("ix_entities_canonical_name", "entities", ["canonical_name"])

    op.create_table(
        "entity_mentions",
        sa.Column("mention_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("text", sa.String(), nullable=False),
        sa.Column("mention_type", sa.String(), nullable=False),
        sa.Column("suggested_type", sa.String(), nullable=False),
        sa.Column("span_id", sa.String(), nullable=True),
        sa.Column("resolved_entity_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["unit_id"],
            ["conversation_units.unit_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["resolved_entity_id"],
            ["entities.entity_id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("mention_id"),
    )
    op.create_index("ix_entity_mentions_unit_id", "entity_mentions", ["unit_id"])
    op.create_index(
        "ix_entity_mentions_resolved_entity_id",
        "entity_mentions",
        ["resolved_entity_id"],
    )

    op.create_table(
        "claims",
        sa.Column("claim_id", sa.String(), nullable=False),
        sa.Column("statement", sa.Text(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("claim_type", sa.String(), nullable=False),
        sa.Column("temporality", sa.String(), nullable=False),
        sa.Column("abstraction", sa.String(), nullable=False),
        sa.Column("source_type", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("emotional_valence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("emotional_intensity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("stakes", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="active"),
        sa.Column("superseded_by", sa.String(), nullable=True),
        sa.Column("proposition_id", sa.String(), nullable=True),
        sa.Column("stance_id", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("claim_id"),
    )
    op.create_index("ix_claims_claim_type", "claims", ["claim_type"])
    op.create_index("ix_claims_session_id", "claims", ["session_id"])
    op.create_index("idx_claims_state_time", "claims", ["state", "created_at"])

    op.create_table(
        "claim_sources",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("claim_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["claim_id"], ["claims.claim_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["unit_id"],
            ["conversation_units.unit_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_claim_sources_claim_id", "claim_sources", ["claim_id"])
    op.create_index("ix_claim_sources_unit_id", "claim_sources", ["unit_id"])

    op.create_table(
        "observer_outputs",
        sa.Column("output_id", sa.String(), nullable=False),
        sa.Column("observer_type", sa.String(), nullable=False),
        sa.Column("output_type", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=True),
        sa.Column("content_json", sa.Text(), nullable=False),
        sa.Column("source_claims_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("output_id"),
    )
    op.create_index("ix_observer_outputs_observer_type", "observer_outputs", ["observer_type"])
    op.create_index("ix_observer_outputs_unit_id", "observer_outputs", ["unit_id"])


def downgrade() -> None:
    op.drop_table("observer_outputs")
    op.drop_table("claim_sources")
    op.drop_table("claims")
    op.drop_table("entity_mentions")
    op.drop_table("entities")
    op.drop_table("relations")
    op.drop_table("stances")
    op.drop_table("propositions")
    op.drop_table("spans")
    op.drop_table("conversation_units")
    op.drop_table("task_events")
    op.drop_table("tasks")
