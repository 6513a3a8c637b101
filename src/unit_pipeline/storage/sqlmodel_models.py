"""SQLModel table definitions for the task queue and the knowledge store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_queue", "status", "priority_value", "execute_at"),)

    task_id: str = Field(primary_key=True)
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    priority: str
    priority_value: int = Field(default=50)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=5)
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    last_error_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    next_retry_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    backoff_json: str = Field(sa_column=Column(Text, nullable=False))
    checkpoint_json: str | None = Field(default=None, sa_column=Column(Text))
    execute_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    group_id: str | None = None
    depends_on: str | None = None
    session_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEventRecord(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ConversationUnitRecord(SQLModel, table=True):
    __tablename__ = "conversation_units"  # type: ignore[bad-override]

    unit_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    speaker: str = Field(default="user")
    raw_text: str = Field(sa_column=Column(Text, nullable=False))
    sanitized_text: str = Field(sa_column=Column(Text, nullable=False))
    stage: str | None = None
    processed: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, index=True, server_default="0"),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    processed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class SpanRecord(SQLModel, table=True):
    __tablename__ = "spans"  # type: ignore[bad-override]

    span_id: str = Field(primary_key=True)
    unit_id: str = Field(
        sa_column=Column(
            ForeignKey("conversation_units.unit_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    char_start: int
    char_end: int
    text_excerpt: str = Field(sa_column=Column(Text, nullable=False))
    matched_by: str
    pattern_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PropositionRecord(SQLModel, table=True):
    __tablename__ = "propositions"  # type: ignore[bad-override]

    proposition_id: str = Field(primary_key=True)
    unit_id: str = Field(
        sa_column=Column(
            ForeignKey("conversation_units.unit_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    position: int = Field(default=0)
    content: str = Field(sa_column=Column(Text, nullable=False))
    subject: str
    predicate: str | None = None
    obj: str | None = None
    proposition_type: str
    span_ids_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class StanceRecord(SQLModel, table=True):
    __tablename__ = "stances"  # type: ignore[bad-override]

    stance_id: str = Field(primary_key=True)
    proposition_id: str = Field(
        sa_column=Column(
            ForeignKey("propositions.proposition_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    unit_id: str = Field(index=True)
    holder: str = Field(default="speaker")
    epistemic_json: str = Field(sa_column=Column(Text, nullable=False))
    volitional_json: str = Field(sa_column=Column(Text, nullable=False))
    deontic_json: str = Field(sa_column=Column(Text, nullable=False))
    affective_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RelationRecord(SQLModel, table=True):
    __tablename__ = "relations"  # type: ignore[bad-override]

    relation_id: str = Field(primary_key=True)
    unit_id: str = Field(index=True)
    source_id: str = Field(
        sa_column=Column(
            ForeignKey("propositions.proposition_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    target_id: str = Field(
        sa_column=Column(
            ForeignKey("propositions.proposition_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    category: str
    subtype: str = Field(default="unspecified")
    strength: float = Field(default=0.5)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EntityRecord(SQLModel, table=True):
    __tablename__ = "entities"  # type: ignore[bad-override]

    entity_id: str = Field(primary_key=True)
    canonical_name: str = Field(index=True)
    entity_type: str
    aliases_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    mention_count: int = Field(default=1)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_referenced: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EntityMentionRecord(SQLModel, table=True):
    __tablename__ = "entity_mentions"  # type: ignore[bad-override]

    mention_id: str = Field(primary_key=True)
    unit_id: str = Field(
        sa_column=Column(
            ForeignKey("conversation_units.unit_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    position: int = Field(default=0)
    text: str
    mention_type: str
    suggested_type: str
    span_id: str | None = None
    resolved_entity_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("entities.entity_id", ondelete="SET NULL"), index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ClaimRecord(SQLModel, table=True):
    __tablename__ = "claims"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_claims_state_time", "state", "created_at"),)

    claim_id: str = Field(primary_key=True)
    statement: str = Field(sa_column=Column(Text, nullable=False))
    subject: str
    claim_type: str = Field(index=True)
    temporality: str
    abstraction: str
    source_type: str
    confidence: float
    emotional_valence: float = Field(default=0.0)
    emotional_intensity: float = Field(default=0.0)
    stakes: str
    state: str = Field(default="active")
    superseded_by: str | None = None
    proposition_id: str | None = None
    stance_id: str | None = None
    session_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ClaimSourceRecord(SQLModel, table=True):
    __tablename__ = "claim_sources"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    claim_id: str = Field(
        sa_column=Column(
            ForeignKey("claims.claim_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    unit_id: str = Field(
        sa_column=Column(
            ForeignKey("conversation_units.unit_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ObserverOutputRecord(SQLModel, table=True):
    __tablename__ = "observer_outputs"  # type: ignore[bad-override]

    output_id: str = Field(primary_key=True)
    observer_type: str = Field(index=True)
    output_type: str
    unit_id: str | None = Field(default=None, index=True)
    content_json: str = Field(sa_column=Column(Text, nullable=False))
    source_claims_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ExtractionTraceRecord(SQLModel, table=True):
    __tablename__ = "extraction_traces"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_extraction_traces_target", "target_type", "target_id"),)

    trace_id: str = Field(primary_key=True)
    target_type: str
    target_id: str
    unit_id: str = Field(
        sa_column=Column(
            ForeignKey("conversation_units.unit_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    extractor_id: str
    input_text: str = Field(sa_column=Column(Text, nullable=False))
    span_id: str | None = None
    char_start: int | None = None
    char_end: int | None = None
    matched_pattern: str | None = None
    matched_text: str | None = Field(default=None, sa_column=Column(Text))
    llm_prompt: str | None = Field(default=None, sa_column=Column(Text))
    llm_response: str | None = Field(default=None, sa_column=Column(Text))
    llm_model: str | None = None
    llm_tokens_used: int | None = None
    processing_time_ms: int | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
