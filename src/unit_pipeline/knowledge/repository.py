"""Knowledge store: conversational units, primitives, entities and claims."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from unit_pipeline.errors import RecordNotFoundError
from unit_pipeline.extraction.patterns import normalize_text
from unit_pipeline.knowledge.models import (
    Abstraction,
    Affective,
    Claim,
    ClaimDraft,
    ClaimState,
    ClaimType,
    ConversationUnit,
    Deontic,
    Entity,
    EntityMention,
    EntityType,
    Epistemic,
    ExtractionTrace,
    MentionDraft,
    MentionType,
    ModelTrace,
    ObserverOutput,
    PrimitiveBatch,
    Proposition,
    PropositionDraft,
    PropositionType,
    Relation,
    RelationCategory,
    RelationDraft,
    SourceType,
    Span,
    SpanMatch,
    Stakes,
    Stance,
    SuggestedEntityType,
    Temporality,
    TraceTarget,
    UnitCreate,
    UnitStage,
    UnitSummary,
    Volitional,
)
from unit_pipeline.storage.alembic_runner import upgrade_head
from unit_pipeline.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_dict,
    load_json_list,
    optional_utc,
    to_utc_aware_datetime,
    utc_now,
)
from unit_pipeline.storage.sqlmodel_models import (
    ClaimRecord,
    ClaimSourceRecord,
    ConversationUnitRecord,
    EntityMentionRecord,
    EntityRecord,
    ExtractionTraceRecord,
    ObserverOutputRecord,
    PropositionRecord,
    RelationRecord,
    SpanRecord,
    StanceRecord,
)

logger = logging.getLogger(__name__)


class KnowledgeRepository:
    """Persistence facade for everything the pipeline reads and produces."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # Conversational units

    def create_unit(self, payload: UnitCreate) -> ConversationUnit:
        now = utc_now()
        row = ConversationUnitRecord(
            unit_id=payload.unit_id or str(uuid4()),
            session_id=payload.session_id,
            speaker=payload.speaker,
            raw_text=payload.text,
            sanitized_text=normalize_text(payload.text),
            stage=UnitStage.CREATED.value,
            processed=False,
            created_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_unit(row)

    def get_unit(self, unit_id: str) -> ConversationUnit | None:
        with Session(self.engine) as session:
            row = session.get(ConversationUnitRecord, unit_id)
            return _to_unit(row) if row is not None else None

    def require_unit(self, unit_id: str) -> ConversationUnit:
        unit = self.get_unit(unit_id)
        if unit is None:
            raise RecordNotFoundError(f"Conversation unit not found: {unit_id}")
        return unit

    def list_units(
        self,
        *,
        processed: bool | None = None,
        limit: int | None = None,
    ) -> list[ConversationUnit]:
        with Session(self.engine) as session:
            statement = select(ConversationUnitRecord).order_by(
                col(ConversationUnitRecord.created_at).asc(),
            )
            if processed is not None:
                statement = statement.where(ConversationUnitRecord.processed == processed)
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_unit(row) for row in rows]

    def set_unit_stage(self, unit_id: str, stage: UnitStage) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(ConversationUnitRecord)
                .where(col(ConversationUnitRecord.unit_id) == unit_id)
                .values(stage=stage.value),
            )
            session.commit()

    def mark_unit_processed(self, unit_id: str) -> bool:
        """Flip ``processed`` once; returns False when it was already set."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ConversationUnitRecord)
                .where(
                    col(ConversationUnitRecord.unit_id) == unit_id,
                    col(ConversationUnitRecord.processed).is_(False),
                )
                .values(
                    processed=True,
                    stage=UnitStage.COMPLETED.value,
                    processed_at=utc_now(),
                ),
            )
            session.commit()
        return bool(result.rowcount)

    def unit_summary(self, unit_id: str) -> UnitSummary:
        with Session(self.engine) as session:
            span_count = _count(session, SpanRecord, SpanRecord.unit_id == unit_id)
            proposition_count = _count(
                session,
                PropositionRecord,
                PropositionRecord.unit_id == unit_id,
            )
            claim_count = _count(session, ClaimSourceRecord, ClaimSourceRecord.unit_id == unit_id)
            entity_count = session.exec(
                select(func.count(func.distinct(EntityMentionRecord.resolved_entity_id))).where(
                    EntityMentionRecord.unit_id == unit_id,
                    col(EntityMentionRecord.resolved_entity_id).is_not(None),
                ),
            ).one()
        return UnitSummary(
            span_count=span_count,
            proposition_count=proposition_count,
            claim_count=claim_count,
            entity_count=int(entity_count or 0),
        )

    # Spans

    def add_spans(self, unit_id: str, matches: Sequence[SpanMatch]) -> list[Span]:
        now = utc_now()
        rows = [
            SpanRecord(
                span_id=str(uuid4()),
                unit_id=unit_id,
                char_start=match.char_start,
                char_end=match.char_end,
                text_excerpt=match.text_excerpt,
                matched_by=match.matched_by,
                pattern_id=match.pattern_id,
                created_at=now,
            )
            for match in matches
        ]
        with Session(self.engine) as session:
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_span(row) for row in rows]

    def list_spans(self, unit_id: str) -> list[Span]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SpanRecord)
                .where(SpanRecord.unit_id == unit_id)
                .order_by(col(SpanRecord.char_start).asc(), col(SpanRecord.char_end).asc()),
            ).all()
        return [_to_span(row) for row in rows]

    def has_spans(self, unit_id: str) -> bool:
        with Session(self.engine) as session:
            return _count(session, SpanRecord, SpanRecord.unit_id == unit_id) > 0

    # Layer-1 primitives

    def save_primitives(
        self,
        unit_id: str,
        *,
        propositions: Sequence[PropositionDraft],
        relations: Sequence[RelationDraft],
        mentions: Sequence[MentionDraft],
        trace: ModelTrace | None = None,
    ) -> PrimitiveBatch:
        """Store one unit's extraction output in a single transaction.

        Each proposition gets its stance; relations are kept only when both
        endpoint indexes name a stored proposition. With ``trace`` set, every
        proposition also gets an extraction trace anchored on its first span.
        """

        now = utc_now()
        proposition_rows: list[PropositionRecord] = []
        stance_rows: list[StanceRecord] = []
        for position, draft in enumerate(propositions):
            proposition_id = str(uuid4())
            proposition_rows.append(
                PropositionRecord(
                    proposition_id=proposition_id,
                    unit_id=unit_id,
                    position=position,
                    content=draft.content,
                    subject=draft.subject,
                    predicate=draft.predicate,
                    obj=draft.obj,
                    proposition_type=draft.proposition_type.value,
                    span_ids_json=dump_json(draft.span_ids),
                    created_at=now,
                ),
            )
            stance_rows.append(
                StanceRecord(
                    stance_id=str(uuid4()),
                    proposition_id=proposition_id,
                    unit_id=unit_id,
                    holder=draft.stance.holder,
                    epistemic_json=dump_json(draft.stance.epistemic.to_dict()),
                    volitional_json=dump_json(draft.stance.volitional.to_dict()),
                    deontic_json=dump_json(draft.stance.deontic.to_dict()),
                    affective_json=dump_json(draft.stance.affective.to_dict()),
                    created_at=now,
                ),
            )

        relation_rows: list[RelationRecord] = []
        for relation in relations:
            if not (
                0 <= relation.source_index < len(proposition_rows)
                and 0 <= relation.target_index < len(proposition_rows)
            ):
                logger.warning(
                    "Skipping relation %s->%s for unit %s: endpoint missing",
                    relation.source_index,
                    relation.target_index,
                    unit_id,
                )
                continue
            relation_rows.append(
                RelationRecord(
                    relation_id=str(uuid4()),
                    unit_id=unit_id,
                    source_id=proposition_rows[relation.source_index].proposition_id,
                    target_id=proposition_rows[relation.target_index].proposition_id,
                    category=relation.category.value,
                    subtype=relation.subtype,
                    strength=relation.strength,
                    created_at=now,
                ),
            )

        mention_rows = [
            EntityMentionRecord(
                mention_id=str(uuid4()),
                unit_id=unit_id,
                position=position,
                text=mention.text,
                mention_type=mention.mention_type.value,
                suggested_type=mention.suggested_type.value,
                span_id=mention.span_id,
                created_at=now,
            )
            for position, mention in enumerate(mentions)
        ]

        with Session(self.engine) as session:
            session.add_all(proposition_rows)
            session.flush()
            session.add_all([*stance_rows, *relation_rows, *mention_rows])
            if trace is not None:
                session.add_all(
                    _trace_rows(
                        session,
                        unit_id,
                        trace,
                        TraceTarget.PROPOSITION,
                        [
                            (row.proposition_id, draft.span_ids)
                            for row, draft in zip(proposition_rows, propositions, strict=True)
                        ],
                    ),
                )
            session.commit()
            for row in [*proposition_rows, *stance_rows, *relation_rows, *mention_rows]:
                session.refresh(row)
            return PrimitiveBatch(
                propositions=[_to_proposition(row) for row in proposition_rows],
                stances=[_to_stance(row) for row in stance_rows],
                relations=[_to_relation(row) for row in relation_rows],
                mentions=[_to_mention(row) for row in mention_rows],
            )

    def load_primitives(self, unit_id: str) -> PrimitiveBatch:
        with Session(self.engine) as session:
            propositions = session.exec(
                select(PropositionRecord)
                .where(PropositionRecord.unit_id == unit_id)
                .order_by(col(PropositionRecord.position).asc()),
            ).all()
            stances = session.exec(
                select(StanceRecord).where(StanceRecord.unit_id == unit_id),
            ).all()
            relations = session.exec(
                select(RelationRecord).where(RelationRecord.unit_id == unit_id),
            ).all()
            mentions = session.exec(
                select(EntityMentionRecord)
                .where(EntityMentionRecord.unit_id == unit_id)
                .order_by(col(EntityMentionRecord.position).asc()),
            ).all()
            return PrimitiveBatch(
                propositions=[_to_proposition(row) for row in propositions],
                stances=[_to_stance(row) for row in stances],
                relations=[_to_relation(row) for row in relations],
                mentions=[_to_mention(row) for row in mentions],
            )

    def has_propositions(self, unit_id: str) -> bool:
        with Session(self.engine) as session:
            return _count(session, PropositionRecord, PropositionRecord.unit_id == unit_id) > 0

    def recent_propositions(self, limit: int = 10) -> list[Proposition]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PropositionRecord)
                .order_by(col(PropositionRecord.created_at).desc())
                .limit(limit),
            ).all()
        return [_to_proposition(row) for row in rows]

    def resolve_mention(self, mention_id: str, entity_id: str) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(EntityMentionRecord)
                .where(col(EntityMentionRecord.mention_id) == mention_id)
                .values(resolved_entity_id=entity_id),
            )
            session.commit()

    # Entities

    def create_entity(
        self,
        *,
        canonical_name: str,
        entity_type: EntityType,
        aliases: Iterable[str] = (),
    ) -> Entity:
        now = utc_now()
        row = EntityRecord(
            entity_id=str(uuid4()),
            canonical_name=canonical_name,
            entity_type=entity_type.value,
            aliases_json=dump_json(_unique(aliases)),
            mention_count=1,
            created_at=now,
            last_referenced=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entity(row)

    def get_entity(self, entity_id: str) -> Entity | None:
        with Session(self.engine) as session:
            row = session.get(EntityRecord, entity_id)
            return _to_entity(row) if row is not None else None

    def recent_entities(self, limit: int = 20) -> list[Entity]:
        """Entities ordered by most recent reference."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(EntityRecord)
                .order_by(col(EntityRecord.last_referenced).desc())
                .limit(limit),
            ).all()
        return [_to_entity(row) for row in rows]

    def find_entity_by_name(self, name: str) -> Entity | None:
        """Case-insensitive match on canonical name, then on aliases, across all entities.

        The most recently referenced entity wins when several match.
        """

        wanted = name.strip().lower()
        if not wanted:
            return None
        with Session(self.engine) as session:
            row = session.exec(
                select(EntityRecord)
                .where(func.lower(EntityRecord.canonical_name) == wanted)
                .order_by(col(EntityRecord.last_referenced).desc()),
            ).first()
            if row is None:
                candidates = session.exec(
                    select(EntityRecord)
                    .where(col(EntityRecord.aliases_json).ilike(f"%{wanted}%"))
                    .order_by(col(EntityRecord.last_referenced).desc()),
                ).all()
                row = next(
                    (
                        candidate
                        for candidate in candidates
                        if any(
                            str(alias).lower() == wanted
                            for alias in load_json_list(candidate.aliases_json)
                        )
                    ),
                    None,
                )
            return _to_entity(row) if row is not None else None

    def record_entity_reference(self, entity_id: str, *, at: datetime | None = None) -> Entity:
        """Count one more mention of an existing entity."""

        with Session(self.engine) as session:
            row = session.get(EntityRecord, entity_id)
            if row is None:
                raise RecordNotFoundError(f"Entity not found: {entity_id}")
            row.mention_count += 1
            row.last_referenced = at or utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entity(row)

    def merge_entities(self, *, keep_id: str, delete_id: str) -> Entity:
        """Fold ``delete_id`` into ``keep_id`` and remove it.

        Aliases become the union of both alias sets plus the removed entity's
        canonical name; mention counts add up; the later reference time wins.
        Mentions resolved to the removed entity are repointed.
        """

        if keep_id == delete_id:
            raise ValueError("Cannot merge an entity into itself.")
        with Session(self.engine) as session:
            keep = session.get(EntityRecord, keep_id)
            drop = session.get(EntityRecord, delete_id)
            if keep is None:
                raise RecordNotFoundError(f"Entity not found: {keep_id}")
            if drop is None:
                raise RecordNotFoundError(f"Entity not found: {delete_id}")

            aliases = _unique(
                [
                    *load_json_list(keep.aliases_json),
                    *load_json_list(drop.aliases_json),
                    drop.canonical_name,
                ],
                exclude=keep.canonical_name,
            )
            keep.aliases_json = dump_json(aliases)
            keep.mention_count += drop.mention_count
            keep.last_referenced = max(
                to_utc_aware_datetime(keep.last_referenced),
                to_utc_aware_datetime(drop.last_referenced),
            )
            session.exec(
                sa_update(EntityMentionRecord)
                .where(col(EntityMentionRecord.resolved_entity_id) == delete_id)
                .values(resolved_entity_id=keep_id),
            )
            session.add(keep)
            session.delete(drop)
            session.commit()
            session.refresh(keep)
            merged = _to_entity(keep)
        logger.info("Merged entity %s into %s", delete_id, keep_id)
        return merged

    # Claims

    def save_claims(
        self,
        unit_id: str,
        drafts: Sequence[ClaimDraft],
        *,
        session_id: str | None = None,
        trace: ModelTrace | None = None,
    ) -> list[Claim]:
        """Store derived claims and link each one to its source unit.

        With ``trace`` set, each claim is traced to the first span of the
        proposition it was derived from.
        """

        now = utc_now()
        rows = [
            ClaimRecord(
                claim_id=str(uuid4()),
                statement=draft.statement,
                subject=draft.subject,
                claim_type=draft.claim_type.value,
                temporality=draft.temporality.value,
                abstraction=draft.abstraction.value,
                source_type=draft.source_type.value,
                confidence=draft.confidence,
                emotional_valence=draft.emotional_valence,
                emotional_intensity=draft.emotional_intensity,
                stakes=draft.stakes.value,
                state=ClaimState.ACTIVE.value,
                proposition_id=draft.proposition_id,
                stance_id=draft.stance_id,
                session_id=session_id,
                created_at=now,
            )
            for draft in drafts
        ]
        with Session(self.engine) as session:
            session.add_all(rows)
            session.flush()
            session.add_all(
                [
                    ClaimSourceRecord(claim_id=row.claim_id, unit_id=unit_id, created_at=now)
                    for row in rows
                ],
            )
            if trace is not None:
                session.add_all(
                    _trace_rows(
                        session,
                        unit_id,
                        trace,
                        TraceTarget.CLAIM,
                        [(row.claim_id, _proposition_span_ids(session, row)) for row in rows],
                    ),
                )
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_claim(row) for row in rows]

    def get_claim(self, claim_id: str) -> Claim | None:
        with Session(self.engine) as session:
            row = session.get(ClaimRecord, claim_id)
            return _to_claim(row) if row is not None else None

    def list_claims_for_unit(self, unit_id: str) -> list[Claim]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ClaimRecord)
                .join(
                    ClaimSourceRecord,
                    col(ClaimSourceRecord.claim_id) == col(ClaimRecord.claim_id),
                )
                .where(ClaimSourceRecord.unit_id == unit_id)
                .order_by(col(ClaimRecord.created_at).asc()),
            ).all()
        return [_to_claim(row) for row in rows]

    def has_claim_sources(self, unit_id: str) -> bool:
        with Session(self.engine) as session:
            return _count(session, ClaimSourceRecord, ClaimSourceRecord.unit_id == unit_id) > 0

    def recent_claims(
        self,
        limit: int = 50,
        *,
        state: ClaimState | None = ClaimState.ACTIVE,
    ) -> list[Claim]:
        with Session(self.engine) as session:
            statement = (
                select(ClaimRecord).order_by(col(ClaimRecord.created_at).desc()).limit(limit)
            )
            if state is not None:
                statement = statement.where(ClaimRecord.state == state.value)
            rows = session.exec(statement).all()
        return [_to_claim(row) for row in rows]

    def supersede_claim(self, claim_id: str, *, superseded_by: str) -> bool:
        """Point an old claim at its replacement; the row itself stays."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ClaimRecord)
                .where(col(ClaimRecord.claim_id) == claim_id)
                .values(superseded_by=superseded_by, state=ClaimState.SUPERSEDED.value),
            )
            session.commit()
        return bool(result.rowcount)

    # Observer outputs

    def add_observer_output(
        self,
        *,
        observer_type: str,
        output_type: str,
        content: dict[str, Any],
        source_claim_ids: Sequence[str],
        unit_id: str | None = None,
    ) -> ObserverOutput:
        row = ObserverOutputRecord(
            output_id=str(uuid4()),
            observer_type=observer_type,
            output_type=output_type,
            unit_id=unit_id,
            content_json=dump_json(content),
            source_claims_json=dump_json(list(source_claim_ids)),
            created_at=utc_now(),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_observer_output(row)

    def list_observer_outputs(
        self,
        *,
        unit_id: str | None = None,
        observer_type: str | None = None,
        limit: int = 100,
    ) -> list[ObserverOutput]:
        with Session(self.engine) as session:
            statement = (
                select(ObserverOutputRecord)
                .order_by(col(ObserverOutputRecord.created_at).desc())
                .limit(limit)
            )
            if unit_id is not None:
                statement = statement.where(ObserverOutputRecord.unit_id == unit_id)
            if observer_type is not None:
                statement = statement.where(ObserverOutputRecord.observer_type == observer_type)
            rows = session.exec(statement).all()
        return [_to_observer_output(row) for row in rows]

    # Extraction traces

    def list_extraction_traces(
        self,
        unit_id: str,
        *,
        target_type: TraceTarget | None = None,
    ) -> list[ExtractionTrace]:
        with Session(self.engine) as session:
            statement = (
                select(ExtractionTraceRecord)
                .where(ExtractionTraceRecord.unit_id == unit_id)
                .order_by(col(ExtractionTraceRecord.created_at).asc())
            )
            if target_type is not None:
                statement = statement.where(
                    ExtractionTraceRecord.target_type == target_type.value,
                )
            rows = session.exec(statement).all()
        return [_to_extraction_trace(row) for row in rows]


def _count(session: Session, model: type, *criteria: Any) -> int:
    value = session.exec(select(func.count()).select_from(model).where(*criteria)).one()
    return int(value or 0)


def _proposition_span_ids(session: Session, claim: ClaimRecord) -> list[str]:
    if claim.proposition_id is None:
        return []
    proposition = session.get(PropositionRecord, claim.proposition_id)
    if proposition is None:
        return []
    return [str(item) for item in load_json_list(proposition.span_ids_json)]


def _trace_rows(
    session: Session,
    unit_id: str,
    trace: ModelTrace,
    target_type: TraceTarget,
    targets: Sequence[tuple[str, Sequence[str]]],
) -> list[ExtractionTraceRecord]:
    """One trace per target, anchored on the first of its spans that still exists."""

    spans = {
        row.span_id: row
        for row in session.exec(select(SpanRecord).where(SpanRecord.unit_id == unit_id)).all()
    }
    now = utc_now()
    rows: list[ExtractionTraceRecord] = []
    for target_id, span_ids in targets:
        span = next((spans[span_id] for span_id in span_ids if span_id in spans), None)
        rows.append(
            ExtractionTraceRecord(
                trace_id=str(uuid4()),
                target_type=target_type.value,
                target_id=target_id,
                unit_id=unit_id,
                extractor_id=trace.extractor_id,
                input_text=trace.input_text,
                span_id=span.span_id if span is not None else None,
                char_start=span.char_start if span is not None else None,
                char_end=span.char_end if span is not None else None,
                matched_pattern=span.pattern_id if span is not None else None,
                matched_text=span.text_excerpt if span is not None else None,
                llm_prompt=trace.prompt,
                llm_response=trace.response,
                llm_model=trace.model,
                llm_tokens_used=trace.tokens_used,
                processing_time_ms=trace.processing_time_ms,
                error=trace.error,
                created_at=now,
            ),
        )
    return rows


def _unique(values: Iterable[str], *, exclude: str | None = None) -> list[str]:
    seen: set[str] = set()
    if exclude is not None:
        seen.add(exclude.lower())
    result: list[str] = []
    for value in values:
        key = value.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(value.strip())
    return result


def _to_unit(row: ConversationUnitRecord) -> ConversationUnit:
    return ConversationUnit(
        unit_id=row.unit_id,
        session_id=row.session_id,
        speaker=row.speaker,
        raw_text=row.raw_text,
        sanitized_text=row.sanitized_text,
        stage=UnitStage(row.stage) if row.stage else None,
        processed=bool(row.processed),
        created_at=to_utc_aware_datetime(row.created_at),
        processed_at=optional_utc(row.processed_at),
    )


def _to_span(row: SpanRecord) -> Span:
    return Span(
        span_id=row.span_id,
        unit_id=row.unit_id,
        char_start=row.char_start,
        char_end=row.char_end,
        text_excerpt=row.text_excerpt,
        matched_by=row.matched_by,
        pattern_id=row.pattern_id,
    )


def _to_proposition(row: PropositionRecord) -> Proposition:
    return Proposition(
        proposition_id=row.proposition_id,
        unit_id=row.unit_id,
        position=row.position,
        content=row.content,
        subject=row.subject,
        proposition_type=PropositionType(row.proposition_type),
        span_ids=[str(item) for item in load_json_list(row.span_ids_json)],
        created_at=to_utc_aware_datetime(row.created_at),
        predicate=row.predicate,
        obj=row.obj,
    )


def _to_stance(row: StanceRecord) -> Stance:
    return Stance(
        stance_id=row.stance_id,
        proposition_id=row.proposition_id,
        unit_id=row.unit_id,
        holder=row.holder,
        epistemic=Epistemic.from_dict(load_json_dict(row.epistemic_json)),
        volitional=Volitional.from_dict(load_json_dict(row.volitional_json)),
        deontic=Deontic.from_dict(load_json_dict(row.deontic_json)),
        affective=Affective.from_dict(load_json_dict(row.affective_json)),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_relation(row: RelationRecord) -> Relation:
    return Relation(
        relation_id=row.relation_id,
        unit_id=row.unit_id,
        source_id=row.source_id,
        target_id=row.target_id,
        category=RelationCategory(row.category),
        subtype=row.subtype,
        strength=row.strength,
    )


def _to_mention(row: EntityMentionRecord) -> EntityMention:
    return EntityMention(
        mention_id=row.mention_id,
        unit_id=row.unit_id,
        position=row.position,
        text=row.text,
        mention_type=MentionType(row.mention_type),
        suggested_type=SuggestedEntityType(row.suggested_type),
        span_id=row.span_id,
        resolved_entity_id=row.resolved_entity_id,
    )


def _to_entity(row: EntityRecord) -> Entity:
    return Entity(
        entity_id=row.entity_id,
        canonical_name=row.canonical_name,
        entity_type=EntityType(row.entity_type),
        aliases=[str(item) for item in load_json_list(row.aliases_json)],
        mention_count=row.mention_count,
        created_at=to_utc_aware_datetime(row.created_at),
        last_referenced=to_utc_aware_datetime(row.last_referenced),
    )


def _to_claim(row: ClaimRecord) -> Claim:
    return Claim(
        claim_id=row.claim_id,
        statement=row.statement,
        subject=row.subject,
        claim_type=ClaimType(row.claim_type),
        temporality=Temporality(row.temporality),
        abstraction=Abstraction(row.abstraction),
        source_type=SourceType(row.source_type),
        confidence=row.confidence,
        emotional_valence=row.emotional_valence,
        emotional_intensity=row.emotional_intensity,
        stakes=Stakes(row.stakes),
        state=ClaimState(row.state),
        superseded_by=row.superseded_by,
        proposition_id=row.proposition_id,
        stance_id=row.stance_id,
        session_id=row.session_id,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_observer_output(row: ObserverOutputRecord) -> ObserverOutput:
    return ObserverOutput(
        output_id=row.output_id,
        observer_type=row.observer_type,
        output_type=row.output_type,
        unit_id=row.unit_id,
        content=load_json_dict(row.content_json) or {},
        source_claim_ids=[str(item) for item in load_json_list(row.source_claims_json)],
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_extraction_trace(row: ExtractionTraceRecord) -> ExtractionTrace:
    return ExtractionTrace(
        trace_id=row.trace_id,
        target_type=TraceTarget(row.target_type),
        target_id=row.target_id,
        unit_id=row.unit_id,
        extractor_id=row.extractor_id,
        input_text=row.input_text,
        span_id=row.span_id,
        char_start=row.char_start,
        char_end=row.char_end,
        matched_pattern=row.matched_pattern,
        matched_text=row.matched_text,
        llm_prompt=row.llm_prompt,
        llm_response=row.llm_response,
        llm_model=row.llm_model,
        llm_tokens_used=row.llm_tokens_used,
        processing_time_ms=row.processing_time_ms,
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
    )
