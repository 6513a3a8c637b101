"""Conversational units, layer-1 primitives and layer-2 derived objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class UnitStage(str, Enum):
    """Last pipeline stage a unit finished."""

    CREATED = "created"
    PREPROCESSED = "preprocessed"
    EXTRACTED = "extracted"
    DERIVED = "derived"
    OBSERVED = "observed"
    OBSERVED_LLM = "observed_llm"
    COMPLETED = "completed"


class PropositionType(str, Enum):
    STATE = "state"
    EVENT = "event"
    PROCESS = "process"
    HYPOTHETICAL = "hypothetical"
    GENERIC = "generic"


class Evidence(str, Enum):
    DIRECT = "direct"
    INFERRED = "inferred"
    HEARSAY = "hearsay"
    ASSUMPTION = "assumption"


class VolitionType(str, Enum):
    WANT = "want"
    INTEND = "intend"
    HOPE = "hope"
    FEAR = "fear"
    PREFER = "prefer"


class DeonticSource(str, Enum):
    SELF = "self"
    OTHER = "other"
    CIRCUMSTANCE = "circumstance"


class DeonticType(str, Enum):
    MUST = "must"
    SHOULD = "should"
    MAY = "may"
    MUST_NOT = "must_not"


class RelationCategory(str, Enum):
    CAUSAL = "causal"
    TEMPORAL = "temporal"
    LOGICAL = "logical"
    TELEOLOGICAL = "teleological"
    COMPOSITIONAL = "compositional"
    CONTRASTIVE = "contrastive"
    CONDITIONAL = "conditional"


class MentionType(str, Enum):
    PRONOUN = "pronoun"
    PROPER_NOUN = "proper_noun"
    COMMON_NOUN = "common_noun"
    DEFINITE_DESCRIPTION = "definite_description"
    SELF_REFERENCE = "self_reference"


class SuggestedEntityType(str, Enum):
    PERSON = "person"
    ORGANIZATION = "organization"
    PROJECT = "project"
    ARTIFACT = "artifact"
    EVENT = "event"
    CONCEPT = "concept"
    PLACE = "place"
    SELF = "self"


class EntityType(str, Enum):
    PERSON = "person"
    ORGANIZATION = "organization"
    PRODUCT = "product"
    PLACE = "place"
    PROJECT = "project"
    ROLE = "role"
    EVENT = "event"
    CONCEPT = "concept"


class ClaimType(str, Enum):
    FACTUAL = "factual"
    BELIEF = "belief"
    INTENTION = "intention"
    COMMITMENT = "commitment"
    GOAL = "goal"
    CONCERN = "concern"
    PREFERENCE = "preference"
    EMOTION = "emotion"
    HYPOTHETICAL = "hypothetical"


class Temporality(str, Enum):
    ETERNAL = "eternal"
    SLOWLY_DECAYING = "slowly_decaying"
    FAST_DECAYING = "fast_decaying"
    POINT_IN_TIME = "point_in_time"


class Abstraction(str, Enum):
    SPECIFIC = "specific"
    GENERAL = "general"
    UNIVERSAL = "universal"


class SourceType(str, Enum):
    DIRECT = "direct"
    INFERRED = "inferred"


class Stakes(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXISTENTIAL = "existential"


class ClaimState(str, Enum):
    ACTIVE = "active"
    STALE = "stale"
    DORMANT = "dormant"
    SUPERSEDED = "superseded"


class TraceTarget(str, Enum):
    PROPOSITION = "proposition"
    CLAIM = "claim"


@dataclass(slots=True)
class UnitCreate:
    """Payload for submitting a new conversational unit."""

    text: str
    session_id: str
    speaker: str = "user"
    unit_id: str | None = None


@dataclass(slots=True)
class ConversationUnit:
    unit_id: str
    session_id: str
    speaker: str
    raw_text: str
    sanitized_text: str
    stage: UnitStage | None
    processed: bool
    created_at: datetime
    processed_at: datetime | None


@dataclass(slots=True)
class SpanMatch:
    """Pattern hit over a unit's sanitized text, before it gets an id."""

    char_start: int
    char_end: int
    text_excerpt: str
    pattern_id: str
    matched_by: str = "pattern"


@dataclass(slots=True)
class Span:
    span_id: str
    unit_id: str
    char_start: int
    char_end: int
    text_excerpt: str
    matched_by: str
    pattern_id: str | None


@dataclass(slots=True)
class Epistemic:
    certainty: float = 0.5
    evidence: Evidence = Evidence.INFERRED

    def to_dict(self) -> dict[str, Any]:
        return {"certainty": self.certainty, "evidence": self.evidence.value}

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Epistemic:
        if not raw:
            return cls()
        return cls(certainty=float(raw["certainty"]), evidence=Evidence(raw["evidence"]))


@dataclass(slots=True)
class Volitional:
    valence: float = 0.0
    strength: float = 0.0
    type: VolitionType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valence": self.valence,
            "strength": self.strength,
            "type": self.type.value if self.type else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Volitional:
        if not raw:
            return cls()
        kind = raw.get("type")
        return cls(
            valence=float(raw["valence"]),
            strength=float(raw["strength"]),
            type=VolitionType(kind) if kind else None,
        )


@dataclass(slots=True)
class Deontic:
    strength: float = 0.0
    source: DeonticSource | None = None
    type: DeonticType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strength": self.strength,
            "source": self.source.value if self.source else None,
            "type": self.type.value if self.type else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Deontic:
        if not raw:
            return cls()
        source = raw.get("source")
        kind = raw.get("type")
        return cls(
            strength=float(raw["strength"]),
            source=DeonticSource(source) if source else None,
            type=DeonticType(kind) if kind else None,
        )


@dataclass(slots=True)
class Affective:
    valence: float = 0.0
    arousal: float = 0.0
    emotions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valence": self.valence, "arousal": self.arousal, "emotions": list(self.emotions)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Affective:
        if not raw:
            return cls()
        return cls(
            valence=float(raw["valence"]),
            arousal=float(raw["arousal"]),
            emotions=[str(item) for item in raw.get("emotions") or []],
        )


@dataclass(slots=True)
class StanceDraft:
    epistemic: Epistemic = field(default_factory=Epistemic)
    volitional: Volitional = field(default_factory=Volitional)
    deontic: Deontic = field(default_factory=Deontic)
    affective: Affective = field(default_factory=Affective)
    holder: str = "speaker"


@dataclass(slots=True)
class PropositionDraft:
    content: str
    subject: str
    proposition_type: PropositionType
    stance: StanceDraft
    span_ids: list[str] = field(default_factory=list)
    predicate: str | None = None
    obj: str | None = None


@dataclass(slots=True)
class RelationDraft:
    source_index: int
    target_index: int
    category: RelationCategory
    subtype: str = "unspecified"
    strength: float = 0.5


@dataclass(slots=True)
class MentionDraft:
    text: str
    mention_type: MentionType
    suggested_type: SuggestedEntityType
    span_id: str | None = None


@dataclass(slots=True)
class Proposition:
    proposition_id: str
    unit_id: str
    position: int
    content: str
    subject: str
    proposition_type: PropositionType
    span_ids: list[str]
    created_at: datetime
    predicate: str | None = None
    obj: str | None = None


@dataclass(slots=True)
class Stance:
    stance_id: str
    proposition_id: str
    unit_id: str
    holder: str
    epistemic: Epistemic
    volitional: Volitional
    deontic: Deontic
    affective: Affective
    created_at: datetime


@dataclass(slots=True)
class Relation:
    relation_id: str
    unit_id: str
    source_id: str
    target_id: str
    category: RelationCategory
    subtype: str
    strength: float


@dataclass(slots=True)
class EntityMention:
    mention_id: str
    unit_id: str
    position: int
    text: str
    mention_type: MentionType
    suggested_type: SuggestedEntityType
    span_id: str | None
    resolved_entity_id: str | None


@dataclass(slots=True)
class PrimitiveBatch:
    """Layer-1 rows stored together for one unit."""

    propositions: list[Proposition]
    stances: list[Stance]
    relations: list[Relation]
    mentions: list[EntityMention]


@dataclass(slots=True)
class Entity:
    entity_id: str
    canonical_name: str
    entity_type: EntityType
    aliases: list[str]
    mention_count: int
    created_at: datetime
    last_referenced: datetime


@dataclass(slots=True)
class ClaimDraft:
    statement: str
    subject: str
    claim_type: ClaimType
    temporality: Temporality
    abstraction: Abstraction
    source_type: SourceType
    confidence: float
    emotional_valence: float = 0.0
    emotional_intensity: float = 0.0
    stakes: Stakes = Stakes.LOW
    proposition_id: str | None = None
    stance_id: str | None = None


@dataclass(slots=True)
class Claim:
    claim_id: str
    statement: str
    subject: str
    claim_type: ClaimType
    temporality: Temporality
    abstraction: Abstraction
    source_type: SourceType
    confidence: float
    emotional_valence: float
    emotional_intensity: float
    stakes: Stakes
    state: ClaimState
    superseded_by: str | None
    proposition_id: str | None
    stance_id: str | None
    session_id: str | None
    created_at: datetime


@dataclass(slots=True)
class ObserverOutput:
    output_id: str
    observer_type: str
    output_type: str
    unit_id: str | None
    content: dict[str, Any]
    source_claim_ids: list[str]
    created_at: datetime


@dataclass(slots=True)
class UnitSummary:
    """Counts reported when a unit finishes the pipeline."""

    span_count: int
    proposition_count: int
    claim_count: int
    entity_count: int

    def to_dict(self) -> dict[str, int]:
        return {
            "span_count": self.span_count,
            "proposition_count": self.proposition_count,
            "claim_count": self.claim_count,
            "entity_count": self.entity_count,
        }


@dataclass(slots=True)
class ModelTrace:
    """How a batch of rows was produced: extractor, input and the model exchange, if any."""

    extractor_id: str
    input_text: str
    prompt: str | None = None
    response: str | None = None
    model: str | None = None
    tokens_used: int | None = None
    processing_time_ms: int | None = None
    error: str | None = None


@dataclass(slots=True)
class ExtractionTrace:
    trace_id: str
    target_type: TraceTarget
    target_id: str
    unit_id: str
    extractor_id: str
    input_text: str
    span_id: str | None
    char_start: int | None
    char_end: int | None
    matched_pattern: str | None
    matched_text: str | None
    llm_prompt: str | None
    llm_response: str | None
    llm_model: str | None
    llm_tokens_used: int | None
    processing_time_ms: int | None
    error: str | None
    created_at: datetime
