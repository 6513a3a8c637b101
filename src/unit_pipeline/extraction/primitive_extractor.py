"""Unified single-call extraction of propositions, stances, relations and mentions."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from unit_pipeline.errors import ModelClientError
from unit_pipeline.extraction.budget import BudgetedContext, ModelTier, TIER_BUDGETS
from unit_pipeline.knowledge.models import (
    Affective,
    ConversationUnit,
    Deontic,
    DeonticSource,
    DeonticType,
    Epistemic,
    Evidence,
    MentionDraft,
    MentionType,
    PropositionDraft,
    PropositionType,
    RelationCategory,
    RelationDraft,
    Span,
    StanceDraft,
    SuggestedEntityType,
    Volitional,
    VolitionType,
)
from unit_pipeline.llm.client import ModelClient, TokenUsage

logger = logging.getLogger(__name__)

RECENT_PROPOSITIONS_IN_PROMPT = 5
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = (
    "You extract structured mental representations from speech. "
    "Respond with a single JSON object and nothing else."
)

EXTRACTION_OUTPUT_SCHEMA = """\
{
  "propositions": [
    {
      "content": "<core claim without modality>",
      "subject": "<main entity this is about>",
      "predicate": "<verb phrase, optional>",
      "object": "<what the predicate applies to, optional>",
      "type": "state|event|process|hypothetical|generic",
      "stance": {
        "epistemic": {"certainty": 0.0-1.0, "evidence": "direct|inferred|hearsay|assumption"},
        "volitional": {"valence": -1.0-1.0, "strength": 0.0-1.0,
                       "type": "want|intend|hope|fear|prefer"},
        "deontic": {"strength": 0.0-1.0, "source": "self|other|circumstance",
                    "type": "must|should|may|must_not"},
        "affective": {"valence": -1.0-1.0, "arousal": 0.0-1.0, "emotions": ["<emotion>"]}
      },
      "spanIndices": [0]
    }
  ],
  "relations": [
    {"sourceIndex": 0, "targetIndex": 1,
     "category": "causal|temporal|logical|teleological|compositional|contrastive|conditional",
     "subtype": "<because|before|implies|...>", "strength": 0.0-1.0}
  ],
  "entityMentions": [
    {"text": "<as written>",
     "mentionType": "pronoun|proper_noun|common_noun|definite_description|self_reference",
     "suggestedType": "person|organization|project|artifact|event|concept|place|self",
     "spanIndex": 0}
  ]
}"""

EnumT = TypeVar("EnumT", bound=Enum)


@dataclass(slots=True)
class ExtractionMetadata:
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    processing_time_ms: int = 0
    model_called: bool = False
    error: str | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens_prompt": self.tokens_used.prompt,
            "tokens_completion": self.tokens_used.completion,
            "tokens_total": self.tokens_used.total,
            "processing_time_ms": self.processing_time_ms,
            "model": self.model,
            "model_called": self.model_called,
            "error": self.error,
        }


@dataclass(slots=True)
class ExtractionResult:
    propositions: list[PropositionDraft] = field(default_factory=list)
    relations: list[RelationDraft] = field(default_factory=list)
    mentions: list[MentionDraft] = field(default_factory=list)
    metadata: ExtractionMetadata = field(default_factory=ExtractionMetadata)
    raw: dict[str, list[Any]] = field(default_factory=dict)
    prompt: str | None = None
    response_text: str | None = None


class PrimitiveExtractor:
    """Runs the single extraction call for a unit and normalizes its output."""

    def __init__(self, client: ModelClient, *, tier: ModelTier = ModelTier.MEDIUM) -> None:
        self.client = client
        self.tier = tier

    async def extract(
        self,
        unit: ConversationUnit,
        spans: Sequence[Span],
        context: BudgetedContext,
    ) -> ExtractionResult:
        """Extract layer-1 primitives with one model call.

        ``ModelClientError`` propagates so the task is retried; a reply that
        cannot be parsed gives an empty result with ``metadata.error`` set.
        """

        prompt = build_prompt(unit, spans, context)
        try:
            response = await self.client.call(
                self.tier,
                prompt,
                system_prompt=SYSTEM_PROMPT,
                options={"max_tokens": TIER_BUDGETS[self.tier].response_tokens},
            )
        except ModelClientError as error:
            logger.warning("Model call failed for unit %s: %s", unit.unit_id, error)
            raise

        parsed = load_json_object(response.content)
        raw = section_lists(parsed)
        result = convert_output(raw, spans)
        result.raw = raw
        result.prompt = prompt
        result.response_text = response.content
        result.metadata = ExtractionMetadata(
            tokens_used=response.tokens_used,
            processing_time_ms=response.processing_time_ms,
            model_called=True,
            error=None if parsed is not None else "Unparsable model response",
            model=response.model,
        )
        logger.info(
            "Extracted %d propositions, %d relations, %d mentions from unit %s",
            len(result.propositions),
            len(result.relations),
            len(result.mentions),
            unit.unit_id,
        )
        return result


def build_prompt(
    unit: ConversationUnit,
    spans: Sequence[Span],
    context: BudgetedContext,
) -> str:
    sections = [
        "Extract PROPOSITIONS (content stripped of modality), one STANCE per proposition "
        "(epistemic, volitional, deontic, affective), RELATIONS between propositions and "
        "ALL ENTITY MENTIONS including pronouns and self-references.",
    ]
    if context.preceding_summary:
        sections.append(f"<preceding_context>\n{context.preceding_summary}\n</preceding_context>")
    if spans:
        lines = [
            f'[{index}] "{span.text_excerpt}" (chars {span.char_start}-{span.char_end})'
            for index, span in enumerate(spans)
        ]
        sections.append("<matched_spans>\n" + "\n".join(lines) + "\n</matched_spans>")
    if context.entities:
        lines = []
        for entity in context.entities:
            aliases = f" aliases: {', '.join(entity.aliases)}" if entity.aliases else ""
            lines.append(f"- {entity.canonical_name} ({entity.entity_type.value}){aliases}")
        sections.append("<known_entities>\n" + "\n".join(lines) + "\n</known_entities>")
    if context.propositions:
        lines = [
            f"[R{index}] {proposition.content}"
            for index, proposition in enumerate(
                context.propositions[:RECENT_PROPOSITIONS_IN_PROMPT],
            )
        ]
        sections.append("<recent_propositions>\n" + "\n".join(lines) + "\n</recent_propositions>")
    sections.append(f'<input speaker="{unit.speaker}">\n{unit.sanitized_text}\n</input>')
    sections.append(f"Respond with JSON only:\n{EXTRACTION_OUTPUT_SCHEMA}")
    sections.append(
        "Use defaults for stance dimensions that are not clearly expressed. "
        "Return empty arrays, not null, when nothing is found. "
        'For "I"/"me" use mentionType "self_reference" and suggestedType "self".',
    )
    return "\n\n".join(sections)


def parse_response(content: str) -> dict[str, list[Any]]:
    """Pull the JSON object out of a model reply; anything unparsable is empty."""

    return section_lists(load_json_object(content))


def load_json_object(content: str) -> dict[str, Any] | None:
    """The JSON object in a reply, fenced or bare; ``None`` when there is none."""

    text = content.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    found = _OBJECT_RE.search(text)
    if found:
        text = found.group(0)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Failed to parse extraction response: %.500s", content)
        return None
    return parsed if isinstance(parsed, dict) else None


def section_lists(parsed: dict[str, Any] | None) -> dict[str, list[Any]]:
    sections: dict[str, list[Any]] = {"propositions": [], "relations": [], "entityMentions": []}
    if parsed is None:
        return sections
    return {key: parsed[key] if isinstance(parsed.get(key), list) else [] for key in sections}


def convert_output(raw: dict[str, list[Any]], spans: Sequence[Span]) -> ExtractionResult:
    propositions: list[PropositionDraft] = []
    for item in raw.get("propositions", []):
        if not isinstance(item, dict):
            continue
        stance = item.get("stance") if isinstance(item.get("stance"), dict) else {}
        propositions.append(
            PropositionDraft(
                content=str(item.get("content") or ""),
                subject=str(item.get("subject") or "unknown"),
                predicate=_optional_text(item.get("predicate")),
                obj=_optional_text(item.get("object")),
                proposition_type=_enum(PropositionType, item.get("type"), PropositionType.STATE),
                stance=_stance(stance),
                span_ids=_span_ids(item.get("spanIndices"), spans),
            ),
        )

    relations: list[RelationDraft] = []
    for item in raw.get("relations", []):
        if not isinstance(item, dict):
            continue
        source = _index(item.get("sourceIndex"))
        target = _index(item.get("targetIndex"))
        if source is None or target is None:
            continue
        if not (0 <= source < len(propositions) and 0 <= target < len(propositions)):
            continue
        relations.append(
            RelationDraft(
                source_index=source,
                target_index=target,
                category=_enum(RelationCategory, item.get("category"), RelationCategory.LOGICAL),
                subtype=str(item.get("subtype") or "unspecified"),
                strength=_clamp(item.get("strength"), 0.0, 1.0, 0.5),
            ),
        )

    mentions: list[MentionDraft] = []
    for item in raw.get("entityMentions", []):
        if not isinstance(item, dict) or not item.get("text"):
            continue
        span_index = _index(item.get("spanIndex"))
        if span_index is not None and 0 <= span_index < len(spans):
            span_id: str | None = spans[span_index].span_id
        else:
            span_id = spans[0].span_id if spans else None
        mentions.append(
            MentionDraft(
                text=str(item["text"]),
                mention_type=_enum(MentionType, item.get("mentionType"), MentionType.COMMON_NOUN),
                suggested_type=_enum(
                    SuggestedEntityType,
                    item.get("suggestedType"),
                    SuggestedEntityType.CONCEPT,
                ),
                span_id=span_id,
            ),
        )

    return ExtractionResult(propositions=propositions, relations=relations, mentions=mentions)


def _stance(raw: dict[str, Any]) -> StanceDraft:
    epistemic = raw.get("epistemic") if isinstance(raw.get("epistemic"), dict) else None
    volitional = raw.get("volitional") if isinstance(raw.get("volitional"), dict) else None
    deontic = raw.get("deontic") if isinstance(raw.get("deontic"), dict) else None
    affective = raw.get("affective") if isinstance(raw.get("affective"), dict) else None
    draft = StanceDraft()
    if epistemic is not None:
        draft.epistemic = Epistemic(
            certainty=_clamp(epistemic.get("certainty"), 0.0, 1.0, 0.5),
            evidence=_enum(Evidence, epistemic.get("evidence"), Evidence.INFERRED),
        )
    if volitional is not None:
        draft.volitional = Volitional(
            valence=_clamp(volitional.get("valence"), -1.0, 1.0, 0.0),
            strength=_clamp(volitional.get("strength"), 0.0, 1.0, 0.0),
            type=_enum(VolitionType, volitional.get("type"), None),
        )
    if deontic is not None:
        kind = deontic.get("type")
        if kind == "mustNot":
            kind = DeonticType.MUST_NOT.value
        draft.deontic = Deontic(
            strength=_clamp(deontic.get("strength"), 0.0, 1.0, 0.0),
            source=_enum(DeonticSource, deontic.get("source"), None),
            type=_enum(DeonticType, kind, None),
        )
    if affective is not None:
        emotions = affective.get("emotions")
        draft.affective = Affective(
            valence=_clamp(affective.get("valence"), -1.0, 1.0, 0.0),
            arousal=_clamp(affective.get("arousal"), 0.0, 1.0, 0.0),
            emotions=[item for item in emotions if isinstance(item, str)]
            if isinstance(emotions, list)
            else [],
        )
    return draft


def _enum(enum_type: type[EnumT], value: object, default: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        return default


def _clamp(value: object, low: float, high: float, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return default
    return max(low, min(high, float(value)))


def _optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _index(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _span_ids(indexes: object, spans: Sequence[Span]) -> list[str]:
    if not isinstance(indexes, list):
        return []
    return [
        spans[index].span_id
        for index in indexes
        if isinstance(index, int) and 0 <= index < len(spans)
    ]
