from __future__ import annotations

from dataclasses import replace

import allure
import pytest

from unit_pipeline.errors import RecordNotFoundError
from unit_pipeline.knowledge.models import (
    Abstraction,
    ClaimDraft,
    ClaimState,
    ClaimType,
    Deontic,
    DeonticType,
    EntityType,
    MentionDraft,
    MentionType,
    ModelTrace,
    PropositionDraft,
    PropositionType,
    RelationCategory,
    RelationDraft,
    SourceType,
    SpanMatch,
    StanceDraft,
    SuggestedEntityType,
    Temporality,
    TraceTarget,
    UnitCreate,
    UnitStage,
)
from unit_pipeline.knowledge.repository import KnowledgeRepository

pytestmark = [
    allure.epic("Knowledge Store"),
    allure.feature("Units, Primitives, Entities, Claims"),
]


def _claim(statement: str, confidence: float = 0.7) -> ClaimDraft:
    return ClaimDraft(
        statement=statement,
        subject="report",
        claim_type=ClaimType.COMMITMENT,
        temporality=Temporality.SLOWLY_DECAYING,
        abstraction=Abstraction.SPECIFIC,
        source_type=SourceType.DIRECT,
        confidence=confidence,
    )


def test_create_unit_normalizes_text(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(UnitCreate(text="  I need\n to  go ", session_id="s1"))

    assert unit.raw_text == "  I need\n to  go "
    assert unit.sanitized_text == "I need to go"
    assert unit.stage is UnitStage.CREATED
    assert unit.processed is False
    assert knowledge.require_unit(unit.unit_id) == unit
    with pytest.raises(RecordNotFoundError, match="missing"):
        knowledge.require_unit("missing")


def test_mark_unit_processed_flips_only_once(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(UnitCreate(text="Done.", session_id="s1"))

    assert knowledge.mark_unit_processed(unit.unit_id) is True
    assert knowledge.mark_unit_processed(unit.unit_id) is False

    stored = knowledge.require_unit(unit.unit_id)
    assert stored.processed
    assert stored.processed_at is not None
    assert stored.stage is UnitStage.COMPLETED
    assert knowledge.list_units(processed=False) == []
    assert [item.unit_id for item in knowledge.list_units(processed=True)] == [unit.unit_id]


def test_spans_are_listed_by_position(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(UnitCreate(text="I need to leave by Friday", session_id="s1"))
    knowledge.add_spans(
        unit.unit_id,
        [
            SpanMatch(char_start=15, char_end=24, text_excerpt="by Friday", pattern_id="deadline"),
            SpanMatch(char_start=0, char_end=9, text_excerpt="I need to", pattern_id="need_to"),
        ],
    )

    spans = knowledge.list_spans(unit.unit_id)

    assert [span.text_excerpt for span in spans] == ["I need to", "by Friday"]
    assert knowledge.has_spans(unit.unit_id)


def test_save_primitives_links_stances_and_drops_dangling_relations(
    knowledge: KnowledgeRepository,
) -> None:
    unit = knowledge.create_unit(
        UnitCreate(text="I must ship it because Sarah asked.", session_id="s1"),
    )
    stance = StanceDraft(deontic=Deontic(strength=0.9, type=DeonticType.MUST))

    batch = knowledge.save_primitives(
        unit.unit_id,
        propositions=[
            PropositionDraft("ship it", "self", PropositionType.EVENT, stance),
            PropositionDraft("Sarah asked", "Sarah", PropositionType.EVENT, StanceDraft()),
        ],
        relations=[
            RelationDraft(source_index=0, target_index=1, category=RelationCategory.CAUSAL),
            RelationDraft(source_index=0, target_index=5, category=RelationCategory.CAUSAL),
        ],
        mentions=[
            MentionDraft("Sarah", MentionType.PROPER_NOUN, SuggestedEntityType.PERSON),
        ],
    )

    assert [item.position for item in batch.propositions] == [0, 1]
    assert len(batch.stances) == 2
    assert batch.stances[0].proposition_id == batch.propositions[0].proposition_id
    assert batch.stances[0].deontic.type is DeonticType.MUST
    assert len(batch.relations) == 1
    assert batch.relations[0].source_id == batch.propositions[0].proposition_id
    assert batch.relations[0].target_id == batch.propositions[1].proposition_id

    loaded = knowledge.load_primitives(unit.unit_id)
    assert [item.content for item in loaded.propositions] == ["ship it", "Sarah asked"]
    assert loaded.mentions[0].resolved_entity_id is None
    assert knowledge.has_propositions(unit.unit_id)


def test_traces_anchor_each_proposition_and_claim_on_its_first_span(
    knowledge: KnowledgeRepository,
) -> None:
    unit = knowledge.create_unit(UnitCreate(text="I need to leave by Friday", session_id="s1"))
    need, deadline = knowledge.add_spans(
        unit.unit_id,
        [
            SpanMatch(char_start=0, char_end=9, text_excerpt="I need to", pattern_id="need_to"),
            SpanMatch(char_start=15, char_end=24, text_excerpt="by Friday", pattern_id="deadline"),
        ],
    )
    trace = ModelTrace(
        extractor_id="primitive_extractor",
        input_text=unit.raw_text,
        prompt="extract please",
        response='{"propositions": []}',
        model="m-large",
        tokens_used=42,
        processing_time_ms=7,
    )

    batch = knowledge.save_primitives(
        unit.unit_id,
        propositions=[
            PropositionDraft(
                "leave by Friday",
                "self",
                PropositionType.EVENT,
                StanceDraft(),
                span_ids=["gone", deadline.span_id, need.span_id],
            ),
            PropositionDraft("it is late", "time", PropositionType.STATE, StanceDraft()),
        ],
        relations=[],
        mentions=[],
        trace=trace,
    )
    leave = batch.propositions[0]
    (claim,) = knowledge.save_claims(
        unit.unit_id,
        [replace(_claim("leave by Friday"), proposition_id=leave.proposition_id)],
        trace=ModelTrace(extractor_id="claim_deriver", input_text=unit.raw_text),
    )

    anchored, unanchored = knowledge.list_extraction_traces(
        unit.unit_id,
        target_type=TraceTarget.PROPOSITION,
    )
    assert {anchored.target_id, unanchored.target_id} == {
        item.proposition_id for item in batch.propositions
    }
    if anchored.target_id != leave.proposition_id:
        anchored, unanchored = unanchored, anchored
    assert (anchored.span_id, anchored.char_start, anchored.char_end) == (deadline.span_id, 15, 24)
    assert (anchored.matched_pattern, anchored.matched_text) == ("deadline", "by Friday")
    assert (anchored.llm_prompt, anchored.llm_model, anchored.llm_tokens_used) == (
        "extract please",
        "m-large",
        42,
    )
    assert unanchored.span_id is None
    assert unanchored.llm_response == '{"propositions": []}'

    (claim_trace,) = knowledge.list_extraction_traces(unit.unit_id, target_type=TraceTarget.CLAIM)
    assert claim_trace.target_id == claim.claim_id
    assert claim_trace.extractor_id == "claim_deriver"
    assert claim_trace.matched_pattern == "deadline"
    assert claim_trace.llm_prompt is None
    assert len(knowledge.list_extraction_traces(unit.unit_id)) == 3


def test_find_entity_by_name_matches_whole_names_and_aliases(
    knowledge: KnowledgeRepository,
) -> None:
    robert = knowledge.create_entity(
        canonical_name="Robert",
        entity_type=EntityType.PERSON,
        aliases=["Bobby"],
    )

    by_name = knowledge.find_entity_by_name(" ROBERT ")
    by_alias = knowledge.find_entity_by_name("bobby")
    assert by_name is not None and by_alias is not None
    assert by_name.entity_id == by_alias.entity_id == robert.entity_id
    assert knowledge.find_entity_by_name("Bob") is None
    assert knowledge.find_entity_by_name("  ") is None


def test_merge_entities_unions_aliases_and_sums_mentions(knowledge: KnowledgeRepository) -> None:
    bob = knowledge.create_entity(
        canonical_name="Bobby",
        entity_type=EntityType.PERSON,
        aliases=["Bob"],
    )
    robert = knowledge.create_entity(
        canonical_name="Rob Smith",
        entity_type=EntityType.PERSON,
        aliases=["Robert"],
    )
    for _ in range(2):
        robert = knowledge.record_entity_reference(robert.entity_id)
    assert robert.mention_count == 3

    merged = knowledge.merge_entities(keep_id=robert.entity_id, delete_id=bob.entity_id)

    assert merged.entity_id == robert.entity_id
    assert set(merged.aliases) == {"Bob", "Robert", "Bobby"}
    assert merged.mention_count == 3 + bob.mention_count
    assert knowledge.get_entity(bob.entity_id) is None


def test_merge_entities_repoints_resolved_mentions(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(UnitCreate(text="Bob said hi.", session_id="s1"))
    batch = knowledge.save_primitives(
        unit.unit_id,
        propositions=[],
        relations=[],
        mentions=[MentionDraft("Bob", MentionType.PROPER_NOUN, SuggestedEntityType.PERSON)],
    )
    bob = knowledge.create_entity(canonical_name="Bob", entity_type=EntityType.PERSON)
    robert = knowledge.create_entity(canonical_name="Robert", entity_type=EntityType.PERSON)
    knowledge.resolve_mention(batch.mentions[0].mention_id, bob.entity_id)

    knowledge.merge_entities(keep_id=robert.entity_id, delete_id=bob.entity_id)

    mention = knowledge.load_primitives(unit.unit_id).mentions[0]
    assert mention.resolved_entity_id == robert.entity_id


def test_merge_entities_rejects_unknown_or_identical_ids(knowledge: KnowledgeRepository) -> None:
    entity = knowledge.create_entity(canonical_name="Sarah", entity_type=EntityType.PERSON)

    with pytest.raises(ValueError, match="itself"):
        knowledge.merge_entities(keep_id=entity.entity_id, delete_id=entity.entity_id)
    with pytest.raises(RecordNotFoundError):
        knowledge.merge_entities(keep_id=entity.entity_id, delete_id="missing")


def test_claims_link_to_source_unit_and_can_be_superseded(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(UnitCreate(text="I will ship it.", session_id="s1"))
    old, new = knowledge.save_claims(
        unit.unit_id,
        [_claim("ship on Friday"), _claim("ship on Monday", 0.9)],
        session_id="s1",
    )

    assert knowledge.has_claim_sources(unit.unit_id)
    assert {claim.claim_id for claim in knowledge.list_claims_for_unit(unit.unit_id)} == {
        old.claim_id,
        new.claim_id,
    }
    assert old.state is ClaimState.ACTIVE
    assert old.session_id == "s1"

    assert knowledge.supersede_claim(old.claim_id, superseded_by=new.claim_id)
    superseded = knowledge.get_claim(old.claim_id)
    assert superseded is not None
    assert superseded.state is ClaimState.SUPERSEDED
    assert superseded.superseded_by == new.claim_id
    assert [claim.claim_id for claim in knowledge.recent_claims()] == [new.claim_id]
    assert not knowledge.supersede_claim("missing", superseded_by=new.claim_id)


def test_unit_summary_counts_pipeline_outputs(knowledge: KnowledgeRepository) -> None:
    unit = knowledge.create_unit(
        UnitCreate(text="I need to call Sarah by Friday.", session_id="s1"),
    )
    knowledge.add_spans(
        unit.unit_id,
        [SpanMatch(char_start=22, char_end=31, text_excerpt="by Friday", pattern_id="deadline")],
    )
    batch = knowledge.save_primitives(
        unit.unit_id,
        propositions=[
            PropositionDraft("call Sarah", "Sarah", PropositionType.EVENT, StanceDraft()),
        ],
        relations=[],
        mentions=[
            MentionDraft("Sarah", MentionType.PROPER_NOUN, SuggestedEntityType.PERSON),
            MentionDraft("her", MentionType.PRONOUN, SuggestedEntityType.PERSON),
        ],
    )
    sarah = knowledge.create_entity(canonical_name="Sarah", entity_type=EntityType.PERSON)
    for mention in batch.mentions:
        knowledge.resolve_mention(mention.mention_id, sarah.entity_id)
    knowledge.save_claims(unit.unit_id, [_claim("call Sarah")])

    summary = knowledge.unit_summary(unit.unit_id)

    assert summary.to_dict() == {
        "span_count": 1,
        "proposition_count": 1,
        "claim_count": 1,
        "entity_count": 1,
    }


def test_observer_outputs_filter_by_unit_and_type(knowledge: KnowledgeRepository) -> None:
    knowledge.add_observer_output(
        observer_type="goal_observer",
        output_type="goal_detected",
        content={"statement": "ship it"},
        source_claim_ids=["c1"],
        unit_id="u1",
    )
    knowledge.add_observer_output(
        observer_type="concern_observer",
        output_type="concern_new",
        content={"subject": "deadline"},
        source_claim_ids=["c2"],
        unit_id="u2",
    )

    goals = knowledge.list_observer_outputs(observer_type="goal_observer")
    assert [item.content for item in goals] == [{"statement": "ship it"}]
    assert goals[0].source_claim_ids == ["c1"]
    assert [item.output_type for item in knowledge.list_observer_outputs(unit_id="u2")] == [
        "concern_new",
    ]
