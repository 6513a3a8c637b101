"""Deterministic derivation of claims from a proposition and its stance."""

from __future__ import annotations

from unit_pipeline.knowledge.models import (
    Abstraction,
    ClaimDraft,
    ClaimType,
    DeonticType,
    Evidence,
    Proposition,
    PropositionType,
    SourceType,
    Stakes,
    Stance,
    Temporality,
    VolitionType,
)

# Volitional type -> minimum strength for the claim type it implies, checked in order.
_VOLITION_RULES: tuple[tuple[VolitionType, float, ClaimType], ...] = (
    (VolitionType.INTEND, 0.5, ClaimType.INTENTION),
    (VolitionType.WANT, 0.6, ClaimType.GOAL),
    (VolitionType.FEAR, 0.4, ClaimType.CONCERN),
    (VolitionType.PREFER, 0.4, ClaimType.PREFERENCE),
    (VolitionType.HOPE, 0.5, ClaimType.GOAL),
)


def derive_claim(proposition: Proposition, stance: Stance) -> ClaimDraft:
    """Map one proposition/stance pair to a claim draft."""

    return ClaimDraft(
        statement=proposition.content,
        subject=proposition.subject,
        claim_type=infer_claim_type(proposition, stance),
        temporality=infer_temporality(proposition, stance),
        abstraction=infer_abstraction(proposition),
        source_type=infer_source_type(stance),
        confidence=stance.epistemic.certainty,
        emotional_valence=stance.affective.valence,
        emotional_intensity=stance.affective.arousal,
        stakes=infer_stakes(stance),
        proposition_id=proposition.proposition_id,
        stance_id=stance.stance_id,
    )


def infer_claim_type(proposition: Proposition, stance: Stance) -> ClaimType:
    volitional = stance.volitional
    for volition, threshold, claim_type in _VOLITION_RULES:
        if volitional.type is volition and volitional.strength > threshold:
            return claim_type

    deontic = stance.deontic
    if deontic.type is DeonticType.MUST and deontic.strength > 0.6:
        return ClaimType.COMMITMENT
    if deontic.type is DeonticType.SHOULD and deontic.strength > 0.5:
        return ClaimType.COMMITMENT

    if stance.affective.arousal > 0.7 or stance.affective.emotions:
        return ClaimType.EMOTION
    if stance.epistemic.certainty > 0.8 and stance.epistemic.evidence is Evidence.DIRECT:
        return ClaimType.FACTUAL
    if proposition.proposition_type is PropositionType.HYPOTHETICAL:
        return ClaimType.HYPOTHETICAL
    return ClaimType.BELIEF


def infer_stakes(stance: Stance) -> Stakes:
    affective = stance.affective
    volitional = stance.volitional
    deontic = stance.deontic
    fear = volitional.strength if volitional.type is VolitionType.FEAR else 0.0

    if (affective.arousal > 0.9 and abs(affective.valence) > 0.8) or fear > 0.8:
        return Stakes.EXISTENTIAL
    must = deontic.strength if deontic.type is DeonticType.MUST else 0.0
    if (affective.arousal > 0.7 and affective.valence < -0.3) or must > 0.7 or fear > 0.5:
        return Stakes.HIGH
    if affective.arousal > 0.5 or volitional.strength > 0.6 or deontic.strength > 0.5:
        return Stakes.MEDIUM
    return Stakes.LOW


def infer_temporality(proposition: Proposition, stance: Stance) -> Temporality:
    if proposition.proposition_type is PropositionType.EVENT:
        return Temporality.POINT_IN_TIME
    if stance.epistemic.certainty > 0.8 and stance.epistemic.evidence is Evidence.DIRECT:
        return Temporality.SLOWLY_DECAYING
    if proposition.proposition_type is PropositionType.GENERIC:
        return Temporality.ETERNAL
    if stance.affective.arousal > 0.7:
        return Temporality.FAST_DECAYING
    return Temporality.SLOWLY_DECAYING


def infer_abstraction(proposition: Proposition) -> Abstraction:
    if proposition.proposition_type is PropositionType.GENERIC:
        return Abstraction.UNIVERSAL
    if proposition.proposition_type is PropositionType.HYPOTHETICAL:
        return Abstraction.GENERAL
    return Abstraction.SPECIFIC


def infer_source_type(stance: Stance) -> SourceType:
    if stance.epistemic.evidence is Evidence.INFERRED:
        return SourceType.INFERRED
    return SourceType.DIRECT
