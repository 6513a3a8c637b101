"""Deduplication of extractor output before it reaches the store."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Protocol, TypeVar


class _ClaimLike(Protocol):
    statement: str
    confidence: float


class _EntityLike(Protocol):
    canonical_name: str
    aliases: list[str]


ClaimT = TypeVar("ClaimT", bound=_ClaimLike)
EntityT = TypeVar("EntityT", bound=_EntityLike)


def claim_key(statement: str) -> str:
    return statement.strip().lower()


def dedup_claims(claims: Iterable[ClaimT]) -> list[ClaimT]:
    """Keep the most confident claim per normalized statement, in first-seen order."""

    best: dict[str, ClaimT] = {}
    for claim in claims:
        key = claim_key(claim.statement)
        current = best.get(key)
        if current is None or claim.confidence > current.confidence:
            best[key] = claim
    return list(best.values())


def dedup_entities(entities: Iterable[EntityT]) -> list[EntityT]:
    """Collapse entities sharing a canonical name, unioning their aliases."""

    merged: dict[str, EntityT] = {}
    for entity in entities:
        key = entity.canonical_name.strip().lower()
        current = merged.get(key)
        if current is None:
            merged[key] = entity
            continue
        aliases = list(current.aliases)
        known = {alias.lower() for alias in aliases}
        for alias in entity.aliases:
            if alias.lower() not in known:
                known.add(alias.lower())
                aliases.append(alias)
        merged[key] = replace(current, aliases=aliases)  # type: ignore[type-var]
    return list(merged.values())
