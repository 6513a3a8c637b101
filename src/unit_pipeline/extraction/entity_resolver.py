"""Resolve extracted mentions to stored entities, creating entities on first sight."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from unit_pipeline.knowledge.models import (
    Entity,
    EntityMention,
    EntityType,
    MentionType,
    SuggestedEntityType,
)
from unit_pipeline.knowledge.repository import KnowledgeRepository

logger = logging.getLogger(__name__)

RECENT_CANDIDATES = 20
SELF_ENTITY_NAME = "self"
SELF_ALIASES = ("I", "me", "myself", "my")

_PERSON_PRONOUNS = frozenset({"he", "him", "his", "she", "her", "hers"})
_THING_PRONOUNS = frozenset({"it", "its"})
_GROUP_PRONOUNS = frozenset({"they", "them", "their", "theirs"})

SUGGESTED_TO_ENTITY_TYPE: dict[SuggestedEntityType, EntityType] = {
    SuggestedEntityType.PERSON: EntityType.PERSON,
    SuggestedEntityType.ORGANIZATION: EntityType.ORGANIZATION,
    SuggestedEntityType.PROJECT: EntityType.PROJECT,
    SuggestedEntityType.ARTIFACT: EntityType.PRODUCT,
    SuggestedEntityType.EVENT: EntityType.EVENT,
    SuggestedEntityType.CONCEPT: EntityType.CONCEPT,
    SuggestedEntityType.PLACE: EntityType.PLACE,
    SuggestedEntityType.SELF: EntityType.PERSON,
}


@dataclass(slots=True)
class Resolution:
    mention: EntityMention
    entity: Entity | None
    created: bool = False


class EntityResolver:
    """Names and aliases match any stored entity; pronouns and common nouns use recency."""

    def __init__(self, knowledge: KnowledgeRepository) -> None:
        self.knowledge = knowledge

    def resolve_all(self, mentions: Sequence[EntityMention]) -> list[Resolution]:
        """Resolve in order, linking each resolved mention in the store."""

        resolutions: list[Resolution] = []
        for mention in mentions:
            if mention.resolved_entity_id is not None:
                continue
            resolution = self.resolve(mention)
            if resolution.entity is not None:
                self.knowledge.resolve_mention(mention.mention_id, resolution.entity.entity_id)
            resolutions.append(resolution)
        return resolutions

    def resolve(self, mention: EntityMention) -> Resolution:
        if mention.mention_type is MentionType.PRONOUN:
            entity = self._resolve_pronoun(mention.text)
            if entity is None:
                logger.debug("Pronoun %r left unresolved", mention.text)
                return Resolution(mention=mention, entity=None)
            return Resolution(mention=mention, entity=self._touch(entity))
        if mention.mention_type is MentionType.SELF_REFERENCE:
            return self._resolve_self(mention)
        if mention.mention_type is MentionType.PROPER_NOUN:
            return self._resolve_by_name(mention)
        return self._resolve_by_type(mention)

    def _resolve_pronoun(self, text: str) -> Entity | None:
        recent = self.knowledge.recent_entities(RECENT_CANDIDATES)
        word = text.strip().lower()
        if word in _PERSON_PRONOUNS:
            return next((item for item in recent if item.entity_type is EntityType.PERSON), None)
        if word in _THING_PRONOUNS:
            return next(
                (item for item in recent if item.entity_type is not EntityType.PERSON),
                None,
            )
        if word in _GROUP_PRONOUNS:
            return recent[0] if recent else None
        return None

    def _resolve_self(self, mention: EntityMention) -> Resolution:
        existing = self.knowledge.find_entity_by_name(SELF_ENTITY_NAME)
        if existing is not None:
            return Resolution(mention=mention, entity=self._touch(existing))
        created = self.knowledge.create_entity(
            canonical_name=SELF_ENTITY_NAME,
            entity_type=EntityType.PERSON,
            aliases=SELF_ALIASES,
        )
        return Resolution(mention=mention, entity=created, created=True)

    def _resolve_by_name(self, mention: EntityMention) -> Resolution:
        existing = self.knowledge.find_entity_by_name(mention.text)
        if existing is not None:
            return Resolution(mention=mention, entity=self._touch(existing))
        return self._create(mention)

    def _resolve_by_type(self, mention: EntityMention) -> Resolution:
        entity_type = SUGGESTED_TO_ENTITY_TYPE[mention.suggested_type]
        candidate = next(
            (
                item
                for item in self.knowledge.recent_entities(RECENT_CANDIDATES)
                if item.entity_type is entity_type
            ),
            None,
        )
        if candidate is not None:
            return Resolution(mention=mention, entity=self._touch(candidate))
        return self._create(mention)

    def _create(self, mention: EntityMention) -> Resolution:
        entity = self.knowledge.create_entity(
            canonical_name=mention.text.strip(),
            entity_type=SUGGESTED_TO_ENTITY_TYPE[mention.suggested_type],
        )
        logger.info("Created entity %s (%s)", entity.canonical_name, entity.entity_type.value)
        return Resolution(mention=mention, entity=entity, created=True)

    def _touch(self, entity: Entity) -> Entity:
        return self.knowledge.record_entity_reference(entity.entity_id)

