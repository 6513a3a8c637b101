"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from unit_pipeline.errors import ModelClientError
from unit_pipeline.extraction.budget import ModelTier
from unit_pipeline.knowledge.repository import KnowledgeRepository
from unit_pipeline.llm.client import ModelResponse, TokenUsage
from unit_pipeline.orchestrator.repository import TaskRepository

EMPTY_EXTRACTION = json.dumps({"propositions": [], "relations": [], "entityMentions": []})

SARAH_TEXT = "I need to finish the report by Friday for my manager Sarah."

SARAH_EXTRACTION = {
    "propositions": [
        {
            "content": "finish the report for Sarah by Friday",
            "subject": "report",
            "predicate": "finish",
            "object": "the report",
            "type": "event",
            "stance": {
                "epistemic": {"certainty": 0.9, "evidence": "direct"},
                "volitional": {"valence": 0.0, "strength": 0.3},
                "deontic": {"strength": 0.85, "source": "other", "type": "must"},
                "affective": {"valence": -0.1, "arousal": 0.3, "emotions": []},
            },
            "spanIndices": [0, 1],
        },
    ],
    "relations": [],
    "entityMentions": [
        {"text": "I", "mentionType": "self_reference", "suggestedType": "self", "spanIndex": 0},
        {"text": "Sarah", "mentionType": "proper_noun", "suggestedType": "person", "spanIndex": 2},
    ],
}


class FakeModelClient:
    """Scripted model client: replies in order, then with an empty extraction."""

    def __init__(self, replies: list[str] | None = None, *, error: str | None = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def call(
        self,
        tier: ModelTier,
        prompt: str,
        system_prompt: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {"tier": tier, "prompt": prompt, "system_prompt": system_prompt, "options": options},
        )
        if self.error is not None:
            raise ModelClientError(self.error)
        content = self.replies.pop(0) if self.replies else EMPTY_EXTRACTION
        return ModelResponse(
            content=content,
            tokens_used=TokenUsage(prompt=120, completion=80, total=200),
            processing_time_ms=12,
        )


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "pipeline.db"


@pytest.fixture()
def task_repository(db_path: Path) -> Iterator[TaskRepository]:
    repository = TaskRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def knowledge(db_path: Path, task_repository: TaskRepository) -> Iterator[KnowledgeRepository]:
    repository = KnowledgeRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def sarah_reply() -> str:
    return json.dumps(SARAH_EXTRACTION)
