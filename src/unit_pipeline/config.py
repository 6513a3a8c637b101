"""Runtime configuration for the orchestrator, extraction and model client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from unit_pipeline.extraction.budget import ModelTier
from unit_pipeline.orchestrator.event_loop import EventLoopConfig
from unit_pipeline.orchestrator.models import BackoffConfig


@dataclass(slots=True)
class BackoffSettings:
    """Retry delay policy for newly created tasks."""

    base_delay_ms: int = 1_000
    max_delay_ms: int = 60_000
    multiplier: float = 2.0
    jitter: bool = True

    def to_config(self) -> BackoffConfig:
        return BackoffConfig(
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


@dataclass(slots=True)
class OrchestratorSettings:
    """Event loop scheduling settings."""

    max_concurrent: int = 3
    poll_interval_seconds: float = 1.0
    stale_threshold_seconds: float = 30.0
    default_max_attempts: int = 3
    task_retention_days: int = 30
    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class ExtractionSettings:
    extraction_tier: ModelTier = ModelTier.MEDIUM
    observer_tier: ModelTier = ModelTier.SMALL


@dataclass(slots=True)
class ModelSettings:
    """OpenAI-compatible endpoint and one model name per tier."""

    base_url: str = "http://localhost:11434/v1"
    api_key: str | None = None
    small_model: str = "llama3.1:8b"
    medium_model: str = "llama3.1:8b"
    large_model: str = "llama3.1:70b"
    timeout_seconds: float = 60.0
    max_retries: int = 2

    def models_by_tier(self) -> dict[ModelTier, str]:
        return {
            ModelTier.SMALL: self.small_model,
            ModelTier.MEDIUM: self.medium_model,
            ModelTier.LARGE: self.large_model,
        }


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".unit_pipeline.db")
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    backoff: BackoffSettings = field(default_factory=BackoffSettings)
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    model: ModelSettings = field(default_factory=ModelSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("UNIT_PIPELINE_DB_PATH", ".unit_pipeline.db")),
            orchestrator=OrchestratorSettings(
                max_concurrent=_env_int("UNIT_PIPELINE_MAX_CONCURRENT", 3),
                poll_interval_seconds=_env_float("UNIT_PIPELINE_POLL_INTERVAL_SECONDS", 1.0),
                stale_threshold_seconds=_env_float("UNIT_PIPELINE_STALE_THRESHOLD_SECONDS", 30.0),
                default_max_attempts=_env_int("UNIT_PIPELINE_MAX_ATTEMPTS", 3),
                task_retention_days=_env_int("UNIT_PIPELINE_TASK_RETENTION_DAYS", 30),
                sqlite_busy_timeout_ms=_env_int("UNIT_PIPELINE_SQLITE_BUSY_TIMEOUT_MS", 5000),
            ),
            backoff=BackoffSettings(
                base_delay_ms=_env_int("UNIT_PIPELINE_BACKOFF_BASE_MS", 1000),
                max_delay_ms=_env_int("UNIT_PIPELINE_BACKOFF_MAX_MS", 60000),
                multiplier=_env_float("UNIT_PIPELINE_BACKOFF_MULTIPLIER", 2.0),
                jitter=_env_bool("UNIT_PIPELINE_BACKOFF_JITTER", default=True),
            ),
            extraction=ExtractionSettings(
                extraction_tier=_env_tier("UNIT_PIPELINE_EXTRACTION_TIER", ModelTier.MEDIUM),
                observer_tier=_env_tier("UNIT_PIPELINE_OBSERVER_TIER", ModelTier.SMALL),
            ),
            model=ModelSettings(
                base_url=os.getenv("UNIT_PIPELINE_MODEL_BASE_URL", "http://localhost:11434/v1"),
                api_key=os.getenv("UNIT_PIPELINE_MODEL_API_KEY") or None,
                small_model=os.getenv("UNIT_PIPELINE_MODEL_SMALL", "llama3.1:8b"),
                medium_model=os.getenv("UNIT_PIPELINE_MODEL_MEDIUM", "llama3.1:8b"),
                large_model=os.getenv("UNIT_PIPELINE_MODEL_LARGE", "llama3.1:70b"),
                timeout_seconds=_env_float("UNIT_PIPELINE_MODEL_TIMEOUT_SECONDS", 60.0),
                max_retries=_env_int("UNIT_PIPELINE_MODEL_MAX_RETRIES", 2),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot run with."""

        if self.orchestrator.max_concurrent < 1:
            raise ValueError("UNIT_PIPELINE_MAX_CONCURRENT must be >= 1.")
        if self.orchestrator.poll_interval_seconds <= 0:
            raise ValueError("UNIT_PIPELINE_POLL_INTERVAL_SECONDS must be > 0.")
        if self.orchestrator.stale_threshold_seconds <= 0:
            raise ValueError("UNIT_PIPELINE_STALE_THRESHOLD_SECONDS must be > 0.")
        if self.orchestrator.default_max_attempts < 1:
            raise ValueError("UNIT_PIPELINE_MAX_ATTEMPTS must be >= 1.")
        if self.orchestrator.task_retention_days < 0:
            raise ValueError("UNIT_PIPELINE_TASK_RETENTION_DAYS must be >= 0.")
        if self.backoff.base_delay_ms < 0:
            raise ValueError("UNIT_PIPELINE_BACKOFF_BASE_MS must be >= 0.")
        if self.backoff.max_delay_ms < self.backoff.base_delay_ms:
            raise ValueError(
                "UNIT_PIPELINE_BACKOFF_MAX_MS must be >= UNIT_PIPELINE_BACKOFF_BASE_MS.",
            )
        if self.backoff.multiplier < 1:
            raise ValueError("UNIT_PIPELINE_BACKOFF_MULTIPLIER must be >= 1.")
        if not self.model.base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"UNIT_PIPELINE_MODEL_BASE_URL must be an http(s) URL: {self.model.base_url!r}",
            )
        if self.model.timeout_seconds <= 0:
            raise ValueError("UNIT_PIPELINE_MODEL_TIMEOUT_SECONDS must be > 0.")

    def event_loop_config(self, *, auto_start: bool = False) -> EventLoopConfig:
        return EventLoopConfig(
            max_concurrent=self.orchestrator.max_concurrent,
            poll_interval_seconds=self.orchestrator.poll_interval_seconds,
            stale_threshold_seconds=self.orchestrator.stale_threshold_seconds,
            auto_start=auto_start,
            default_max_attempts=self.orchestrator.default_max_attempts,
            backoff=self.backoff.to_config(),
        )


def _env_tier(name: str, default: ModelTier) -> ModelTier:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return ModelTier(value.strip().lower())
    except ValueError as error:
        choices = ", ".join(tier.value for tier in ModelTier)
        raise ValueError(
            f"Invalid model tier for {name}: {value!r} (expected {choices})",
        ) from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
