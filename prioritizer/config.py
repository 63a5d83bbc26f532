"""
Prioritizer configuration.

Environment-driven knobs for the hybrid loop, the reasoning service and
session persistence. Every value can be overridden with a
``PRIORITIZER_<FIELD>`` environment variable.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

HARD_MAX_ITERATIONS = 3


class PrioritizerSettings(BaseSettings):
    """Tunable parameters for the prioritization service."""

    model_config = SettingsConfigDict(env_prefix="PRIORITIZER_", extra="ignore")

    # Reasoning service
    llm_provider: str = Field(default="openai")
    generator_model: str = Field(default="gpt-4o")
    evaluator_model: str = Field(default="gpt-4o-mini")
    generator_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    retry_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    evaluator_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8000, ge=256)

    # Evaluation gate
    fast_path_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    evaluation_trigger_confidence: float = Field(default=0.70, ge=0.0, le=1.0)
    gray_zone_min_included: int = Field(default=10, ge=0)
    gray_zone_max_corrections_chars: int = Field(default=100, ge=0)
    major_movement_positions: int = Field(default=5, ge=1)
    major_movement_ratio: float = Field(default=0.3, ge=0.0, le=1.0)

    # Loop budget and observability envelopes
    max_iterations: int = Field(default=HARD_MAX_ITERATIONS, ge=1, le=HARD_MAX_ITERATIONS)
    call_soft_timeout_seconds: float = Field(default=30.0, gt=0)
    fast_path_target_ms: int = Field(default=20_000, ge=0)
    quality_path_target_ms: int = Field(default=40_000, ge=0)

    # Service-unavailable retries
    service_retry_attempts: int = Field(default=3, ge=1)
    service_retry_backoff_seconds: float = Field(default=1.0, ge=0.0)

    # Persistence
    session_db_path: Path = Field(default=Path.home() / ".prioritizer" / "sessions.db")
    session_retention_days: int = Field(default=30, ge=1)

    log_level: str = Field(default="INFO")

    @field_validator("llm_provider")
    @classmethod
    def _validate_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"openai", "anthropic"}:
            raise ValueError("PRIORITIZER_LLM_PROVIDER must be openai or anthropic")
        return normalized

    @field_validator("evaluation_trigger_confidence")
    @classmethod
    def _trigger_below_fast_path(cls, value: float, info: ValidationInfo) -> float:
        fast_path = info.data.get("fast_path_confidence")
        if fast_path is not None and value > fast_path:
            raise ValueError(
                "evaluation_trigger_confidence must be <= fast_path_confidence"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("PRIORITIZER_LOG_LEVEL is not a valid logging level")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> PrioritizerSettings:
    """Return the process-wide settings instance."""
    return PrioritizerSettings()
