"""
Prioritization Candidate
========================

One full proposed prioritization produced by the Generator in a single
iteration. A candidate only exists once it has passed validation: raw
output goes through ``PrioritizationCandidate.parse_raw_output`` or it
goes nowhere.

Invariants:
    - included and excluded task ids partition the input task set
    - per_task_scores keys equal the included task ids exactly
    - ordered_task_ids is a permutation of the included task ids
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from prioritizer.core.parsing import extract_json_object, first_words, truncate
from prioritizer.exceptions import CandidateValidationError

logger = logging.getLogger(__name__)


class PartitionViolation(ValueError):
    """Included and excluded ids do not partition the input task set."""


class TaskScore(BaseModel):
    """Per-task scoring for an included task."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    task_id: str = Field(min_length=1)
    impact: float = Field(ge=0, le=10)
    effort_hours: float = Field(
        ge=0.5, le=160, validation_alias=AliasChoices("effort_hours", "effort")
    )
    confidence: float = Field(ge=0, le=1)
    reasoning: str = Field(min_length=10, max_length=500)
    brief_reasoning: str = Field(min_length=1, max_length=150)
    dependencies: list[str] = Field(default_factory=list)
    reflection_influence: Optional[str] = Field(default=None, max_length=300)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _flatten_reasoning(cls, value: Union[str, dict[str, Any]]) -> Any:
        """Structured reasoning payloads are folded into one sentence."""
        if not isinstance(value, dict):
            return value
        parts = []
        if value.get("reasoning"):
            parts.append(str(value["reasoning"]))
        if value.get("impact_keywords"):
            parts.append("Impact: " + ", ".join(map(str, value["impact_keywords"])))
        if value.get("effort_hint") or value.get("effort_source"):
            hint = value.get("effort_hint") or value.get("effort_source")
            parts.append(f"Effort: {hint}")
        if value.get("complexity_modifiers"):
            parts.append("Complexity: " + ", ".join(map(str, value["complexity_modifiers"])))
        return truncate("; ".join(parts), 500)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _none_dependencies(cls, value: Any) -> Any:
        return [] if value is None else value


class IncludedTask(BaseModel):
    """Inclusion decision for one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(min_length=1)
    inclusion_reason: str = Field(min_length=10, max_length=300)
    alignment_score: float = Field(ge=0, le=10)


class ExcludedTask(BaseModel):
    """Exclusion decision for one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(min_length=1)
    task_text: str = Field(min_length=1)
    exclusion_reason: str = Field(min_length=1, max_length=500)
    alignment_score: float = Field(ge=0, le=10)


class CandidateThoughts(BaseModel):
    """The generator's own account of how it reached the candidate."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    outcome_analysis: str = Field(min_length=10, max_length=1000)
    filtering_rationale: str = Field(min_length=10, max_length=1000)
    prioritization_strategy: str = Field(min_length=10, max_length=1000)
    self_check_notes: str = Field(min_length=10, max_length=1000)


class PrioritizationCandidate(BaseModel):
    """A validated prioritization proposal."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    thoughts: CandidateThoughts
    included_tasks: list[IncludedTask] = Field(min_length=1, max_length=500)
    excluded_tasks: list[ExcludedTask] = Field(default_factory=list, max_length=500)
    ordered_task_ids: list[str] = Field(min_length=1, max_length=500)
    per_task_scores: dict[str, TaskScore]
    confidence: float = Field(ge=0, le=1)
    critical_path_reasoning: str = Field(min_length=10, max_length=1000)
    corrections_made: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _check_internal_invariants(self) -> PrioritizationCandidate:
        included = self.included_task_ids
        excluded = self.excluded_task_ids

        duplicates = [tid for tid, n in Counter(included + excluded).items() if n > 1]
        if duplicates:
            raise ValueError(f"task ids listed more than once: {sorted(duplicates)}")

        included_set = set(included)
        score_keys = set(self.per_task_scores)
        missing = included_set - score_keys
        if missing:
            raise ValueError(f"missing per_task_scores for included tasks: {sorted(missing)}")
        extra = score_keys - included_set
        if extra:
            raise ValueError(f"per_task_scores present for non-included tasks: {sorted(extra)}")
        for key, score in self.per_task_scores.items():
            if score.task_id != key:
                raise ValueError(f"per_task_scores[{key}] carries task_id {score.task_id}")

        if len(self.ordered_task_ids) != len(set(self.ordered_task_ids)):
            raise ValueError("ordered_task_ids contains duplicates")
        if set(self.ordered_task_ids) != included_set:
            raise ValueError("ordered_task_ids must be a permutation of the included task ids")
        return self

    @property
    def included_task_ids(self) -> list[str]:
        return [task.task_id for task in self.included_tasks]

    @property
    def excluded_task_ids(self) -> list[str]:
        return [task.task_id for task in self.excluded_tasks]

    def check_partition(self, task_ids: Iterable[str]) -> None:
        """
        Verify included + excluded cover ``task_ids`` exactly once each.

        Raises:
            PartitionViolation: On omission, unknown ids or overlap.
        """
        expected = set(task_ids)
        included = set(self.included_task_ids)
        excluded = set(self.excluded_task_ids)

        overlap = included & excluded
        if overlap:
            raise PartitionViolation(f"tasks both included and excluded: {sorted(overlap)}")
        omitted = expected - included - excluded
        if omitted:
            raise PartitionViolation(f"tasks neither included nor excluded: {sorted(omitted)}")
        unknown = (included | excluded) - expected
        if unknown:
            raise PartitionViolation(f"unknown task ids in candidate: {sorted(unknown)}")
        if len(self.included_task_ids) + len(self.excluded_task_ids) != len(expected):
            raise PartitionViolation("task ids listed more than once")

    @classmethod
    def parse_raw_output(
        cls,
        raw: Union[str, dict[str, Any]],
        task_ids: Iterable[str],
    ) -> PrioritizationCandidate:
        """
        Validating factory for generator output.

        Raises:
            CandidateValidationError: If the output cannot become a valid
                candidate for this task set.
        """
        raw_text = raw if isinstance(raw, str) else None
        try:
            payload = extract_json_object(raw)
        except ValueError as e:
            raise CandidateValidationError(str(e), raw_text) from e

        payload = _apply_brief_reasoning_fallback(payload)

        try:
            candidate = cls.model_validate(payload)
        except ValidationError as e:
            raise CandidateValidationError(_summarize(e), raw_text) from e

        try:
            candidate.check_partition(task_ids)
        except PartitionViolation as e:
            raise CandidateValidationError(str(e), raw_text) from e

        return candidate


def _apply_brief_reasoning_fallback(payload: dict[str, Any]) -> dict[str, Any]:
    """Fill a missing brief_reasoning from the inclusion reason."""
    scores = payload.get("per_task_scores")
    if not isinstance(scores, dict):
        return payload

    reasons = {}
    for task in payload.get("included_tasks") or []:
        if isinstance(task, dict) and task.get("task_id"):
            reasons[task["task_id"]] = task.get("inclusion_reason")

    patched = {}
    for task_id, score in scores.items():
        if isinstance(score, dict) and not score.get("brief_reasoning"):
            score = {**score, "brief_reasoning": _brief_reasoning_for(task_id, reasons.get(task_id))}
        patched[task_id] = score
    return {**payload, "per_task_scores": patched}


def _brief_reasoning_for(task_id: str, inclusion_reason: Optional[str]) -> str:
    if isinstance(inclusion_reason, str) and inclusion_reason.strip():
        return truncate(first_words(inclusion_reason, 20), 150)
    return f"Fallback reasoning for task {task_id}"


def _summarize(error: ValidationError, limit: int = 5) -> str:
    issues = []
    for item in error.errors()[:limit]:
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        issues.append(f"{location}: {item['msg']}")
    more = error.error_count() - limit
    if more > 0:
        issues.append(f"... {more} more")
    return "; ".join(issues)
