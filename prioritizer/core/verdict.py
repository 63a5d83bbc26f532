"""
Evaluation Verdict
==================

Structured critique of a candidate, produced by the Quality Evaluator.
The status is never taken on trust: it is always derived from the four
criteria scores.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from prioritizer.core.parsing import extract_json_object
from prioritizer.exceptions import VerdictValidationError

logger = logging.getLogger(__name__)

PASS_FLOOR = 7.0
FAIL_FLOOR = 5.0

CRITERIA = (
    "outcome_alignment",
    "strategic_coherence",
    "reflection_integration",
    "continuity",
)


class VerdictStatus(str, Enum):
    """
    Status of an evaluator verdict.

    Attributes:
        PASS: Every criterion scored >= 7.
        NEEDS_IMPROVEMENT: No criterion below 5, at least one below 7.
        FAIL: Some criterion scored < 5 (hard quality floor).
    """

    PASS = "PASS"
    NEEDS_IMPROVEMENT = "NEEDS_IMPROVEMENT"
    FAIL = "FAIL"


class CriteriaScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=10)
    notes: Optional[str] = Field(default=None, max_length=500)


class CriteriaScores(BaseModel):
    """Scores for the four fixed evaluation criteria."""

    model_config = ConfigDict(frozen=True)

    outcome_alignment: CriteriaScore
    strategic_coherence: CriteriaScore
    reflection_integration: CriteriaScore
    continuity: CriteriaScore

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name).score for name in CRITERIA}

    def lowest(self) -> tuple[str, float]:
        """Name and score of the weakest criterion."""
        scores = self.as_dict()
        name = min(scores, key=scores.__getitem__)
        return name, scores[name]


def derive_status(criteria_scores: CriteriaScores) -> VerdictStatus:
    """PASS iff every score >= 7, FAIL iff any score < 5, else NEEDS_IMPROVEMENT."""
    scores = criteria_scores.as_dict().values()
    if any(score < FAIL_FLOOR for score in scores):
        return VerdictStatus.FAIL
    if all(score >= PASS_FLOOR for score in scores):
        return VerdictStatus.PASS
    return VerdictStatus.NEEDS_IMPROVEMENT


class EvaluationVerdict(BaseModel):
    """The authoritative output of the Quality Evaluator."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    status: VerdictStatus
    feedback: str = Field(min_length=20, max_length=2000)
    criteria_scores: CriteriaScores
    evaluation_duration_ms: int = Field(default=0, ge=0)
    evaluator_model: str = Field(default="unknown", min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _derive_status(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "criteria_scores" not in data:
            return data
        try:
            scores = CriteriaScores.model_validate(data["criteria_scores"])
        except ValidationError:
            # Let field validation report the real problem
            return data
        derived = derive_status(scores)
        reported = data.get("status")
        if isinstance(reported, str):
            reported = reported.strip().upper()
        if reported is not None and reported != derived.value:
            logger.info(
                "Evaluator status disagrees with criteria scores, using derived status",
                extra={"reported_status": reported, "derived_status": derived.value}
            )
        return {**data, "status": derived}

    @property
    def is_blocking(self) -> bool:
        return self.status == VerdictStatus.FAIL

    def is_generic_feedback(self, references: Optional[list[str]] = None) -> bool:
        """
        True when the feedback names no task and no criterion.

        ``references`` are task ids or task texts that count as specific.
        Generic critique is a contract violation on the evaluator side; the
        loop logs it and keeps iterating within budget.
        """
        text = self.feedback.lower()
        if any(re.search(rf"\b{name.replace('_', '[ _]')}\b", text) for name in CRITERIA):
            return False
        for reference in references or []:
            if reference and reference.lower() in text:
                return False
        return True

    @classmethod
    def parse_raw_output(
        cls,
        raw: Union[str, dict[str, Any]],
        evaluator_model: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> EvaluationVerdict:
        """
        Validating factory for evaluator output.

        Raises:
            VerdictValidationError: If the output is not a usable verdict.
        """
        raw_text = raw if isinstance(raw, str) else None
        try:
            payload = extract_json_object(raw)
        except ValueError as e:
            raise VerdictValidationError(str(e), raw_text) from e

        if evaluator_model:
            payload = {**payload, "evaluator_model": evaluator_model}
        if duration_ms is not None:
            payload = {**payload, "evaluation_duration_ms": max(0, int(duration_ms))}

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            issues = "; ".join(
                f"{'.'.join(str(p) for p in item['loc']) or '<root>'}: {item['msg']}"
                for item in e.errors()[:5]
            )
            raise VerdictValidationError(issues, raw_text) from e
