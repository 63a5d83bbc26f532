"""
Hybrid Loop Metadata
====================

Audit trail of one loop run: one chain-of-thought step per Generator call
plus the run-level summary persisted next to the result.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from prioritizer.config import HARD_MAX_ITERATIONS
from prioritizer.core.parsing import truncate

INITIAL_CORRECTIONS = "Initial draft - awaiting evaluator feedback."
REFINEMENT_CORRECTIONS = "Refinement iteration completed."


class ChainOfThoughtStep(BaseModel):
    """Record of a single iteration."""

    model_config = ConfigDict(frozen=True)

    iteration: int = Field(ge=1, le=HARD_MAX_ITERATIONS)
    confidence: float = Field(ge=0, le=1)
    corrections: str = Field(max_length=500)
    evaluator_feedback: Optional[str] = Field(default=None, max_length=1000)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_candidate(
        cls,
        iteration: int,
        confidence: float,
        corrections_made: Optional[str] = None,
    ) -> ChainOfThoughtStep:
        fallback = INITIAL_CORRECTIONS if iteration == 1 else REFINEMENT_CORRECTIONS
        return cls(
            iteration=iteration,
            confidence=confidence,
            corrections=truncate(corrections_made or fallback, 500),
        )

    def with_feedback(self, feedback: str) -> ChainOfThoughtStep:
        """Copy of this step carrying the evaluator's feedback."""
        return self.model_copy(update={"evaluator_feedback": truncate(feedback, 1000)})

    def summary(self) -> str:
        base = (
            f"Iteration {self.iteration}: confidence {self.confidence:.2f}. "
            f"Corrections: {self.corrections or 'N/A'}."
        )
        if self.evaluator_feedback:
            return f"{base} Evaluator feedback: {self.evaluator_feedback}"
        return base


class HybridLoopMetadata(BaseModel):
    """Run-level summary of the evaluator-optimizer loop."""

    model_config = ConfigDict(frozen=True)

    iterations: int = Field(ge=1, le=HARD_MAX_ITERATIONS)
    duration_ms: int = Field(ge=0)
    evaluation_triggered: bool
    chain_of_thought: tuple[ChainOfThoughtStep, ...] = Field(
        min_length=1, max_length=HARD_MAX_ITERATIONS
    )
    converged: bool
    final_confidence: float = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _chain_matches_iterations(self) -> HybridLoopMetadata:
        if len(self.chain_of_thought) != self.iterations:
            raise ValueError("iterations must match chain_of_thought length")
        expected = list(range(1, self.iterations + 1))
        if [step.iteration for step in self.chain_of_thought] != expected:
            raise ValueError("chain_of_thought iterations must be numbered 1..iterations")
        return self
