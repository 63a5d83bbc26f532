"""
Task and Outcome Context
========================

Read-only inputs of one prioritization run: the candidate tasks, the
outcome statement and the recency-weighted reflections that modulate it.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Phrases that turn a reflection into an exclusion request
NEGATION_PATTERN = re.compile(
    r"\b(ignore|skip|exclude|avoid|drop|deprioriti[sz]e|don'?t|do not|no longer|stop)\b"
    r"|^\s*no\s+\w+",
    re.IGNORECASE,
)


def calculate_recency_weight(created_at: datetime, now: Optional[datetime] = None) -> float:
    """
    Step-function recency weighting.

    - 0-7 days old   -> 1.0
    - 8-14 days old  -> 0.5
    - 15+ days old   -> 0.25
    """
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    age_days = (now - created_at).days

    if age_days <= 7:
        return 1.0
    if age_days <= 14:
        return 0.5
    return 0.25


class Task(BaseModel):
    """A unit of work under consideration. Immutable for the run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)

    @field_validator("id", "text")
    @classmethod
    def _strip(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class Reflection(BaseModel):
    """Short contextual note (energy level, explicit exclusion, deadline...)."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1, max_length=500)
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: Optional[datetime] = None

    @classmethod
    def from_created_at(
        cls,
        text: str,
        created_at: datetime,
        now: Optional[datetime] = None,
    ) -> Reflection:
        """Build a reflection weighted by how recently it was written."""
        return cls(
            text=text,
            weight=calculate_recency_weight(created_at, now),
            created_at=created_at,
        )

    @property
    def is_negation(self) -> bool:
        """True when the note asks to ignore or exclude something."""
        return bool(NEGATION_PATTERN.search(self.text))


class OutcomeContext(BaseModel):
    """Goal statement plus reflections. Supplied once per run, read-only."""

    model_config = ConfigDict(frozen=True)

    goal_text: str = Field(min_length=1)
    reflections: tuple[Reflection, ...] = ()

    def format_reflections(self) -> str:
        """Render reflections for a prompt, strongest weight first."""
        if not self.reflections:
            return "No active reflections."
        ordered = sorted(self.reflections, key=lambda r: r.weight, reverse=True)
        return "\n".join(f"- (weight {r.weight:.2f}) {r.text}" for r in ordered)

    def negations(self) -> list[Reflection]:
        """Reflections phrased as negations ("ignore X", "skip Y", "no Z")."""
        return [r for r in self.reflections if r.is_negation]


class TaskDependency(BaseModel):
    """A manual ordering constraint between two tasks, supplied by the user."""

    model_config = ConfigDict(frozen=True)

    source_task_id: str = Field(min_length=1)
    target_task_id: str = Field(min_length=1)
    relationship_type: Literal["prerequisite", "blocks", "related"] = "prerequisite"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    def describe(self) -> str:
        return (
            f"{self.source_task_id} {self.relationship_type} {self.target_task_id} "
            f"(Confidence: {self.confidence})"
        )
