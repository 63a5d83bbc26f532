"""
Pytest Configuration and Shared Fixtures
=========================================

Provides reusable fixtures for all test modules: a small task set with a
negated reflection, settings without retry delays, and builders for raw
generator and evaluator payloads.
"""

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Optional

import pytest

from prioritizer.config import PrioritizerSettings
from prioritizer.core.candidate import PrioritizationCandidate
from prioritizer.core.task import OutcomeContext, Reflection, Task
from prioritizer.core.verdict import EvaluationVerdict

# ============================================================
# PAYLOAD BUILDERS
# ============================================================

CRITERIA_ORDER = (
    "outcome_alignment",
    "strategic_coherence",
    "reflection_integration",
    "continuity",
)


def build_candidate_payload(
    task_ids: Sequence[str],
    included: Optional[Sequence[str]] = None,
    confidence: float = 0.9,
    order: Optional[Sequence[str]] = None,
    corrections_made: Optional[str] = None,
) -> dict[str, Any]:
    """Raw generator output that validates against ``task_ids``."""
    included = list(task_ids if included is None else included)
    excluded = [task_id for task_id in task_ids if task_id not in included]
    return {
        "thoughts": {
            "outcome_analysis": "Revenue grows through conversion and retention work.",
            "filtering_rationale": "Documentation is excluded per the user's reflection.",
            "prioritization_strategy": "Fix conversion leaks first, then run experiments.",
            "self_check_notes": "Checked every reflection for negative constraints.",
        },
        "included_tasks": [
            {
                "task_id": task_id,
                "inclusion_reason": f"Task {task_id} moves the revenue metric directly",
                "alignment_score": 8,
            }
            for task_id in included
        ],
        "excluded_tasks": [
            {
                "task_id": task_id,
                "task_text": f"Task {task_id}",
                "exclusion_reason": "Does not move the revenue metric this month",
                "alignment_score": 2,
            }
            for task_id in excluded
        ],
        "ordered_task_ids": list(order if order is not None else included),
        "per_task_scores": {
            task_id: {
                "task_id": task_id,
                "impact": 8,
                "effort": 6,
                "confidence": 0.8,
                "reasoning": "Directly lifts paid conversion for existing traffic.",
                "brief_reasoning": "Unblocks checkout revenue",
                "dependencies": [],
            }
            for task_id in included
        },
        "confidence": confidence,
        "critical_path_reasoning": "Checkout fixes unblock every pricing experiment.",
        "corrections_made": corrections_made,
    }


def build_verdict_payload(
    scores: Sequence[float] = (8, 8, 8, 8),
    feedback: str = "outcome_alignment: task t1 should rank above t5 for revenue.",
    status: Optional[str] = None,
) -> dict[str, Any]:
    """Raw evaluator output with one score per criterion."""
    payload: dict[str, Any] = {
        "feedback": feedback,
        "criteria_scores": {
            name: {"score": score, "notes": f"{name} reviewed"}
            for name, score in zip(CRITERIA_ORDER, scores)
        },
    }
    if status is not None:
        payload["status"] = status
    return payload


# ============================================================
# INPUT FIXTURES
# ============================================================

@pytest.fixture
def tasks() -> list[Task]:
    """Five tasks, two of them documentation work."""
    return [
        Task(id="t1", text="Fix checkout conversion bug"),
        Task(id="t2", text="Write API documentation"),
        Task(id="t3", text="Launch pricing page experiment"),
        Task(id="t4", text="Update README badges and docs"),
        Task(id="t5", text="Call top ten churned customers"),
    ]


@pytest.fixture
def task_ids(tasks: list[Task]) -> list[str]:
    return [task.id for task in tasks]


@pytest.fixture
def outcome_context() -> OutcomeContext:
    """Revenue outcome with a negated documentation reflection."""
    return OutcomeContext(
        goal_text="Increase monthly recurring revenue by 20% this quarter",
        reflections=(
            Reflection(text="Ignore documentation work this month", weight=1.0),
            Reflection(text="Low energy on Fridays", weight=0.5),
        ),
    )


@pytest.fixture
def settings(tmp_path: Path) -> PrioritizerSettings:
    """Default thresholds, no retry delays, isolated database."""
    return PrioritizerSettings(
        service_retry_backoff_seconds=0.0,
        session_db_path=tmp_path / "sessions.db",
    )


# ============================================================
# BUILDER FIXTURES
# ============================================================

@pytest.fixture
def make_payload(task_ids: list[str]) -> Callable[..., dict[str, Any]]:
    """Build a raw candidate payload over the default task set."""
    def _make(**kwargs: Any) -> dict[str, Any]:
        return build_candidate_payload(task_ids, **kwargs)
    return _make


@pytest.fixture
def make_candidate(task_ids: list[str]) -> Callable[..., PrioritizationCandidate]:
    """Build a validated candidate over the default task set."""
    def _make(**kwargs: Any) -> PrioritizationCandidate:
        return PrioritizationCandidate.parse_raw_output(
            build_candidate_payload(task_ids, **kwargs), task_ids
        )
    return _make


@pytest.fixture
def make_verdict() -> Callable[..., EvaluationVerdict]:
    """Build a validated verdict."""
    def _make(**kwargs: Any) -> EvaluationVerdict:
        return EvaluationVerdict.parse_raw_output(build_verdict_payload(**kwargs))
    return _make


@pytest.fixture
def make_verdict_payload() -> Callable[..., dict[str, Any]]:
    """Build a raw evaluator payload."""
    return build_verdict_payload


@pytest.fixture
def payload_for() -> Callable[..., dict[str, Any]]:
    """Build a raw candidate payload over an arbitrary task id set."""
    return build_candidate_payload
