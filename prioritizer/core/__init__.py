"""
Prioritizer core types.

Validated data models shared by every stage of the hybrid loop:
- Task, Reflection, OutcomeContext, TaskDependency: read-only inputs
- PrioritizationCandidate: Generator output
- EvaluationVerdict: Evaluator output
- HybridLoopMetadata, ChainOfThoughtStep: loop audit trail
- PrioritizationResult, ResultAssembler: the persisted unit
"""

from __future__ import annotations

from .candidate import (
    CandidateThoughts,
    ExcludedTask,
    IncludedTask,
    PartitionViolation,
    PrioritizationCandidate,
    TaskScore,
)
from .metadata import ChainOfThoughtStep, HybridLoopMetadata
from .result import PrioritizationResult, ResultAssembler
from .task import OutcomeContext, Reflection, Task, TaskDependency, calculate_recency_weight
from .verdict import (
    CriteriaScore,
    CriteriaScores,
    EvaluationVerdict,
    VerdictStatus,
    derive_status,
)

__all__ = [
    "CandidateThoughts",
    "ChainOfThoughtStep",
    "CriteriaScore",
    "CriteriaScores",
    "EvaluationVerdict",
    "ExcludedTask",
    "HybridLoopMetadata",
    "IncludedTask",
    "OutcomeContext",
    "PartitionViolation",
    "PrioritizationCandidate",
    "PrioritizationResult",
    "Reflection",
    "ResultAssembler",
    "Task",
    "TaskDependency",
    "TaskScore",
    "VerdictStatus",
    "calculate_recency_weight",
    "derive_status",
]
