"""Hybrid evaluator-optimizer loop."""

from prioritizer.orchestrator.loop import (
    HybridLoopController,
    LoopState,
    ProgressStage,
    ProgressUpdate,
    has_major_movement,
    needs_evaluation,
)

__all__ = [
    "HybridLoopController",
    "LoopState",
    "ProgressStage",
    "ProgressUpdate",
    "has_major_movement",
    "needs_evaluation",
]
