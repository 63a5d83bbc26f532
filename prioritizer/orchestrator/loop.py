"""
Hybrid Loop Controller
======================

Orchestrates the Generator and the Evaluator in a bounded,
confidence-gated loop:

    GENERATE -> (gate) -> [DONE | EVALUATE] -> (verdict) -> [DONE | REFINE -> GENERATE]

Key rules:
- The Generator always runs first (iteration 1).
- After every Generator call the evaluation gate decides whether the
  candidate is trusted as-is (fast path) or critiqued (quality path).
- PASS ends the run converged. FAIL, or NEEDS_IMPROVEMENT with the
  iteration budget spent, ends it unconverged with the latest candidate
  obtained so far.
- At most three Generator calls per run, by construction.

The controller is stateless between runs; all accumulated state (the
iteration counter and the chain of thought) is local to ``run``.

Example:
    >>> controller = HybridLoopController(generator, evaluator)
    >>> result = await controller.run(context, tasks)
    >>> result.evaluation_metadata.iterations
    1
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from prioritizer.agents.evaluator import QualityEvaluator
from prioritizer.agents.generator import CandidateGenerator
from prioritizer.config import HARD_MAX_ITERATIONS, PrioritizerSettings, get_settings
from prioritizer.core.candidate import PrioritizationCandidate
from prioritizer.core.metadata import ChainOfThoughtStep, HybridLoopMetadata
from prioritizer.core.result import PrioritizationResult, ResultAssembler
from prioritizer.core.task import OutcomeContext, Task, TaskDependency
from prioritizer.core.verdict import VerdictStatus

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """States of the evaluator-optimizer loop."""

    GENERATE = "generate"
    EVALUATE = "evaluate"
    REFINE = "refine"
    DONE = "done"


class ProgressStage(str, Enum):
    STARTED = "started"
    DRAFT = "draft"
    REFINING = "refining"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ProgressUpdate:
    """Snapshot handed to ``on_progress`` observers."""

    stage: ProgressStage
    iteration: int
    total_iterations: int
    total_tasks: int
    scored_tasks: int
    ordered_count: int
    confidence: float
    progress_pct: float


ProgressCallback = Callable[[ProgressUpdate], None]


def has_major_movement(
    candidate: PrioritizationCandidate,
    previous_plan: Optional[dict[str, Any]],
    settings: Optional[PrioritizerSettings] = None,
) -> bool:
    """
    True when a large share of tasks jumped far from their previous rank.

    A move counts as major when a task shifts more than
    ``major_movement_positions`` places; the ordering has major movement
    when the share of such moves exceeds ``major_movement_ratio``.
    """
    settings = settings or get_settings()
    previous_ids = (previous_plan or {}).get("ordered_task_ids") or []
    if not previous_ids or not candidate.ordered_task_ids:
        return False

    previous_positions = {task_id: index for index, task_id in enumerate(previous_ids)}
    major_moves = 0
    for index, task_id in enumerate(candidate.ordered_task_ids):
        previous = previous_positions.get(task_id)
        if previous is not None and abs(previous - index) > settings.major_movement_positions:
            major_moves += 1

    return major_moves / len(candidate.ordered_task_ids) > settings.major_movement_ratio


def needs_evaluation(
    candidate: PrioritizationCandidate,
    previous_plan: Optional[dict[str, Any]] = None,
    settings: Optional[PrioritizerSettings] = None,
) -> bool:
    """
    Evaluation gate.

    - confidence >= fast_path_confidence: skip (fast path)
    - confidence <  evaluation_trigger_confidence: evaluate
    - in between: evaluate when the plan is small, the generator made
      substantial self-corrections, or the ordering moved a lot
    """
    settings = settings or get_settings()

    if candidate.confidence >= settings.fast_path_confidence:
        return False
    if candidate.confidence < settings.evaluation_trigger_confidence:
        return True
    if len(candidate.included_tasks) < settings.gray_zone_min_included:
        return True
    if len(candidate.corrections_made or "") > settings.gray_zone_max_corrections_chars:
        return True
    if has_major_movement(candidate, previous_plan, settings):
        return True
    return False


class HybridLoopController:
    """
    Runs one prioritization through the evaluator-optimizer loop.

    Attributes:
        generator: Candidate Generator capability
        evaluator: Quality Evaluator capability
        settings: Gate thresholds, iteration budget, observability envelopes
    """

    def __init__(
        self,
        generator: CandidateGenerator,
        evaluator: QualityEvaluator,
        settings: Optional[PrioritizerSettings] = None,
    ) -> None:
        self.generator = generator
        self.evaluator = evaluator
        self.settings = settings or get_settings()

    async def run(
        self,
        outcome_context: OutcomeContext,
        tasks: Sequence[Task],
        *,
        previous_plan: Optional[dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        max_iterations: Optional[int] = None,
        dependency_overrides: Sequence[TaskDependency] = (),
    ) -> PrioritizationResult:
        """
        Execute the loop and assemble the result.

        Args:
            outcome_context: Goal and reflections (read-only)
            tasks: Full candidate task set (read-only)
            previous_plan: Plan view of the user's last completed run
            on_progress: Optional observer for progress updates
            max_iterations: Budget override, clamped to [1, 3]
            dependency_overrides: Manual ordering constraints for the Generator

        Returns:
            PrioritizationResult with loop metadata

        Raises:
            ValueError: Empty task set or duplicate task ids
            GeneratorFailedError / EvaluatorFailedError: Stage output invalid twice
            ServiceUnavailableError: Reasoning service unreachable after backoff
            AssemblyIntegrityError: Partition broken between stages
        """
        tasks = tuple(tasks)
        task_ids = [task.id for task in tasks]
        if not tasks:
            raise ValueError("at least one task is required")
        if len(set(task_ids)) != len(task_ids):
            raise ValueError("task ids must be unique")

        budget = max_iterations if max_iterations is not None else self.settings.max_iterations
        budget = min(HARD_MAX_ITERATIONS, max(1, int(budget)))

        started = time.perf_counter()
        chain: list[ChainOfThoughtStep] = []
        iteration = 1
        converged = False
        prior_feedback: Optional[str] = None
        overrides = tuple(dependency_overrides)
        references = task_ids + [task.text for task in tasks]

        self._report(on_progress, ProgressStage.STARTED, 0, budget, len(tasks), None)

        candidate, state = await self._generate_step(
            outcome_context, tasks, chain,
            iteration=iteration,
            budget=budget,
            prior_feedback=None,
            prior_candidate=None,
            previous_plan=previous_plan,
            dependency_overrides=overrides,
            on_progress=on_progress,
        )
        evaluation_triggered = state == LoopState.EVALUATE

        while state != LoopState.DONE:
            logger.debug("Loop transition", extra={"stage": state.value, "iteration": iteration})

            if state == LoopState.EVALUATE:
                verdict = await self.evaluator.evaluate(
                    outcome_context, candidate, previous_plan=previous_plan
                )
                chain[-1] = chain[-1].with_feedback(verdict.feedback)

                if verdict.is_generic_feedback(references):
                    logger.warning(
                        "Evaluator feedback names no task or criterion",
                        extra={"iteration": iteration, "status": verdict.status.value}
                    )

                if verdict.status == VerdictStatus.PASS:
                    converged = True
                    state = LoopState.DONE
                elif verdict.status == VerdictStatus.FAIL:
                    logger.warning(
                        "Evaluator failed candidate below quality floor",
                        extra={"iteration": iteration, "scores": verdict.criteria_scores.as_dict()}
                    )
                    state = LoopState.DONE
                elif iteration >= budget:
                    logger.info(
                        "Iteration budget exhausted without PASS",
                        extra={"iteration": iteration}
                    )
                    state = LoopState.DONE
                else:
                    prior_feedback = verdict.feedback
                    state = LoopState.REFINE

            elif state == LoopState.REFINE:
                iteration += 1
                candidate, state = await self._generate_step(
                    outcome_context, tasks, chain,
                    iteration=iteration,
                    budget=budget,
                    prior_feedback=prior_feedback,
                    prior_candidate=candidate,
                    previous_plan=previous_plan,
                    dependency_overrides=overrides,
                    on_progress=on_progress,
                )

        # The latest candidate is always returned, converged or not.
        final = candidate

        duration_ms = max(0, int(round((time.perf_counter() - started) * 1000)))
        metadata = HybridLoopMetadata(
            iterations=len(chain),
            duration_ms=duration_ms,
            evaluation_triggered=evaluation_triggered,
            chain_of_thought=tuple(chain),
            converged=converged,
            final_confidence=final.confidence,
        )
        result = ResultAssembler.assemble(final, metadata, task_ids)

        self._check_envelope(metadata)
        self._report(on_progress, ProgressStage.COMPLETED, iteration, budget, len(tasks), final)

        logger.info(
            "Hybrid loop completed",
            extra={
                "iteration": metadata.iterations,
                "duration_ms": duration_ms,
                "evaluation_triggered": evaluation_triggered,
                "converged": converged,
                "confidence": final.confidence,
            }
        )
        return result

    async def _generate_step(
        self,
        outcome_context: OutcomeContext,
        tasks: tuple[Task, ...],
        chain: list[ChainOfThoughtStep],
        *,
        iteration: int,
        budget: int,
        prior_feedback: Optional[str],
        prior_candidate: Optional[PrioritizationCandidate],
        previous_plan: Optional[dict[str, Any]],
        dependency_overrides: tuple[TaskDependency, ...],
        on_progress: Optional[ProgressCallback],
    ) -> tuple[PrioritizationCandidate, LoopState]:
        """Run one Generator call, record it, and pick the next state via the gate."""
        logger.debug(
            "Loop transition",
            extra={"stage": LoopState.GENERATE.value, "iteration": iteration}
        )
        candidate = await self.generator.generate(
            outcome_context,
            tasks,
            prior_feedback,
            prior_candidate,
            iteration=iteration,
            max_iterations=budget,
            chain_of_thought=tuple(chain),
            previous_plan=previous_plan,
            dependency_overrides=dependency_overrides,
        )
        chain.append(ChainOfThoughtStep.for_candidate(
            iteration, candidate.confidence, candidate.corrections_made
        ))
        self._report(
            on_progress,
            ProgressStage.DRAFT if iteration == 1 else ProgressStage.REFINING,
            iteration, budget, len(tasks), candidate,
        )

        if needs_evaluation(candidate, previous_plan, self.settings):
            return candidate, LoopState.EVALUATE

        logger.info(
            "Evaluation skipped, candidate confidence above fast-path threshold",
            extra={"iteration": iteration, "confidence": candidate.confidence}
        )
        return candidate, LoopState.DONE

    def _check_envelope(self, metadata: HybridLoopMetadata) -> None:
        target = (
            self.settings.quality_path_target_ms
            if metadata.evaluation_triggered
            else self.settings.fast_path_target_ms
        )
        if metadata.duration_ms > target:
            logger.warning(
                "Prioritization exceeded its duration target",
                extra={
                    "duration_ms": metadata.duration_ms,
                    "target_ms": target,
                    "evaluation_triggered": metadata.evaluation_triggered,
                }
            )

    def _report(
        self,
        handler: Optional[ProgressCallback],
        stage: ProgressStage,
        iteration: int,
        total_iterations: int,
        total_tasks: int,
        candidate: Optional[PrioritizationCandidate],
    ) -> None:
        if handler is None:
            return

        scored = 0
        ordered = 0
        confidence = 0.0
        if candidate is not None:
            scored = len(candidate.included_tasks) + len(candidate.excluded_tasks)
            ordered = len(candidate.ordered_task_ids)
            confidence = candidate.confidence

        coverage = min(scored / total_tasks, 1.0) if total_tasks > 0 else 0.0
        iteration_ratio = min(iteration / total_iterations, 1.0) if total_iterations > 0 else 0.0
        blended = max(0.0, min(0.95, 0.35 * coverage + 0.25 * iteration_ratio))
        if stage == ProgressStage.COMPLETED:
            progress_pct = 1.0
        else:
            progress_pct = max(0.0 if scored == 0 else 0.05, blended)

        handler(ProgressUpdate(
            stage=stage,
            iteration=iteration,
            total_iterations=total_iterations,
            total_tasks=total_tasks,
            scored_tasks=scored,
            ordered_count=ordered,
            confidence=confidence,
            progress_pct=progress_pct,
        ))
