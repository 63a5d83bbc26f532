"""
Candidate Generator
===================

Partitions the full task set into included/excluded tasks, scores and
orders the included ones, and reports its own confidence.

A schema or invariant failure gets exactly one immediate retry with
adjusted generation parameters; the second consecutive failure is fatal.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional, Protocol, runtime_checkable

from prioritizer.config import PrioritizerSettings, get_settings
from prioritizer.core.candidate import PrioritizationCandidate
from prioritizer.core.metadata import ChainOfThoughtStep
from prioritizer.core.task import OutcomeContext, Task, TaskDependency
from prioritizer.exceptions import CandidateValidationError, GeneratorFailedError
from prioritizer.llm.client import LLMClient
from prioritizer.llm.prompts import PromptBuilder

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


@runtime_checkable
class CandidateGenerator(Protocol):
    """Capability interface for the Generator stage."""

    async def generate(
        self,
        outcome_context: OutcomeContext,
        tasks: Sequence[Task],
        prior_feedback: Optional[str] = None,
        prior_candidate: Optional[PrioritizationCandidate] = None,
        *,
        iteration: int = 1,
        max_iterations: int = 3,
        chain_of_thought: Sequence[ChainOfThoughtStep] = (),
        previous_plan: Optional[dict[str, Any]] = None,
        dependency_overrides: Sequence[TaskDependency] = (),
    ) -> PrioritizationCandidate:
        """
        Produce a validated candidate for the whole task set.

        Raises:
            GeneratorFailedError: Output invalid on both attempts
            ServiceUnavailableError: Reasoning service unreachable after backoff
        """
        ...


class LLMCandidateGenerator:
    """Generator backed by the reasoning service."""

    def __init__(
        self,
        client: LLMClient,
        settings: Optional[PrioritizerSettings] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.prompt_builder = prompt_builder or PromptBuilder()

    async def generate(
        self,
        outcome_context: OutcomeContext,
        tasks: Sequence[Task],
        prior_feedback: Optional[str] = None,
        prior_candidate: Optional[PrioritizationCandidate] = None,
        *,
        iteration: int = 1,
        max_iterations: int = 3,
        chain_of_thought: Sequence[ChainOfThoughtStep] = (),
        previous_plan: Optional[dict[str, Any]] = None,
        dependency_overrides: Sequence[TaskDependency] = (),
    ) -> PrioritizationCandidate:
        task_ids = [task.id for task in tasks]
        last_error: Optional[CandidateValidationError] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            retry_error = str(last_error) if last_error else None
            messages = self.prompt_builder.build_generator_messages(
                outcome_context,
                tasks,
                iteration=iteration,
                max_iterations=max_iterations,
                prior_feedback=prior_feedback,
                prior_candidate=prior_candidate,
                chain_of_thought=chain_of_thought,
                previous_plan=previous_plan,
                dependency_overrides=dependency_overrides,
                retry_error=retry_error,
            )
            temperature = (
                self.settings.generator_temperature
                if attempt == 1
                else self.settings.retry_temperature
            )

            response = await self.client.chat(
                messages,
                model=self.settings.generator_model,
                temperature=temperature,
                json_mode=True,
            )

            try:
                candidate = PrioritizationCandidate.parse_raw_output(response.text, task_ids)
            except CandidateValidationError as e:
                logger.warning(
                    f"Generator attempt {attempt} rejected",
                    extra={"iteration": iteration, "attempt": attempt, "error": str(e)}
                )
                if attempt == MAX_ATTEMPTS:
                    raise GeneratorFailedError(MAX_ATTEMPTS, e) from e
                last_error = e
                continue

            logger.info(
                "Generator produced candidate",
                extra={
                    "iteration": iteration,
                    "attempt": attempt,
                    "confidence": candidate.confidence,
                    "included": len(candidate.included_tasks),
                    "excluded": len(candidate.excluded_tasks),
                }
            )
            return candidate

        raise RuntimeError("Unreachable code in LLMCandidateGenerator.generate")
