"""
Quality Evaluator
=================

Lighter, cheaper reasoning stage that critiques a candidate against four
fixed criteria and returns a verdict plus actionable feedback. It never
re-derives scores.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Protocol, runtime_checkable

from prioritizer.config import PrioritizerSettings, get_settings
from prioritizer.core.candidate import PrioritizationCandidate
from prioritizer.core.task import OutcomeContext
from prioritizer.core.verdict import EvaluationVerdict
from prioritizer.exceptions import EvaluatorFailedError, VerdictValidationError
from prioritizer.llm.client import LLMClient
from prioritizer.llm.prompts import PromptBuilder

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


@runtime_checkable
class QualityEvaluator(Protocol):
    """Capability interface for the Evaluator stage."""

    async def evaluate(
        self,
        outcome_context: OutcomeContext,
        candidate: PrioritizationCandidate,
        *,
        previous_plan: Optional[dict[str, Any]] = None,
    ) -> EvaluationVerdict:
        """
        Critique ``candidate``.

        Raises:
            EvaluatorFailedError: Output invalid on both attempts
            ServiceUnavailableError: Reasoning service unreachable after backoff
        """
        ...


class LLMQualityEvaluator:
    """Evaluator backed by the reasoning service."""

    def __init__(
        self,
        client: LLMClient,
        settings: Optional[PrioritizerSettings] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.prompt_builder = prompt_builder or PromptBuilder()

    async def evaluate(
        self,
        outcome_context: OutcomeContext,
        candidate: PrioritizationCandidate,
        *,
        previous_plan: Optional[dict[str, Any]] = None,
    ) -> EvaluationVerdict:
        last_error: Optional[VerdictValidationError] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            messages = self.prompt_builder.build_evaluator_messages(
                outcome_context,
                candidate,
                previous_plan=previous_plan,
                retry_error=str(last_error) if last_error else None,
            )

            started = time.perf_counter()
            response = await self.client.chat(
                messages,
                model=self.settings.evaluator_model,
                temperature=self.settings.evaluator_temperature,
                json_mode=True,
            )
            duration_ms = int((time.perf_counter() - started) * 1000)

            try:
                verdict = EvaluationVerdict.parse_raw_output(
                    response.text,
                    evaluator_model=self.settings.evaluator_model,
                    duration_ms=duration_ms,
                )
            except VerdictValidationError as e:
                logger.warning(
                    f"Evaluator attempt {attempt} rejected",
                    extra={"attempt": attempt, "error": str(e)}
                )
                if attempt == MAX_ATTEMPTS:
                    raise EvaluatorFailedError(MAX_ATTEMPTS, e) from e
                last_error = e
                continue

            logger.info(
                "Evaluator produced verdict",
                extra={
                    "status": verdict.status.value,
                    "scores": verdict.criteria_scores.as_dict(),
                    "duration_ms": duration_ms,
                }
            )
            return verdict

        raise RuntimeError("Unreachable code in LLMQualityEvaluator.evaluate")
