"""
Prompt Templates - Generator and Evaluator
==========================================

Builds the chat messages for both reasoning stages. The Generator prompt
carries the full task set, weighted reflections and, on refinement calls,
the previous candidate and the evaluator feedback. The Evaluator prompt
carries the candidate to critique.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any, Optional

from prioritizer.core.candidate import PrioritizationCandidate
from prioritizer.core.metadata import ChainOfThoughtStep
from prioritizer.core.task import OutcomeContext, Task, TaskDependency

logger = logging.getLogger(__name__)


GENERATOR_PROMPT = """You are a task prioritization expert. Your mission: filter and order tasks based on how well they advance the user's outcome.

## OUTCOME
{outcome}

## USER REFLECTIONS (recent context, weight 1.0 = most recent)
{reflections}

## TASKS TO EVALUATE ({task_count} total)
{tasks}

## PREVIOUS PLAN (context)
{previous_plan}

## DEPENDENCY CONSTRAINTS (overrides)
{dependency_constraints}

## YOUR PROCESS

### Step 1: CHECK NEGATIVE CONSTRAINTS (CRITICAL)
Before any other filtering, check USER REFLECTIONS for negative constraints.
Look for: "ignore", "skip", "exclude", "no [topic]", "don't", "avoid".

Examples:
- "ignore documentation" -> EXCLUDE any task related to docs/readme/wiki.
- "skip UI polish" -> EXCLUDE tasks about colors, padding, animations.

A task matching a negative constraint is EXCLUDED. Never include it and never boost it.
Set its exclusion_reason to: "User reflection requested to ignore [topic]: [reflection text]".

### Step 2: FILTER (outcome alignment)
For the remaining tasks decide INCLUDE or EXCLUDE:
- Does this task DIRECTLY advance the outcome metric?
- Is it administrative overhead that does not move the needle?
Every task must appear exactly once, either in included_tasks or in excluded_tasks.

### Step 3: PRIORITIZE (strategic ordering)
Order INCLUDED tasks by impact on the outcome, then effort (prefer high impact,
low effort), then dependencies (unblocking work first), then reflections.
For every included task write a brief_reasoning (<= 20 words) that links to the
outcome, a dependency or a mechanism. No generic phrases like "important".

### Step 4: SELF-CHECK
- Did I miss a negative constraint?
- Did I exclude a high-impact task or include a low-impact one by mistake?
Correct errors now and describe them in corrections_made.

### Step 5: CONFIDENCE
Rate your confidence (0-1): 0.9+ very confident, 0.7-0.9 minor ambiguities,
0.5-0.7 several judgment calls, <0.5 needs review.

## OUTPUT FORMAT
Return ONLY a JSON object:
{{
  "thoughts": {{
    "outcome_analysis": "...",
    "filtering_rationale": "...",
    "prioritization_strategy": "...",
    "self_check_notes": "..."
  }},
  "included_tasks": [
    {{"task_id": "...", "inclusion_reason": "...", "alignment_score": 8}}
  ],
  "excluded_tasks": [
    {{"task_id": "...", "task_text": "...", "exclusion_reason": "...", "alignment_score": 2}}
  ],
  "ordered_task_ids": ["..."],
  "per_task_scores": {{
    "<task_id>": {{
      "task_id": "<task_id>",
      "impact": 8,
      "effort": 12,
      "confidence": 0.85,
      "reasoning": "...",
      "brief_reasoning": "...",
      "dependencies": [],
      "reflection_influence": "..."
    }}
  }},
  "confidence": 0.85,
  "critical_path_reasoning": "...",
  "corrections_made": "..."
}}
per_task_scores must contain exactly the included tasks. effort is in hours (0.5-160)."""


EVALUATOR_PROMPT = """You are a prioritization quality evaluator. Your ONLY job is to inspect a completed prioritization and decide whether it meets the quality criteria. Do not re-score tasks; critique the scores you are given.

## EVALUATION CRITERIA (score each 0-10)
1. outcome_alignment: included tasks clearly advance the outcome, excluded tasks are genuinely low impact, no high-value task excluded by mistake.
2. strategic_coherence: ordering is internally consistent, respects dependencies, critical path is credible.
3. reflection_integration: reflections applied correctly; negations like "ignore docs" enforced as exclusions.
4. continuity: sensible relative to the scope evaluated and the previous plan; major movements explained.

## STATUS
- PASS: every score >= 7.
- NEEDS_IMPROVEMENT: some score < 7, none below 5.
- FAIL: any score < 5.

## OUTPUT FORMAT
Return ONLY a JSON object:
{
  "status": "PASS | NEEDS_IMPROVEMENT | FAIL",
  "feedback": "Specific, actionable feedback naming the task ids and the criterion at fault.",
  "criteria_scores": {
    "outcome_alignment": {"score": 0, "notes": "..."},
    "strategic_coherence": {"score": 0, "notes": "..."},
    "reflection_integration": {"score": 0, "notes": "..."},
    "continuity": {"score": 0, "notes": "..."}
  }
}
Feedback MUST name the specific task and criterion for every defect so the generator can fix it immediately."""


RETRY_HINT = (
    "Your previous answer was rejected: {error}\n"
    "Return ONLY valid JSON. Every input task must appear exactly once in included_tasks "
    "or excluded_tasks. per_task_scores must have one entry per included task and none "
    "for excluded tasks. ordered_task_ids must list exactly the included task ids. "
    "Every included task needs a brief_reasoning (<= 20 words) linked to the outcome."
)


class PromptBuilder:
    """
    Builds chat messages for the Generator and the Evaluator.

    Usage:
        builder = PromptBuilder()
        messages = builder.build_generator_messages(context, tasks, iteration=1)
        response = await llm.chat(messages, model=..., json_mode=True)
    """

    def build_generator_messages(
        self,
        context: OutcomeContext,
        tasks: Sequence[Task],
        *,
        iteration: int = 1,
        max_iterations: int = 3,
        prior_feedback: Optional[str] = None,
        prior_candidate: Optional[PrioritizationCandidate] = None,
        chain_of_thought: Sequence[ChainOfThoughtStep] = (),
        previous_plan: Optional[dict[str, Any]] = None,
        dependency_overrides: Sequence[TaskDependency] = (),
        retry_error: Optional[str] = None,
    ) -> list[dict[str, str]]:
        """
        Build the Generator's messages.

        Args:
            context: Outcome and reflections
            tasks: Full task set, never pre-filtered
            iteration: 1-based iteration number
            max_iterations: Iteration budget of the run
            prior_feedback: Evaluator feedback to address (refinement only)
            prior_candidate: Candidate being refined (refinement only)
            chain_of_thought: Steps recorded so far
            previous_plan: Plan from the user's last completed run
            dependency_overrides: Manual ordering constraints set by the user
            retry_error: Validation error of a rejected attempt

        Returns:
            System + user messages
        """
        system_prompt = GENERATOR_PROMPT.format(
            outcome=context.goal_text,
            reflections=context.format_reflections(),
            task_count=len(tasks),
            tasks=self._format_tasks(tasks),
            previous_plan=self._format_previous_plan(previous_plan),
            dependency_constraints=self._format_dependencies(dependency_overrides),
        )

        sections = [f"## ITERATION CONTEXT\nYou are running iteration {iteration} of {max_iterations}."]

        negations = context.negations()
        if negations:
            sections.append(
                "## NEGATIVE CONSTRAINTS DETECTED\n"
                + "\n".join(f"- {r.text}" for r in negations)
                + "\nTasks matching these MUST be excluded."
            )

        if chain_of_thought:
            sections.append(
                "## PRIOR ITERATION SUMMARY\n"
                + "\n".join(step.summary() for step in chain_of_thought)
            )

        if prior_candidate is not None:
            sections.append(
                "## PREVIOUS CANDIDATE (to refine)\n"
                + prior_candidate.model_dump_json(indent=2)
            )

        if prior_feedback:
            sections.append(
                "## EVALUATION FEEDBACK TO ADDRESS\n"
                f"{prior_feedback}\n"
                "Treat this feedback as authoritative. Where it identifies a specific error, "
                "change at least one inclusion/exclusion decision or score to fix it, and "
                "describe the change in corrections_made."
            )

        if retry_error:
            sections.append("## RETRY HINT\n" + RETRY_HINT.format(error=retry_error))

        sections.append("Return ONLY the JSON object described in your instructions.")

        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": "\n\n".join(sections)},
        ]

    def build_evaluator_messages(
        self,
        context: OutcomeContext,
        candidate: PrioritizationCandidate,
        previous_plan: Optional[dict[str, Any]] = None,
        retry_error: Optional[str] = None,
    ) -> list[dict[str, str]]:
        """Build the Evaluator's messages."""
        user_prompt = "\n\n".join([
            "Evaluate whether the prioritization below meets the outcome and reflections.",
            "## OUTCOME",
            context.goal_text,
            "## REFLECTIONS",
            context.format_reflections(),
            "## PREVIOUS PLAN",
            self._format_previous_plan(previous_plan),
            "## PRIORITIZATION RESULT (JSON)",
            candidate.model_dump_json(indent=2),
        ])
        if retry_error:
            user_prompt += (
                "\n\n## RETRY HINT\nYour previous answer was rejected: "
                f"{retry_error}\nReturn ONLY the JSON object, feedback at least 20 characters."
            )

        return [
            {"role": "system", "content": EVALUATOR_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

    def _format_tasks(self, tasks: Sequence[Task]) -> str:
        return "\n".join(json.dumps({"id": t.id, "text": t.text}) for t in tasks)

    def _format_previous_plan(self, previous_plan: Optional[dict[str, Any]]) -> str:
        if not previous_plan:
            return "No previous plan available."
        summary = {
            "ordered_task_ids": previous_plan.get("ordered_task_ids", []),
            "synthesis_summary": previous_plan.get("synthesis_summary"),
            "removed_tasks": previous_plan.get("removed_tasks", []),
        }
        return json.dumps(summary, indent=2)

    def _format_dependencies(self, overrides: Sequence[TaskDependency]) -> str:
        if not overrides:
            return "No manual dependency overrides."
        return "\n".join(f"- {dep.describe()}" for dep in overrides)
