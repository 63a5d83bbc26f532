"""
Prioritization Result and Result Assembler
==========================================

The persisted unit of one run: the terminal candidate merged with the loop
metadata. Assembly is a pure merge guarded by a final partition check.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import ConfigDict

from prioritizer.core.candidate import PartitionViolation, PrioritizationCandidate
from prioritizer.core.metadata import HybridLoopMetadata
from prioritizer.exceptions import AssemblyIntegrityError

logger = logging.getLogger(__name__)


class PrioritizationResult(PrioritizationCandidate):
    """Candidate fields plus the loop metadata. Never edited once built."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    evaluation_metadata: HybridLoopMetadata

    @property
    def converged(self) -> bool:
        return self.evaluation_metadata.converged

    def to_persisted(self) -> dict[str, Any]:
        """Shape stored by the persistence gateway and served to pollers."""
        included = []
        for task in self.included_tasks:
            included.append({
                "task_id": task.task_id,
                "inclusion_reason": task.inclusion_reason,
                "alignment_score": task.alignment_score,
                "score": self.per_task_scores[task.task_id].model_dump(mode="json"),
            })
        return {
            "included_tasks": included,
            "excluded_tasks": [t.model_dump(mode="json") for t in self.excluded_tasks],
            "ordered_task_ids": list(self.ordered_task_ids),
            "confidence": self.confidence,
            "critical_path_reasoning": self.critical_path_reasoning,
            "thoughts": self.thoughts.model_dump(mode="json"),
            "corrections_made": self.corrections_made,
            "evaluation_metadata": self.evaluation_metadata.model_dump(mode="json"),
        }

    def to_plan(self) -> dict[str, Any]:
        """
        Plan view of the result.

        Fed back to the next run as previous-plan context and used to
        detect major ordering movement.
        """
        dependencies = []
        for score in self.per_task_scores.values():
            for dependency_id in score.dependencies:
                dependencies.append({
                    "source_task_id": dependency_id,
                    "target_task_id": score.task_id,
                    "relationship_type": "prerequisite",
                    "confidence": 1.0,
                    "detection_method": "ai_inference",
                })

        return {
            "ordered_task_ids": list(self.ordered_task_ids),
            "execution_waves": [{
                "wave_number": 1,
                "task_ids": list(self.ordered_task_ids),
                "parallel_execution": False,
            }],
            "dependencies": dependencies,
            "confidence_scores": {
                task_id: score.confidence for task_id, score in self.per_task_scores.items()
            },
            "synthesis_summary": self.thoughts.prioritization_strategy,
            "task_annotations": [
                {
                    "task_id": task.task_id,
                    "reasoning": task.inclusion_reason,
                    "confidence": self.per_task_scores[task.task_id].confidence,
                }
                for task in self.included_tasks
            ],
            "removed_tasks": [
                {"task_id": task.task_id, "removal_reason": task.exclusion_reason}
                for task in self.excluded_tasks
            ],
            "created_at": datetime.now(timezone.utc).isoformat(),
        }


class ResultAssembler:
    """Merge the terminal candidate with loop metadata."""

    @staticmethod
    def assemble(
        candidate: PrioritizationCandidate,
        metadata: HybridLoopMetadata,
        task_ids: Iterable[str],
    ) -> PrioritizationResult:
        """
        Build the PrioritizationResult.

        Raises:
            AssemblyIntegrityError: If the partition property no longer holds
                or the metadata does not describe this candidate.
        """
        try:
            candidate.check_partition(task_ids)
        except PartitionViolation as e:
            logger.error("Partition invariant failed at assembly", extra={"reason": str(e)})
            raise AssemblyIntegrityError(str(e)) from e

        if metadata.final_confidence != candidate.confidence:
            raise AssemblyIntegrityError(
                f"final_confidence {metadata.final_confidence} does not match "
                f"candidate confidence {candidate.confidence}"
            )

        return PrioritizationResult(
            **dict(candidate),
            evaluation_metadata=metadata,
        )
