"""
Reasoning stages of the hybrid loop.

- CandidateGenerator / LLMCandidateGenerator: draft and refine candidates
- QualityEvaluator / LLMQualityEvaluator: critique candidates
"""

from prioritizer.agents.evaluator import LLMQualityEvaluator, QualityEvaluator
from prioritizer.agents.generator import CandidateGenerator, LLMCandidateGenerator

__all__ = [
    "CandidateGenerator",
    "LLMCandidateGenerator",
    "LLMQualityEvaluator",
    "QualityEvaluator",
]
