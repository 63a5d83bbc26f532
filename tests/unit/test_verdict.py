"""
Unit Tests for EvaluationVerdict
================================

Tests verify:
1. Status derivation from the four criteria scores (boundaries included)
2. A disagreeing reported status is overridden
3. Malformed evaluator output raises VerdictValidationError
4. Generic-feedback detection
"""

import json

import pytest

from prioritizer.core.verdict import (
    CriteriaScores,
    EvaluationVerdict,
    VerdictStatus,
    derive_status,
)
from prioritizer.exceptions import VerdictValidationError


def _scores(*values):
    names = ("outcome_alignment", "strategic_coherence", "reflection_integration", "continuity")
    return CriteriaScores.model_validate({
        name: {"score": value} for name, value in zip(names, values)
    })


class TestDeriveStatus:
    @pytest.mark.parametrize(
        "values,expected",
        [
            ((7, 7, 7, 7), VerdictStatus.PASS),
            ((10, 9, 8, 7), VerdictStatus.PASS),
            ((6.9, 8, 8, 8), VerdictStatus.NEEDS_IMPROVEMENT),
            ((5, 5, 5, 5), VerdictStatus.NEEDS_IMPROVEMENT),
            ((4.9, 9, 9, 9), VerdictStatus.FAIL),
            ((0, 0, 0, 0), VerdictStatus.FAIL),
        ],
    )
    def test_boundaries(self, values, expected):
        assert derive_status(_scores(*values)) == expected

    def test_lowest_criterion(self):
        name, score = _scores(8, 6, 9, 7).lowest()

        assert name == "strategic_coherence"
        assert score == 6


class TestParseRawOutput:
    def test_pass_verdict(self, make_verdict):
        verdict = make_verdict(scores=(8, 9, 7, 8))

        assert verdict.status == VerdictStatus.PASS
        assert not verdict.is_blocking

    def test_reported_status_overridden(self, make_verdict):
        verdict = make_verdict(scores=(9, 9, 4, 9), status="PASS")

        assert verdict.status == VerdictStatus.FAIL
        assert verdict.is_blocking

    def test_missing_status_derived(self, make_verdict):
        verdict = make_verdict(scores=(6, 8, 8, 8))

        assert verdict.status == VerdictStatus.NEEDS_IMPROVEMENT

    def test_metadata_attached(self):
        raw = json.dumps({
            "status": "PASS",
            "feedback": "continuity: ordering matches the previous plan well.",
            "criteria_scores": {
                "outcome_alignment": {"score": 8},
                "strategic_coherence": {"score": 8},
                "reflection_integration": {"score": 8},
                "continuity": {"score": 8},
            },
        })

        verdict = EvaluationVerdict.parse_raw_output(
            raw, evaluator_model="gpt-4o-mini", duration_ms=1234
        )

        assert verdict.evaluator_model == "gpt-4o-mini"
        assert verdict.evaluation_duration_ms == 1234

    def test_short_feedback_rejected(self):
        payload = {
            "feedback": "Looks fine",
            "criteria_scores": {
                name: {"score": 8}
                for name in (
                    "outcome_alignment",
                    "strategic_coherence",
                    "reflection_integration",
                    "continuity",
                )
            },
        }

        with pytest.raises(VerdictValidationError, match="feedback"):
            EvaluationVerdict.parse_raw_output(payload)

    def test_missing_criterion_rejected(self):
        payload = {
            "feedback": "outcome_alignment looks right for every included task.",
            "criteria_scores": {
                "outcome_alignment": {"score": 8},
                "strategic_coherence": {"score": 8},
                "reflection_integration": {"score": 8},
            },
        }

        with pytest.raises(VerdictValidationError, match="continuity"):
            EvaluationVerdict.parse_raw_output(payload)

    def test_score_out_of_range_rejected(self, make_verdict):
        with pytest.raises(VerdictValidationError):
            make_verdict(scores=(11, 8, 8, 8))

    def test_non_json_rejected(self):
        with pytest.raises(VerdictValidationError) as exc_info:
            EvaluationVerdict.parse_raw_output("PASS, looks great")

        assert str(exc_info.value).startswith("evaluator output rejected")


class TestGenericFeedback:
    def test_criterion_name_is_specific(self, make_verdict):
        verdict = make_verdict(feedback="Reflection integration is weak for the docs tasks.")

        assert not verdict.is_generic_feedback()

    def test_task_reference_is_specific(self, make_verdict):
        verdict = make_verdict(feedback="Move t3 ahead of everything else in the plan.")

        assert not verdict.is_generic_feedback(["t3"])

    def test_generic_feedback_detected(self, make_verdict):
        verdict = make_verdict(feedback="Could be better overall, please improve it.")

        assert verdict.is_generic_feedback(["t1", "t2"])
