"""Prioritization errors.

Base exception hierarchy for the hybrid loop and its collaborators.

Schema violations are retried once by the stage that produced them.
Service errors are retried with backoff at the call site.
Everything else is fatal for the run.
"""

from __future__ import annotations

from typing import Optional


class PrioritizerError(Exception):
    """Base exception for all prioritization failures."""

    pass


# ---------------------------------------------------------------------------
# Stage output validation
# ---------------------------------------------------------------------------


class SchemaViolationError(PrioritizerError):
    """Raw reasoning output failed schema or invariant validation.

    Attributes:
        stage: Which stage produced the output ("generator" or "evaluator")
        raw_output: Truncated raw text, kept for debugging
    """

    stage = "unknown"

    def __init__(self, message: str, raw_output: Optional[str] = None) -> None:
        self.raw_output = (raw_output or "")[:500]
        super().__init__(f"{self.stage} output rejected: {message}")


class CandidateValidationError(SchemaViolationError):
    """Generator output is not a valid PrioritizationCandidate."""

    stage = "generator"


class VerdictValidationError(SchemaViolationError):
    """Evaluator output is not a valid EvaluationVerdict."""

    stage = "evaluator"


class StageFailedError(PrioritizerError):
    """A stage failed validation twice in a row. Fatal for the run."""

    stage = "unknown"

    def __init__(self, attempts: int, last_error: SchemaViolationError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{self.stage} failed after {attempts} attempts: {last_error}"
        )


class GeneratorFailedError(StageFailedError):
    """Candidate Generator exhausted its validation retry."""

    stage = "generator"


class EvaluatorFailedError(StageFailedError):
    """Quality Evaluator exhausted its validation retry."""

    stage = "evaluator"


# ---------------------------------------------------------------------------
# Reasoning service
# ---------------------------------------------------------------------------


class ReasoningServiceError(PrioritizerError):
    """The reasoning service rejected the request.

    Typical causes: invalid credentials, malformed request, unknown model.
    Not retried.
    """

    def __init__(self, message: str, provider: str = "") -> None:
        self.provider = provider
        super().__init__(message)


class ServiceUnavailableError(ReasoningServiceError):
    """The reasoning service is unreachable or erroring.

    Typical causes: connection reset, request timeout, rate limit, 5xx.
    Retried with bounded backoff; exhaustion is a fatal run failure,
    distinct from a quality failure.
    """

    pass


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class AssemblyIntegrityError(PrioritizerError):
    """Partition invariant failed after the loop otherwise succeeded.

    Indicates corrupted state between stages rather than a reasoning
    defect. Never retried.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Result assembly integrity violated: {reason}")


# ---------------------------------------------------------------------------
# Sessions and context
# ---------------------------------------------------------------------------


class ContextLoadError(PrioritizerError):
    """The task context provider could not supply outcome and tasks."""

    pass


class SessionError(PrioritizerError):
    """Base class for session bookkeeping errors."""

    pass


class SessionNotFoundError(SessionError):
    """No session exists for the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class ActiveSessionError(SessionError):
    """The user already has a prioritization job running."""

    def __init__(self, user_id: str, session_id: str) -> None:
        self.user_id = user_id
        self.session_id = session_id
        super().__init__(
            f"User {user_id} already has an active prioritization session {session_id}"
        )
