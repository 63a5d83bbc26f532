"""
Prioritization Service
======================

Entry point used by the HTTP surface. Starts a prioritization as a
background job, tracks one active job per user, and records the outcome
of every run through the session store.

Flow:
    1. Reserve the user's slot (reject if a run is already active)
    2. Create a ``running`` session and load the task context
    3. Run the hybrid loop in the background
    4. Store the result (``completed``) or the error (``failed``)

A failed run never stores a partial result and never touches the user's
previous completed session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from prioritizer.config import PrioritizerSettings, get_settings
from prioritizer.core.task import OutcomeContext, Task, TaskDependency
from prioritizer.exceptions import ActiveSessionError, ContextLoadError
from prioritizer.orchestrator.loop import HybridLoopController, ProgressUpdate
from prioritizer.storage.session_store import SessionRecord, SessionStatus, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrioritizationInput:
    """Everything the loop needs for one run."""

    outcome_context: OutcomeContext
    tasks: tuple[Task, ...]
    previous_plan: Optional[dict[str, Any]] = None
    dependency_overrides: tuple[TaskDependency, ...] = ()


@runtime_checkable
class TaskContextProvider(Protocol):
    """Supplies the outcome, reflections and task set for a user."""

    async def load(self, user_id: str, outcome_id: str) -> PrioritizationInput:
        """
        Raises:
            ContextLoadError: Unknown outcome or no tasks to prioritize
        """
        ...


@dataclass
class StaticContextProvider:
    """In-memory provider keyed by outcome id."""

    inputs: dict[str, PrioritizationInput] = field(default_factory=dict)

    def register(
        self,
        outcome_id: str,
        outcome_context: OutcomeContext,
        tasks: Sequence[Task],
        previous_plan: Optional[dict[str, Any]] = None,
        dependency_overrides: Sequence[TaskDependency] = (),
    ) -> None:
        self.inputs[outcome_id] = PrioritizationInput(
            outcome_context=outcome_context,
            tasks=tuple(tasks),
            previous_plan=previous_plan,
            dependency_overrides=tuple(dependency_overrides),
        )

    async def load(self, user_id: str, outcome_id: str) -> PrioritizationInput:
        inputs = self.inputs.get(outcome_id)
        if inputs is None:
            raise ContextLoadError(f"Outcome {outcome_id} not found")
        if not inputs.tasks:
            raise ContextLoadError(f"No tasks available to prioritize for outcome {outcome_id}")
        return inputs


class PrioritizationService:
    """
    Runs prioritizations as background jobs.

    Attributes:
        controller: Hybrid loop controller
        store: Session persistence gateway
        context_provider: Source of outcome, reflections and tasks
    """

    def __init__(
        self,
        controller: HybridLoopController,
        store: SessionStore,
        context_provider: TaskContextProvider,
        settings: Optional[PrioritizerSettings] = None,
    ) -> None:
        self.controller = controller
        self.store = store
        self.context_provider = context_provider
        self.settings = settings or get_settings()

        self._lock = asyncio.Lock()
        self._active: dict[str, str] = {}
        self._jobs: dict[str, asyncio.Task[None]] = {}
        self._progress: dict[str, ProgressUpdate] = {}

    async def start_prioritization(self, user_id: str, outcome_id: str) -> str:
        """
        Start a run and return its session id immediately.

        Raises:
            ActiveSessionError: The user already has a run in progress
            ContextLoadError: Outcome or tasks could not be loaded; the
                session is recorded as failed before this is raised
            Exception: Any other provider or store error, after the session
                is recorded as failed and the user's slot released
        """
        async with self._lock:
            active_session = self._active.get(user_id)
            if active_session is not None:
                raise ActiveSessionError(user_id, active_session)

            record = await self.store.create_session(user_id, outcome_id)
            session_id = record.session_id
            self._active[user_id] = session_id

        try:
            inputs = await self.context_provider.load(user_id, outcome_id)
            previous_plan = inputs.previous_plan
            if previous_plan is None:
                previous_plan = await self._previous_plan(user_id)
        except ContextLoadError as e:
            logger.warning(
                "Task context unavailable",
                extra={"session_id": session_id, "user_id": user_id, "error": str(e)}
            )
            try:
                await self.store.fail_session(session_id, str(e))
            finally:
                self._release(user_id, session_id)
            raise
        except Exception as e:
            logger.exception(
                "Task context loading failed",
                extra={"session_id": session_id, "user_id": user_id}
            )
            try:
                await self.store.fail_session(session_id, f"{type(e).__name__}: {e}")
            finally:
                self._release(user_id, session_id)
            raise

        job = asyncio.create_task(self._run_job(session_id, user_id, inputs, previous_plan))
        self._jobs[session_id] = job
        job.add_done_callback(lambda _: self._jobs.pop(session_id, None))
        logger.info(
            "Prioritization started",
            extra={
                "session_id": session_id,
                "user_id": user_id,
                "outcome_id": outcome_id,
                "task_count": len(inputs.tasks),
            }
        )
        return session_id

    async def _previous_plan(self, user_id: str) -> Optional[dict[str, Any]]:
        latest = await self.store.get_latest_session(user_id, SessionStatus.COMPLETED)
        if latest is None or not latest.result:
            return None
        return latest.result.get("plan")

    async def _run_job(
        self,
        session_id: str,
        user_id: str,
        inputs: PrioritizationInput,
        previous_plan: Optional[dict[str, Any]],
    ) -> None:
        def on_progress(update: ProgressUpdate) -> None:
            self._progress[session_id] = update

        try:
            result = await self.controller.run(
                inputs.outcome_context,
                inputs.tasks,
                previous_plan=previous_plan,
                on_progress=on_progress,
                dependency_overrides=inputs.dependency_overrides,
            )
            payload = result.to_persisted()
            payload["plan"] = result.to_plan()
            await self.store.complete_session(session_id, payload)
        except asyncio.CancelledError:
            try:
                await self.store.fail_session(session_id, "Prioritization cancelled")
            finally:
                self._release(user_id, session_id)
            raise
        except Exception as e:
            # Any failure ends the run without a result; the error is the record.
            logger.exception(
                "Prioritization failed",
                extra={"session_id": session_id, "user_id": user_id}
            )
            await self._record_failure(session_id, e)
            self._release(user_id, session_id)
            return

        self._release(user_id, session_id)

        metadata = result.evaluation_metadata
        logger.info(
            "Prioritization completed",
            extra={
                "session_id": session_id,
                "user_id": user_id,
                "iteration": metadata.iterations,
                "converged": metadata.converged,
                "duration_ms": metadata.duration_ms,
            }
        )

    async def _record_failure(self, session_id: str, error: Exception) -> None:
        # Background job: nothing awaits it, so a store error is logged here.
        try:
            await self.store.fail_session(session_id, f"{type(error).__name__}: {error}")
        except Exception:
            logger.exception(
                "Could not record failed session",
                extra={"session_id": session_id}
            )

    def _release(self, user_id: str, session_id: str) -> None:
        if self._active.get(user_id) == session_id:
            del self._active[user_id]
        self._progress.pop(session_id, None)

    async def get_session(self, session_id: str) -> SessionRecord:
        """
        Raises:
            SessionNotFoundError: Unknown session id
        """
        return await self.store.get_session(session_id)

    async def get_latest_completed(self, user_id: str) -> Optional[SessionRecord]:
        return await self.store.get_latest_session(user_id, SessionStatus.COMPLETED)

    def get_progress(self, session_id: str) -> Optional[ProgressUpdate]:
        """Latest progress update of a running session."""
        return self._progress.get(session_id)

    def is_active(self, user_id: str) -> bool:
        return user_id in self._active

    async def wait_for(self, session_id: str) -> SessionRecord:
        """Wait for a background run to finish and return its session."""
        job = self._jobs.get(session_id)
        if job is not None:
            await job
        return await self.store.get_session(session_id)

    async def purge_expired(self) -> int:
        """Drop sessions older than the configured retention window."""
        return await self.store.purge_expired(self.settings.session_retention_days)

    async def shutdown(self) -> None:
        """Cancel running jobs. Their sessions are recorded as failed."""
        jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
