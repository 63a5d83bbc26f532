"""
PrioritizationService Integration Tests
=======================================

Real SessionStore on a temporary SQLite file, real loop controller,
scripted Generator/Evaluator. Covers the background job lifecycle, the
per-user active-run slot, failure bookkeeping and previous-plan hand-off.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from prioritizer.exceptions import (
    ActiveSessionError,
    AssemblyIntegrityError,
    ContextLoadError,
    ServiceUnavailableError,
)
from prioritizer.core.task import TaskDependency
from prioritizer.orchestrator.loop import HybridLoopController
from prioritizer.service import PrioritizationService, StaticContextProvider
from prioritizer.storage.session_store import SessionStatus, SessionStore


def _service(settings, store, provider, candidates, verdicts=()):
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=list(candidates))
    evaluator = MagicMock()
    evaluator.evaluate = AsyncMock(side_effect=list(verdicts))
    controller = HybridLoopController(generator, evaluator, settings)
    return PrioritizationService(controller, store, provider, settings), generator


@pytest.fixture
def provider(outcome_context, tasks):
    provider = StaticContextProvider()
    provider.register("outcome-1", outcome_context, tasks)
    return provider


async def _open_store(tmp_path: Path) -> SessionStore:
    store = SessionStore(tmp_path / "sessions.db")
    await store.initialize()
    return store


@pytest.mark.asyncio
async def test_run_completes_and_stores_result(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, _ = _service(settings, store, provider, [make_candidate(confidence=0.9)])

        session_id = await service.start_prioritization("user-1", "outcome-1")
        record = await service.wait_for(session_id)

        assert record.status == SessionStatus.COMPLETED
        assert record.error is None
        assert record.result["ordered_task_ids"] == ["t1", "t2", "t3", "t4", "t5"]
        assert record.result["evaluation_metadata"]["iterations"] == 1
        assert record.result["plan"]["ordered_task_ids"] == ["t1", "t2", "t3", "t4", "t5"]
        assert not service.is_active("user-1")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_second_run_rejected_while_active(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        release = asyncio.Event()
        candidate = make_candidate(confidence=0.9)

        async def slow_generate(*args, **kwargs):
            await release.wait()
            return candidate

        service, generator = _service(settings, store, provider, [])
        generator.generate = AsyncMock(side_effect=slow_generate)

        session_id = await service.start_prioritization("user-1", "outcome-1")
        assert service.is_active("user-1")

        with pytest.raises(ActiveSessionError) as exc_info:
            await service.start_prioritization("user-1", "outcome-1")
        assert exc_info.value.session_id == session_id

        running = await service.get_session(session_id)
        assert running.status == SessionStatus.RUNNING

        release.set()
        record = await service.wait_for(session_id)
        assert record.status == SessionStatus.COMPLETED

        # The slot is free again once the run finished
        generator.generate = AsyncMock(return_value=candidate)
        next_id = await service.start_prioritization("user-1", "outcome-1")
        assert (await service.wait_for(next_id)).status == SessionStatus.COMPLETED
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_failure_marks_session_failed_and_keeps_last_good(
    tmp_path, settings, provider, make_candidate
):
    store = await _open_store(tmp_path)
    try:
        service, generator = _service(
            settings,
            store,
            provider,
            [make_candidate(confidence=0.9), ServiceUnavailableError("openai unavailable")],
        )

        good_id = await service.start_prioritization("user-1", "outcome-1")
        await service.wait_for(good_id)

        bad_id = await service.start_prioritization("user-1", "outcome-1")
        failed = await service.wait_for(bad_id)

        assert failed.status == SessionStatus.FAILED
        assert failed.result is None
        assert failed.error.startswith("ServiceUnavailableError")

        latest = await service.get_latest_completed("user-1")
        assert latest.session_id == good_id
        assert latest.result["ordered_task_ids"] == ["t1", "t2", "t3", "t4", "t5"]
        assert not service.is_active("user-1")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_unknown_outcome_fails_session(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, generator = _service(settings, store, provider, [make_candidate()])

        with pytest.raises(ContextLoadError):
            await service.start_prioritization("user-1", "outcome-unknown")

        latest = await store.get_latest_session("user-1")
        assert latest.status == SessionStatus.FAILED
        assert "outcome-unknown" in latest.error
        assert not service.is_active("user-1")
        generator.generate.assert_not_awaited()
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_empty_task_set_fails_session(tmp_path, settings, outcome_context, make_candidate):
    store = await _open_store(tmp_path)
    try:
        provider = StaticContextProvider()
        provider.register("outcome-empty", outcome_context, [])
        service, _ = _service(settings, store, provider, [make_candidate()])

        with pytest.raises(ContextLoadError, match="No tasks"):
            await service.start_prioritization("user-1", "outcome-empty")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_previous_plan_passed_to_next_run(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, generator = _service(
            settings,
            store,
            provider,
            [
                make_candidate(included=["t3", "t1"], confidence=0.9),
                make_candidate(confidence=0.9),
            ],
        )

        first_id = await service.start_prioritization("user-1", "outcome-1")
        await service.wait_for(first_id)
        second_id = await service.start_prioritization("user-1", "outcome-1")
        await service.wait_for(second_id)

        first_call, second_call = generator.generate.await_args_list
        assert first_call.kwargs["previous_plan"] is None
        assert second_call.kwargs["previous_plan"]["ordered_task_ids"] == ["t3", "t1"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_other_users_not_blocked(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, _ = _service(
            settings,
            store,
            provider,
            [make_candidate(confidence=0.9), make_candidate(confidence=0.9)],
        )

        first = await service.start_prioritization("user-1", "outcome-1")
        second = await service.start_prioritization("user-2", "outcome-1")

        assert (await service.wait_for(first)).status == SessionStatus.COMPLETED
        assert (await service.wait_for(second)).status == SessionStatus.COMPLETED
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_integrity_error_recorded(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, _ = _service(settings, store, provider, [make_candidate(confidence=0.9)])
        service.controller.run = AsyncMock(side_effect=AssemblyIntegrityError("t9 missing"))

        session_id = await service.start_prioritization("user-1", "outcome-1")
        record = await service.wait_for(session_id)

        assert record.status == SessionStatus.FAILED
        assert "t9 missing" in record.error
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_shutdown_cancels_running_jobs(tmp_path, settings, provider):
    store = await _open_store(tmp_path)
    try:
        started = asyncio.Event()

        async def never_finishes(*args, **kwargs):
            started.set()
            await asyncio.Event().wait()

        service, generator = _service(settings, store, provider, [])
        generator.generate = AsyncMock(side_effect=never_finishes)

        session_id = await service.start_prioritization("user-1", "outcome-1")
        await started.wait()
        await service.shutdown()

        record = await store.get_session(session_id)
        assert record.status == SessionStatus.FAILED
        assert record.error == "Prioritization cancelled"
        assert not service.is_active("user-1")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_provider_error_fails_session_and_frees_slot(
    tmp_path, settings, provider, make_candidate
):
    store = await _open_store(tmp_path)
    try:
        broken = MagicMock()
        broken.load = AsyncMock(side_effect=RuntimeError("context backend down"))
        service, _ = _service(settings, store, broken, [make_candidate(confidence=0.9)])

        with pytest.raises(RuntimeError, match="context backend down"):
            await service.start_prioritization("user-1", "outcome-1")

        failed = await store.get_latest_session("user-1")
        assert failed.status == SessionStatus.FAILED
        assert failed.error == "RuntimeError: context backend down"
        assert not service.is_active("user-1")

        service.context_provider = provider
        session_id = await service.start_prioritization("user-1", "outcome-1")
        assert (await service.wait_for(session_id)).status == SessionStatus.COMPLETED
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_persist_error_fails_session(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, _ = _service(settings, store, provider, [make_candidate(confidence=0.9)])
        store.complete_session = AsyncMock(
            side_effect=aiosqlite.OperationalError("database is locked")
        )

        session_id = await service.start_prioritization("user-1", "outcome-1")
        record = await service.wait_for(session_id)

        assert record.status == SessionStatus.FAILED
        assert record.result is None
        assert record.error == "OperationalError: database is locked"
        assert not service.is_active("user-1")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_store_outage_does_not_escape_job(tmp_path, settings, provider, make_candidate):
    store = await _open_store(tmp_path)
    try:
        service, _ = _service(settings, store, provider, [make_candidate(confidence=0.9)])
        outage = aiosqlite.OperationalError("disk I/O error")
        store.complete_session = AsyncMock(side_effect=outage)
        store.fail_session = AsyncMock(side_effect=outage)

        session_id = await service.start_prioritization("user-1", "outcome-1")
        record = await service.wait_for(session_id)

        assert record.status == SessionStatus.RUNNING
        store.fail_session.assert_awaited_once()
        assert not service.is_active("user-1")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_dependency_overrides_reach_generator(
    tmp_path, settings, outcome_context, tasks, make_candidate
):
    store = await _open_store(tmp_path)
    try:
        overrides = [TaskDependency(source_task_id="t3", target_task_id="t1")]
        provider = StaticContextProvider()
        provider.register("outcome-1", outcome_context, tasks, dependency_overrides=overrides)
        service, generator = _service(settings, store, provider, [make_candidate(confidence=0.9)])

        session_id = await service.start_prioritization("user-1", "outcome-1")
        await service.wait_for(session_id)

        assert generator.generate.await_args.kwargs["dependency_overrides"] == tuple(overrides)
    finally:
        await store.close()
