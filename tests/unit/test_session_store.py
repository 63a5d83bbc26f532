"""
SessionStore Tests
==================

SQLite-backed session persistence: lifecycle transitions, last-known-good
preservation on failure, and retention purging.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from prioritizer.exceptions import SessionError, SessionNotFoundError
from prioritizer.storage.session_store import SessionStatus, SessionStore


async def _open_store(tmp_path: Path) -> SessionStore:
    store = SessionStore(db_path=tmp_path / "sessions.db")
    await store.initialize()
    return store


@pytest.mark.asyncio
async def test_create_and_complete_session(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        record = await store.create_session("user-1", "outcome-1")

        assert record.status == SessionStatus.RUNNING
        assert record.result is None

        completed = await store.complete_session(
            record.session_id, {"ordered_task_ids": ["t1", "t3"]}
        )

        assert completed.status == SessionStatus.COMPLETED
        assert completed.result == {"ordered_task_ids": ["t1", "t3"]}
        assert completed.is_terminal
        assert completed.updated_at >= completed.created_at
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_get_unknown_session(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        with pytest.raises(SessionNotFoundError):
            await store.get_session("missing")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_fail_preserves_previous_completed_session(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        first = await store.create_session("user-1", "outcome-1")
        await store.complete_session(first.session_id, {"ordered_task_ids": ["t1"]})

        second = await store.create_session("user-1", "outcome-1")
        failed = await store.fail_session(second.session_id, "GeneratorFailedError: bad output")

        assert failed.status == SessionStatus.FAILED
        assert failed.result is None
        assert failed.error == "GeneratorFailedError: bad output"

        latest_completed = await store.get_latest_session("user-1", SessionStatus.COMPLETED)
        assert latest_completed.session_id == first.session_id
        assert latest_completed.result == {"ordered_task_ids": ["t1"]}

        latest_any = await store.get_latest_session("user-1")
        assert latest_any.session_id == second.session_id
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_finished_session_is_immutable(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        record = await store.create_session("user-1", "outcome-1")
        await store.complete_session(record.session_id, {"ordered_task_ids": ["t1"]})

        with pytest.raises(SessionError, match="already completed"):
            await store.complete_session(record.session_id, {"ordered_task_ids": ["t2"]})
        with pytest.raises(SessionError):
            await store.fail_session(record.session_id, "late failure")

        reloaded = await store.get_session(record.session_id)
        assert reloaded.result == {"ordered_task_ids": ["t1"]}
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_finish_unknown_session(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        with pytest.raises(SessionNotFoundError):
            await store.fail_session("missing", "boom")
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_active_session_lookup(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        assert await store.get_active_session("user-1") is None

        record = await store.create_session("user-1", "outcome-1")
        active = await store.get_active_session("user-1")
        assert active.session_id == record.session_id

        await store.fail_session(record.session_id, "boom")
        assert await store.get_active_session("user-1") is None
        assert await store.get_active_session("user-2") is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_purge_expired(tmp_path: Path):
    store = await _open_store(tmp_path)
    try:
        done = await store.create_session("user-1", "outcome-1")
        await store.complete_session(done.session_id, {"ordered_task_ids": ["t1"]})
        running = await store.create_session("user-2", "outcome-2")

        future = datetime.now(timezone.utc) + timedelta(days=31)

        assert await store.purge_expired(retention_days=60, now=future) == 0
        assert await store.purge_expired(retention_days=30, now=future) == 1

        with pytest.raises(SessionNotFoundError):
            await store.get_session(done.session_id)
        assert (await store.get_session(running.session_id)).status == SessionStatus.RUNNING
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_requires_initialize(tmp_path: Path):
    store = SessionStore(db_path=tmp_path / "sessions.db")

    with pytest.raises(RuntimeError, match="not initialized"):
        await store.create_session("user-1", "outcome-1")


@pytest.mark.asyncio
async def test_persists_across_connections(tmp_path: Path):
    store = await _open_store(tmp_path)
    record = await store.create_session("user-1", "outcome-1")
    await store.complete_session(record.session_id, {"confidence": 0.9})
    await store.close()

    reopened = await _open_store(tmp_path)
    try:
        loaded = await reopened.get_session(record.session_id)
        assert loaded.result == {"confidence": 0.9}
        assert loaded.to_dict()["status"] == "completed"
    finally:
        await reopened.close()
