"""
SessionStore - Persistent Prioritization Sessions
=================================================

Persists one row per prioritization run to SQLite so results survive
restarts and pollers can fetch them later.

Rules:
- A session is written ``running`` on start and moves exactly once to
  ``completed`` (with its result) or ``failed`` (with its error).
- Failing a session never touches any other session of the same user,
  so the last completed plan stays available.
- Sessions older than the retention window are purged on demand.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from prioritizer.exceptions import SessionError, SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionRecord:
    """One prioritization run as stored."""

    session_id: str
    user_id: str
    outcome_id: str
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "outcome_id": self.outcome_id,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    SQLite-backed storage for prioritization sessions.

    Database schema:
    - sessions: one row per run, result stored as JSON text
    """

    def __init__(self, db_path: Union[str, Path] = ".prioritizer/sessions.db") -> None:
        """
        Initialize SessionStore.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """
        Open the connection and create the schema.
        Must be called before any other operations.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(self.db_path)
        self.db.row_factory = aiosqlite.Row

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                outcome_id TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self.db.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id, created_at)"
        )
        await self.db.execute("CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status)")
        await self.db.commit()

        logger.info("SessionStore initialized", extra={"db_path": str(self.db_path)})

    def _require_db(self) -> aiosqlite.Connection:
        if not self.db:
            raise RuntimeError("SessionStore not initialized. Call initialize() first.")
        return self.db

    async def create_session(self, user_id: str, outcome_id: str) -> SessionRecord:
        """
        Insert a new ``running`` session.

        Args:
            user_id: Owner of the run.
            outcome_id: Outcome being prioritized.

        Returns:
            The stored record.
        """
        db = self._require_db()
        now = _utcnow()
        record = SessionRecord(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            outcome_id=outcome_id,
            status=SessionStatus.RUNNING,
            created_at=now,
            updated_at=now,
        )

        await db.execute(
            """
            INSERT INTO sessions (
                session_id, user_id, outcome_id, status, result, error, created_at, updated_at
            ) VALUES (?, ?, ?, ?, NULL, NULL, ?, ?)
            """,
            (
                record.session_id,
                user_id,
                outcome_id,
                record.status.value,
                now.isoformat(),
                now.isoformat(),
            )
        )
        await db.commit()

        logger.info(
            "Session created",
            extra={"session_id": record.session_id, "user_id": user_id, "outcome_id": outcome_id}
        )
        return record

    async def complete_session(self, session_id: str, result: dict[str, Any]) -> SessionRecord:
        """
        Store the result and mark the session ``completed``.

        Raises:
            SessionNotFoundError: Unknown session id.
            SessionError: Session already finished.
        """
        return await self._finish(session_id, SessionStatus.COMPLETED, result=result)

    async def fail_session(self, session_id: str, error: str) -> SessionRecord:
        """
        Mark the session ``failed``. No result is stored.

        Raises:
            SessionNotFoundError: Unknown session id.
            SessionError: Session already finished.
        """
        return await self._finish(session_id, SessionStatus.FAILED, error=error)

    async def _finish(
        self,
        session_id: str,
        status: SessionStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> SessionRecord:
        db = self._require_db()
        now = _utcnow()

        # Only a running session may transition; finished sessions are immutable.
        cursor = await db.execute(
            """
            UPDATE sessions
            SET status = ?, result = ?, error = ?, updated_at = ?
            WHERE session_id = ? AND status = ?
            """,
            (
                status.value,
                json.dumps(result) if result is not None else None,
                error,
                now.isoformat(),
                session_id,
                SessionStatus.RUNNING.value,
            )
        )
        await db.commit()

        if cursor.rowcount == 0:
            existing = await self.get_session(session_id)
            raise SessionError(
                f"Session {session_id} already {existing.status.value}, cannot mark {status.value}"
            )

        logger.info(
            f"Session {status.value}",
            extra={"session_id": session_id, "status": status.value, "error": error}
        )
        return await self.get_session(session_id)

    async def get_session(self, session_id: str) -> SessionRecord:
        """
        Load a session.

        Raises:
            SessionNotFoundError: Unknown session id.
        """
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM sessions WHERE session_id = ?",
            (session_id,)
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            raise SessionNotFoundError(session_id)
        return self._row_to_record(row)

    async def get_latest_session(
        self,
        user_id: str,
        status: Optional[SessionStatus] = None,
    ) -> Optional[SessionRecord]:
        """
        Most recent session of a user, optionally filtered by status.

        Returns:
            SessionRecord or None if the user has no matching session.
        """
        db = self._require_db()
        query = "SELECT * FROM sessions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(SessionStatus(status).value)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT 1"

        async with db.execute(query, params) as cursor:
            row = await cursor.fetchone()

        return self._row_to_record(row) if row else None

    async def get_active_session(self, user_id: str) -> Optional[SessionRecord]:
        """The user's ``running`` session, if any."""
        return await self.get_latest_session(user_id, SessionStatus.RUNNING)

    async def purge_expired(
        self,
        retention_days: int = 30,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete finished sessions older than the retention window.

        Running sessions are never purged.

        Args:
            retention_days: Age in days after which a session expires.
            now: Reference time (defaults to current UTC time).

        Returns:
            Number of deleted sessions.
        """
        db = self._require_db()
        cutoff = (now or _utcnow()) - timedelta(days=retention_days)

        cursor = await db.execute(
            "DELETE FROM sessions WHERE created_at < ? AND status != ?",
            (cutoff.isoformat(), SessionStatus.RUNNING.value)
        )
        await db.commit()

        deleted = cursor.rowcount
        if deleted:
            logger.info(
                "Expired sessions purged",
                extra={"deleted": deleted, "retention_days": retention_days}
            )
        return deleted

    def _row_to_record(self, row: aiosqlite.Row) -> SessionRecord:
        return SessionRecord(
            session_id=row["session_id"],
            user_id=row["user_id"],
            outcome_id=row["outcome_id"],
            status=SessionStatus(row["status"]),
            result=json.loads(row["result"]) if row["result"] else None,
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self.db:
            await self.db.close()
            self.db = None
