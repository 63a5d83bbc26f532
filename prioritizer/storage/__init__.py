"""Session persistence."""

from prioritizer.storage.session_store import SessionRecord, SessionStatus, SessionStore

__all__ = ["SessionRecord", "SessionStatus", "SessionStore"]
