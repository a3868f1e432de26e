"""Per-user session stores and the subscription that feeds statistics."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .backend.firebase import AuthSession, FirestoreSessionDocument
from .models import SessionData

logger = logging.getLogger(__name__)

SessionsListener = Callable[[List[SessionData]], Awaitable[None]]


class StoreError(RuntimeError):
    """Raised when a store operation could not be persisted."""


def parse_sessions(raw: List[Dict[str, Any]]) -> List[SessionData]:
    """Validate stored session dicts, skipping records that no longer parse."""

    sessions: List[SessionData] = []
    for index, item in enumerate(raw):
        try:
            sessions.append(SessionData.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed stored session #%d: %s", index, exc.errors()[:1])
    return sessions


class SessionStore:
    """Append-only list of a user's sessions with change notifications."""

    def __init__(self) -> None:
        self._listeners: List[SessionsListener] = []

    @property
    def ready(self) -> bool:
        return True

    def subscribe(self, listener: SessionsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def append(self, session: SessionData) -> None:
        raise NotImplementedError

    async def reset(self) -> None:
        raise NotImplementedError

    async def refresh(self) -> None:
        return None

    async def _emit(self, sessions: List[SessionData]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(list(sessions))
            except Exception:
                logger.exception("Session listener failed")


class InMemorySessionStore(SessionStore):
    """Local-only store used when persistence is not configured."""

    def __init__(self, sessions: Optional[List[SessionData]] = None) -> None:
        super().__init__()
        self._sessions: List[SessionData] = list(sessions or [])

    @property
    def sessions(self) -> List[SessionData]:
        return list(self._sessions)

    async def start(self) -> None:
        await self._emit(self._sessions)

    async def append(self, session: SessionData) -> None:
        self._sessions.append(session)
        await self._emit(self._sessions)

    async def reset(self) -> None:
        self._sessions = []
        await self._emit(self._sessions)

    async def refresh(self) -> None:
        await self._emit(self._sessions)


class FirestoreSessionStore(SessionStore):
    """Session list stored in Firestore, watched by polling the user document."""

    def __init__(
        self,
        auth: AuthSession,
        document: FirestoreSessionDocument,
        *,
        poll_seconds: float = 2.0,
    ) -> None:
        super().__init__()
        self._auth = auth
        self._document = document
        self._poll_seconds = poll_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._last_seen: Optional[List[Dict[str, Any]]] = None
        # bumped by every write; reads that straddle one are dropped
        self._generation = 0
        auth.register_listener(self._on_user_changed)

    @property
    def ready(self) -> bool:
        return self._auth.ready

    async def start(self) -> None:
        if self._task:
            return
        await self._auth.start()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop(), name="firestore-session-watch")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._auth.stop()
        await self._document.aclose()
        await self._auth.aclose()

    async def append(self, session: SessionData) -> None:
        user_id = self._require_user("append")
        self._generation += 1
        if not await self._document.append_session(user_id, session.to_document()):
            raise StoreError("Session could not be saved")
        await self.refresh()

    async def reset(self) -> None:
        user_id = self._require_user("reset")
        self._generation += 1
        if not await self._document.reset_sessions(user_id):
            raise StoreError("Session data could not be reset")
        await self.refresh()

    async def refresh(self) -> None:
        """Read the document now and notify listeners when it changed."""

        user_id = self._auth.user_id
        if user_id is None:
            return
        generation = self._generation
        raw = await self._document.fetch_sessions(user_id)
        if raw is None:
            return
        if generation != self._generation:
            return
        if raw == self._last_seen:
            return
        self._last_seen = raw
        await self._emit(parse_sessions(raw))

    def _require_user(self, operation: str) -> str:
        user_id = self._auth.user_id
        if user_id is None:
            raise StoreError(f"Not signed in; {operation} kept local only")
        return user_id

    async def _on_user_changed(self, user_id: Optional[str]) -> None:
        self._last_seen = None
        if user_id is not None:
            await self.refresh()

    async def _watch_loop(self) -> None:
        logger.info("Watching session document (every %.1fs)", self._poll_seconds)
        try:
            while not self._stop_event.is_set():
                try:
                    await self.refresh()
                except Exception:
                    logger.exception("Session document refresh failed")
                await asyncio.sleep(self._poll_seconds)
        except asyncio.CancelledError:
            raise


__all__ = [
    "FirestoreSessionStore",
    "InMemorySessionStore",
    "SessionStore",
    "StoreError",
    "parse_sessions",
]
