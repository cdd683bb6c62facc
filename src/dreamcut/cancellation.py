from __future__ import annotations

import asyncio
import threading
import uuid
from typing import Dict, Optional

from .errors import FanoutCancelled


class CancellationToken:
    """Cooperative cancellation signal usable from threads and asyncio tasks.

    State is mirrored between a `threading.Event` and a lazily created
    `asyncio.Event` bound to the loop that first awaits the token.
    """

    def __init__(self, token_id: Optional[str] = None) -> None:
        self.token_id = token_id or uuid.uuid4().hex[:12]
        self.reason: Optional[str] = None
        self._sync_event = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._async_event: Optional[asyncio.Event] = None
        self._lock = threading.RLock()

    @property
    def cancelled(self) -> bool:
        return self._sync_event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._sync_event.is_set():
                return
            self.reason = reason
            self._sync_event.set()
        self._notify_async()

    def raise_if_cancelled(self) -> None:
        if self._sync_event.is_set():
            raise FanoutCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        event = self._ensure_async_event()
        await event.wait()

    def _ensure_async_event(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._async_event is None or self._loop is not loop:
                self._async_event = asyncio.Event()
                self._loop = loop
                if self._sync_event.is_set():
                    self._async_event.set()
            return self._async_event

    def _notify_async(self) -> None:
        with self._lock:
            event = self._async_event
            loop = self._loop
        if not event or not loop or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)


class AnalysisSession:
    """Tracks the single in-flight analysis for one chat/request session.

    `begin()` cancels whatever token was previously current, so a newer
    request always supersedes an older one.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._current: Optional[CancellationToken] = None
        self._lock = threading.RLock()

    @property
    def current(self) -> Optional[CancellationToken]:
        with self._lock:
            return self._current

    def begin(self) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            previous = self._current
            self._current = token
        if previous is not None:
            previous.cancel(f"superseded by {token.token_id}")
        return token

    def is_current(self, token: CancellationToken) -> bool:
        with self._lock:
            return self._current is token

    def finish(self, token: CancellationToken) -> None:
        with self._lock:
            if self._current is token:
                self._current = None

    def cancel(self, reason: str = "cancelled by caller") -> bool:
        with self._lock:
            token = self._current
            self._current = None
        if token is None:
            return False
        token.cancel(reason)
        return True


class SessionRegistry:
    """Owns the AnalysisSession objects of one pipeline instance.

    A session is only held while it has an analysis in flight; finishing or
    cancelling the current token drops it.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, AnalysisSession] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, session_id: str) -> Optional[AnalysisSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def begin(self, session_id: str) -> CancellationToken:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = AnalysisSession(session_id)
                self._sessions[session_id] = session
            return session.begin()

    def finish(self, session_id: str, token: CancellationToken) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.finish(token)
            if session.current is None:
                del self._sessions[session_id]

    def cancel(self, session_id: str, reason: str = "cancelled by caller") -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        return session.cancel(reason) if session else False


__all__ = ["CancellationToken", "AnalysisSession", "SessionRegistry"]
