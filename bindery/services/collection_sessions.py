from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from threading import Lock

LOGGER = logging.getLogger("bindery.sessions")

DEFAULT_SESSION_TTL_SECONDS = 60 * 60
DEFAULT_SESSION_MAX_URLS = 20


class SessionState(StrEnum):
    AWAITING_TITLE = "awaiting_title"
    COLLECTING_LINKS = "collecting_links"


@dataclass
class CollectionSession:
    conversation_id: str
    state: SessionState
    created_at: datetime
    title: str = ""
    urls: list[str] = field(default_factory=list)
    flushing: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    conversation_id: str
    state: SessionState
    title: str
    urls: tuple[str, ...]
    created_at: datetime
    flushing: bool


@dataclass(frozen=True)
class StartOutcome:
    created: bool
    session: SessionSnapshot


@dataclass(frozen=True)
class AddUrlOutcome:
    accepted: bool
    count: int
    busy: bool = False


class SessionBusyError(Exception):
    pass


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CollectionSessionStore:
    """Per-conversation collection sessions.

    Every read-modify-write runs under one lock so that existence checks and
    creation are atomic per conversation. Expiry is measured from
    ``created_at``; sessions that are being flushed are never expired.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        max_urls: int = DEFAULT_SESSION_MAX_URLS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._ttl = timedelta(seconds=max(1, ttl_seconds))
        self._max_urls = max(1, max_urls)
        self._clock = clock
        self._lock = Lock()
        self._sessions: dict[str, CollectionSession] = {}

    @property
    def max_urls(self) -> int:
        return self._max_urls

    def get(self, conversation_id: str) -> SessionSnapshot | None:
        with self._lock:
            session = self._live_session(conversation_id)
            return _snapshot(session) if session is not None else None

    def start(self, conversation_id: str) -> StartOutcome:
        with self._lock:
            existing = self._live_session(conversation_id)
            if existing is not None:
                return StartOutcome(created=False, session=_snapshot(existing))
            session = CollectionSession(
                conversation_id=conversation_id,
                state=SessionState.AWAITING_TITLE,
                created_at=self._clock(),
            )
            self._sessions[conversation_id] = session
            LOGGER.info("collection session started conversation_id=%s", conversation_id)
            return StartOutcome(created=True, session=_snapshot(session))

    def seed(self, conversation_id: str, *, title: str, urls: Sequence[str]) -> SessionSnapshot:
        """Replace any idle session with a collecting one pre-filled with ``urls``."""
        with self._lock:
            existing = self._live_session(conversation_id)
            if existing is not None and existing.flushing:
                raise SessionBusyError("session is being sent")
            session = CollectionSession(
                conversation_id=conversation_id,
                state=SessionState.COLLECTING_LINKS,
                created_at=self._clock(),
                title=title,
                urls=list(urls[: self._max_urls]),
            )
            self._sessions[conversation_id] = session
            return _snapshot(session)

    def set_title(self, conversation_id: str, title: str) -> SessionSnapshot | None:
        with self._lock:
            session = self._live_session(conversation_id)
            if session is None or session.state is not SessionState.AWAITING_TITLE:
                return None
            session.title = title
            session.state = SessionState.COLLECTING_LINKS
            return _snapshot(session)

    def add_url(self, conversation_id: str, url: str) -> AddUrlOutcome | None:
        with self._lock:
            session = self._live_session(conversation_id)
            if session is None or session.state is not SessionState.COLLECTING_LINKS:
                return None
            if session.flushing:
                return AddUrlOutcome(accepted=False, count=len(session.urls), busy=True)
            if len(session.urls) >= self._max_urls:
                return AddUrlOutcome(accepted=False, count=len(session.urls))
            session.urls.append(url)
            return AddUrlOutcome(accepted=True, count=len(session.urls))

    def begin_flush(self, conversation_id: str) -> SessionSnapshot | None:
        """Mark the session as being sent and return what should be sent.

        Returns ``None`` when there is nothing to flush. Raises
        :class:`SessionBusyError` if a flush is already running.
        """
        with self._lock:
            session = self._live_session(conversation_id)
            if session is None or session.state is not SessionState.COLLECTING_LINKS:
                return None
            if session.flushing:
                raise SessionBusyError("session is already being sent")
            if not session.urls:
                return _snapshot(session)
            session.flushing = True
            return _snapshot(session)

    def finish_flush(self, conversation_id: str, *, succeeded: bool) -> None:
        with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                return
            if succeeded:
                del self._sessions[conversation_id]
                LOGGER.info("collection session flushed conversation_id=%s", conversation_id)
                return
            session.flushing = False

    def cancel(self, conversation_id: str) -> bool:
        with self._lock:
            session = self._live_session(conversation_id)
            if session is None:
                return False
            if session.flushing:
                raise SessionBusyError("session is being sent")
            del self._sessions[conversation_id]
            LOGGER.info("collection session cancelled conversation_id=%s", conversation_id)
            return True

    def sweep(self) -> int:
        """Drop idle sessions older than the TTL and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [
                conversation_id
                for conversation_id, session in self._sessions.items()
                if not session.flushing and now - session.created_at > self._ttl
            ]
            for conversation_id in expired:
                del self._sessions[conversation_id]
        if expired:
            LOGGER.info("collection sessions expired count=%s", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _live_session(self, conversation_id: str) -> CollectionSession | None:
        session = self._sessions.get(conversation_id)
        if session is None:
            return None
        if not session.flushing and self._clock() - session.created_at > self._ttl:
            del self._sessions[conversation_id]
            return None
        return session


def _snapshot(session: CollectionSession) -> SessionSnapshot:
    return SessionSnapshot(
        conversation_id=session.conversation_id,
        state=session.state,
        title=session.title,
        urls=tuple(session.urls),
        created_at=session.created_at,
        flushing=session.flushing,
    )
