from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from bindery.services.collection_sessions import (
    CollectionSessionStore,
    SessionBusyError,
    SessionState,
)
from bindery.services.session_sweeper import SessionSweeper
from bindery.telemetry import TelemetryClient
from tests.fakes import RecordingTelemetrySink


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def _collecting_store(clock: _Clock | None = None, **kwargs: int) -> CollectionSessionStore:
    store = CollectionSessionStore(clock=clock or _Clock(), **kwargs)
    store.start("chat-1")
    store.set_title("chat-1", "Weekend Reading")
    return store


def test_start_then_title_then_links() -> None:
    store = CollectionSessionStore(clock=_Clock())

    outcome = store.start("chat-1")
    assert outcome.created is True
    assert outcome.session.state is SessionState.AWAITING_TITLE
    assert store.add_url("chat-1", "https://a.example.com") is None

    titled = store.set_title("chat-1", "Weekend Reading")
    assert titled is not None
    assert titled.state is SessionState.COLLECTING_LINKS
    assert titled.title == "Weekend Reading"
    assert store.set_title("chat-1", "Another") is None

    added = store.add_url("chat-1", "https://a.example.com")
    assert added is not None
    assert (added.accepted, added.count) == (True, 1)
    snapshot = store.get("chat-1")
    assert snapshot is not None
    assert snapshot.urls == ("https://a.example.com",)


def test_start_does_not_replace_existing_session() -> None:
    store = _collecting_store()
    store.add_url("chat-1", "https://a.example.com")

    outcome = store.start("chat-1")

    assert outcome.created is False
    assert outcome.session.title == "Weekend Reading"
    assert outcome.session.urls == ("https://a.example.com",)


def test_url_cap_rejects_extra_links() -> None:
    store = _collecting_store()

    outcomes = [store.add_url("chat-1", f"https://a.example.com/{index}") for index in range(21)]

    assert all(outcome is not None and outcome.accepted for outcome in outcomes[:20])
    last = outcomes[20]
    assert last is not None
    assert last.accepted is False
    assert last.busy is False
    assert last.count == 20
    snapshot = store.get("chat-1")
    assert snapshot is not None
    assert len(snapshot.urls) == 20


def test_sessions_expire_after_ttl() -> None:
    clock = _Clock()
    store = _collecting_store(clock, ttl_seconds=3600)

    clock.advance(3600)
    assert store.get("chat-1") is not None

    clock.advance(1)
    assert store.get("chat-1") is None
    assert store.add_url("chat-1", "https://a.example.com") is None
    assert store.start("chat-1").created is True


def test_sweep_removes_only_expired_idle_sessions() -> None:
    clock = _Clock()
    store = CollectionSessionStore(clock=clock, ttl_seconds=60)
    store.start("old")
    store.seed("flushing", title="Pack", urls=["https://a.example.com"])
    assert store.begin_flush("flushing") is not None
    clock.advance(120)
    store.start("fresh")

    removed = store.sweep()

    assert removed == 1
    assert store.get("old") is None
    assert store.get("fresh") is not None
    flushing = store.get("flushing")
    assert flushing is not None
    assert flushing.flushing is True


def test_flush_lifecycle() -> None:
    store = _collecting_store()
    assert store.begin_flush("missing") is None

    empty = store.begin_flush("chat-1")
    assert empty is not None
    assert empty.urls == ()
    assert empty.flushing is False

    store.add_url("chat-1", "https://a.example.com")
    snapshot = store.begin_flush("chat-1")
    assert snapshot is not None
    assert snapshot.flushing is True
    with pytest.raises(SessionBusyError):
        store.begin_flush("chat-1")
    busy = store.add_url("chat-1", "https://b.example.com")
    assert busy is not None
    assert (busy.accepted, busy.busy) == (False, True)
    with pytest.raises(SessionBusyError):
        store.cancel("chat-1")
    with pytest.raises(SessionBusyError):
        store.seed("chat-1", title="Other", urls=[])

    store.finish_flush("chat-1", succeeded=False)
    retained = store.get("chat-1")
    assert retained is not None
    assert retained.flushing is False
    assert retained.urls == ("https://a.example.com",)

    store.begin_flush("chat-1")
    store.finish_flush("chat-1", succeeded=True)
    assert store.get("chat-1") is None
    assert len(store) == 0


def test_cancel_and_seed() -> None:
    store = _collecting_store()
    assert store.cancel("chat-1") is True
    assert store.cancel("chat-1") is False

    urls = [f"https://a.example.com/{index}" for index in range(25)]
    seeded = store.seed("chat-1", title="Old Pack", urls=urls)

    assert seeded.state is SessionState.COLLECTING_LINKS
    assert seeded.title == "Old Pack"
    assert len(seeded.urls) == store.max_urls


def test_concurrent_start_creates_one_session() -> None:
    store = CollectionSessionStore(clock=_Clock())
    barrier = threading.Barrier(8)
    created: list[bool] = []
    created_lock = threading.Lock()

    def _start() -> None:
        barrier.wait()
        outcome = store.start("chat-1")
        with created_lock:
            created.append(outcome.created)

    threads = [threading.Thread(target=_start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert created.count(True) == 1
    assert len(store) == 1


def test_sweeper_run_once_reports_removed_sessions() -> None:
    clock = _Clock()
    store = CollectionSessionStore(clock=clock, ttl_seconds=60)
    store.start("chat-1")
    store.start("chat-2")
    clock.advance(61)
    store.start("chat-3")
    sink = RecordingTelemetrySink()
    sweeper = SessionSweeper(store, 600, telemetry=TelemetryClient(enabled=True, sink=sink))

    assert sweeper.run_once() == 2

    [(event_name, attributes)] = sink.events
    assert event_name == "session.sweep"
    assert attributes["removed"] == 2
    assert attributes["remaining"] == 1


def test_sweeper_start_and_stop() -> None:
    sweeper = SessionSweeper(CollectionSessionStore(), 600)

    sweeper.start()
    assert sweeper.running is True
    sweeper.stop()
    assert sweeper.running is False
