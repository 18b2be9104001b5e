from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from study_tracker.errors import PersistenceError
from study_tracker.models import (
    QuizProgress,
    QuizQuestion,
    QuizResult,
    QuizSnapshot,
    Resource,
    StudySession,
    User,
)
from study_tracker.store import (
    JsonFileStore,
    MemoryStore,
    TrackerStore,
    history_key,
    quiz_progress_key,
)


def _archived(topic: str = "Recursion") -> StudySession:
    start = datetime(2024, 2, 2, 8, 0, tzinfo=timezone.utc)
    return StudySession(
        id="session-42",
        topic=topic,
        start_time=start,
        end_time=start,
        duration_minutes=12,
        resources=(Resource("Call stack", "https://example.com/stack"),),
        quiz_result=QuizResult(4, 10),
    )


def test_users_round_trip(store: TrackerStore) -> None:
    users = [User("user-1", "ana", "pw"), User("user-2", "ben", "pw2")]

    store.save_users(users)

    assert store.load_users() == users


def test_history_round_trip_on_disk(tmp_path, logger) -> None:
    tracker_store = TrackerStore(JsonFileStore(tmp_path / "store"), logger=logger)
    session = _archived()

    tracker_store.save_history("user-1", [session])

    path = tmp_path / "store" / "history_user-1.json"
    assert path.is_file()
    assert json.loads(path.read_text(encoding="utf-8"))[0]["topic"] == "Recursion"
    reloaded = TrackerStore(JsonFileStore(tmp_path / "store"), logger=logger)
    assert reloaded.load_history("user-1") == [session]


def test_malformed_history_is_reset(
    store: TrackerStore, blobs: MemoryStore
) -> None:
    blobs.put_raw(history_key("user-1"), "{not json")

    assert store.load_history("user-1") == []
    assert history_key("user-1") not in blobs.keys()


def test_history_with_bad_entry_is_reset(
    store: TrackerStore, blobs: MemoryStore
) -> None:
    blobs.put(history_key("user-1"), [{"id": "s", "topic": "t"}])

    assert store.load_history("user-1") == []
    assert history_key("user-1") not in blobs.keys()


def test_malformed_users_document_returns_empty(
    store: TrackerStore, blobs: MemoryStore
) -> None:
    blobs.put("users", {"oops": True})

    assert store.load_users() == []


def test_quiz_snapshot_save_load_clear(store: TrackerStore) -> None:
    question = QuizQuestion("Q?", ("a", "b", "c", "d"), "a")
    snapshot = QuizSnapshot(
        session=_archived(),
        questions=(question,),
        progress=QuizProgress(0, ("b",)),
    )

    store.save_quiz_snapshot("user-1", snapshot)
    assert store.load_quiz_snapshot("user-1") == snapshot

    store.clear_quiz_snapshot("user-1")
    assert store.load_quiz_snapshot("user-1") is None


def test_malformed_snapshot_is_reset(
    store: TrackerStore, blobs: MemoryStore
) -> None:
    blobs.put(quiz_progress_key("user-1"), ["not", "an", "object"])

    assert store.load_quiz_snapshot("user-1") is None
    assert quiz_progress_key("user-1") not in blobs.keys()


def test_file_store_rejects_unsafe_keys(tmp_path) -> None:
    blobs = JsonFileStore(tmp_path)

    with pytest.raises(PersistenceError):
        blobs.put("../escape", [])


def test_store_rejects_unserializable_values(tmp_path) -> None:
    blobs = JsonFileStore(tmp_path)

    with pytest.raises(PersistenceError):
        blobs.put("users", {"when": object()})
    assert not (tmp_path / "users.json").exists()


def test_file_store_remove_missing_key_is_noop(tmp_path) -> None:
    blobs = JsonFileStore(tmp_path)

    blobs.remove("history_nobody")

    assert blobs.get("history_nobody") is None
