"""Key-value blob persistence for profiles, history and quiz progress.

Three logical collections live in the blob store:

* ``users`` – every registered :class:`~study_tracker.models.User`.
* ``history_<userId>`` – archived sessions for one user, in completion order.
* ``quizProgress_<userId>`` – the quiz snapshot for one user, when present.

Writes are last-write-wins with no locking; a single user drives a single
store at a time.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import PersistenceError
from .models import QuizSnapshot, StudySession, User

__all__ = [
    "BlobStore",
    "MemoryStore",
    "JsonFileStore",
    "TrackerStore",
    "USERS_KEY",
    "history_key",
    "quiz_progress_key",
]

USERS_KEY = "users"

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_LOAD_ERRORS = (
    PersistenceError,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
)


def history_key(user_id: str) -> str:
    return f"history_{user_id}"


def quiz_progress_key(user_id: str) -> str:
    return f"quizProgress_{user_id}"


class BlobStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dictionary-backed store; values are kept as JSON text like on disk."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Stored value for '{key}' is not JSON.") from exc

    def put(self, key: str, value: Any) -> None:
        self._data[key] = _dumps(key, value)

    def put_raw(self, key: str, text: str) -> None:
        self._data[key] = text

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore:
    """Store each key as ``<key>.json`` under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise PersistenceError(f"Invalid store key: {key!r}")
        return self._root / f"{key}.json"

    def get(self, key: str) -> Any | None:
        target = self.path_for(key)
        if not target.is_file():
            return None
        try:
            return json.loads(target.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read store file: {target}") from exc

    def put(self, key: str, value: Any) -> None:
        target = self.path_for(key)
        text = _dumps(key, value)
        try:
            _atomic_write(target, text)
        except OSError as exc:
            raise PersistenceError(f"Failed to write store file: {target}") from exc

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class TrackerStore:
    """Typed access to the three collections on top of a :class:`BlobStore`.

    Loading never raises for malformed per-user data: the offending key is
    logged, removed and an empty value returned instead.
    """

    def __init__(
        self, blobs: BlobStore, *, logger: logging.Logger | None = None
    ) -> None:
        self._blobs = blobs
        self._logger = logger or logging.getLogger(__name__)

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    def load_users(self) -> list[User]:
        try:
            raw = self._blobs.get(USERS_KEY)
            if raw is None:
                return []
            if not isinstance(raw, list):
                raise ValueError("users document must be a list")
            return [User.from_dict(item) for item in raw]
        except _LOAD_ERRORS as exc:
            self._logger.error(
                "Failed to load users",
                extra={"event": "store.load_failed", "key": USERS_KEY},
                exc_info=exc,
            )
            return []

    def save_users(self, users: list[User]) -> None:
        self._blobs.put(USERS_KEY, [user.to_dict() for user in users])

    def load_history(self, user_id: str) -> list[StudySession]:
        key = history_key(user_id)
        try:
            raw = self._blobs.get(key)
            if raw is None:
                return []
            if not isinstance(raw, list):
                raise ValueError("history document must be a list")
            return [StudySession.from_dict(item) for item in raw]
        except _LOAD_ERRORS as exc:
            self._reset(key, exc)
            return []

    def save_history(self, user_id: str, sessions: list[StudySession]) -> None:
        self._blobs.put(
            history_key(user_id), [session.to_dict() for session in sessions]
        )

    def load_quiz_snapshot(self, user_id: str) -> QuizSnapshot | None:
        key = quiz_progress_key(user_id)
        try:
            raw = self._blobs.get(key)
            if raw is None:
                return None
            if not isinstance(raw, dict):
                raise ValueError("quiz progress document must be an object")
            return QuizSnapshot.from_dict(raw)
        except _LOAD_ERRORS as exc:
            self._reset(key, exc)
            return None

    def save_quiz_snapshot(self, user_id: str, snapshot: QuizSnapshot) -> None:
        self._blobs.put(quiz_progress_key(user_id), snapshot.to_dict())

    def clear_quiz_snapshot(self, user_id: str) -> None:
        self._blobs.remove(quiz_progress_key(user_id))

    def _reset(self, key: str, exc: Exception) -> None:
        self._logger.error(
            "Discarding malformed stored data",
            extra={"event": "store.reset", "key": key},
            exc_info=exc,
        )
        try:
            self._blobs.remove(key)
        except (PersistenceError, OSError):
            self._logger.exception(
                "Failed to remove malformed stored data",
                extra={"event": "store.reset_failed", "key": key},
            )


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Value for '{key}' is not serializable.") from exc


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        encoding="utf-8",
        dir=str(path.parent),
        suffix=".tmp",
    )
    try:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
    finally:
        handle.close()
    os.replace(handle.name, path)
    try:
        path.chmod(0o600)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
