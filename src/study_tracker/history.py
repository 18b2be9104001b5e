"""Per-user archive of completed study sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from .errors import PersistenceError, ValidationError
from .models import StudySession, utcnow
from .store import TrackerStore

__all__ = [
    "HistoryLedger",
    "TopicMinutes",
    "DailyQuizScores",
    "RECENCY_WINDOWS",
    "resolve_window",
    "normalize_topic",
]

# Named dashboard windows; ``None`` keeps every session.
RECENCY_WINDOWS: dict[str, Optional[int]] = {
    "7days": 7,
    "30days": 30,
    "all": None,
}


def normalize_topic(topic: str) -> str:
    return topic.strip().casefold()


def resolve_window(name: str) -> Optional[int]:
    try:
        return RECENCY_WINDOWS[name]
    except KeyError as exc:
        choices = ", ".join(RECENCY_WINDOWS)
        raise ValidationError(
            f"Unknown time window '{name}'. Choose one of: {choices}."
        ) from exc


@dataclass(frozen=True)
class TopicMinutes:
    topic: str
    minutes: int


@dataclass(frozen=True)
class DailyQuizScores:
    day: date
    scores: dict[str, int]


class HistoryLedger:
    """Ordered, append-only record of archived sessions for one user.

    Every mutation writes the full sequence back to the store. A failed write
    is logged and the in-memory ledger stays authoritative for the rest of
    the run.
    """

    def __init__(
        self,
        user_id: str,
        store: TrackerStore,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._logger = logger or logging.getLogger(__name__)
        self._sessions: list[StudySession] = store.load_history(user_id)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def sessions(self) -> tuple[StudySession, ...]:
        return tuple(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self):
        return iter(tuple(self._sessions))

    def __contains__(self, session_id: object) -> bool:
        return any(s.id == session_id for s in self._sessions)

    def append(self, session: StudySession) -> None:
        self._sessions.append(session)
        self._persist("append", session_id=session.id)

    def delete(self, session_id: str) -> bool:
        """Remove the session with ``session_id``; return whether it existed."""

        remaining = [s for s in self._sessions if s.id != session_id]
        if len(remaining) == len(self._sessions):
            return False
        self._sessions = remaining
        self._persist("delete", session_id=session_id)
        return True

    def delete_all(self) -> None:
        self._sessions = []
        self._persist("delete_all")

    def has_topic(self, topic: str) -> bool:
        target = topic.casefold()
        return any(s.topic.casefold() == target for s in self._sessions)

    def filter_by_topic(self, substring: str) -> list[StudySession]:
        needle = substring.casefold()
        return [s for s in self._sessions if needle in s.topic.casefold()]

    def filter_by_recency(
        self,
        window_days: Optional[int],
        *,
        now: Optional[datetime] = None,
    ) -> list[StudySession]:
        if window_days is None:
            return list(self._sessions)
        reference = now or utcnow()
        window = timedelta(days=window_days)
        return [s for s in self._sessions if reference - s.start_time <= window]

    def topics(self) -> list[str]:
        """Distinct topics in first-seen order, for "continue studying"."""

        seen: dict[str, str] = {}
        for session in self._sessions:
            seen.setdefault(normalize_topic(session.topic), session.topic.strip())
        return list(seen.values())

    def topic_minutes(
        self, sessions: Optional[Iterable[StudySession]] = None
    ) -> list[TopicMinutes]:
        """Total minutes per normalized topic, largest first."""

        totals: dict[str, int] = {}
        names: dict[str, str] = {}
        for session in self._select(sessions):
            key = normalize_topic(session.topic)
            totals[key] = totals.get(key, 0) + session.duration_minutes
            names.setdefault(key, session.topic.strip())
        rows = [TopicMinutes(names[key], minutes) for key, minutes in totals.items()]
        return sorted(rows, key=lambda row: row.minutes, reverse=True)

    def quiz_scores_by_date(
        self, sessions: Optional[Iterable[StudySession]] = None
    ) -> list[DailyQuizScores]:
        """Quiz scores per topic grouped by the session's start date."""

        scored = sorted(
            (
                s
                for s in self._select(sessions)
                if s.quiz_result is not None and s.quiz_result.total_questions > 0
            ),
            key=lambda s: s.start_time,
        )
        by_day: dict[date, dict[str, int]] = {}
        for session in scored:
            day = session.start_time.astimezone().date()
            by_day.setdefault(day, {})[session.topic] = session.quiz_result.score
        return [DailyQuizScores(day, scores) for day, scores in by_day.items()]

    def _select(
        self, sessions: Optional[Iterable[StudySession]]
    ) -> Sequence[StudySession]:
        return self._sessions if sessions is None else list(sessions)

    def _persist(self, action: str, **extra: str) -> None:
        try:
            self._store.save_history(self._user_id, self._sessions)
        except PersistenceError:
            self._logger.exception(
                "Failed to save study history",
                extra={
                    "event": f"history.{action}",
                    "user_id": self._user_id,
                    **extra,
                },
            )
            return
        self._logger.info(
            "History updated",
            extra={
                "event": f"history.{action}",
                "user_id": self._user_id,
                "count": len(self._sessions),
                **extra,
            },
        )
