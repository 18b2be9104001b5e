"""Active study session state machine.

The controller owns the single active session, its elapsed-time clock and
the transient list of suggested resources. Stopping a session hands a copy
of it, together with the chosen quiz difficulty, to the quiz manager.

Both background jobs (the clock timer and the suggestion lookup) are asyncio
tasks owned by the controller. Each suggestion request carries the
generation it was issued for; results that arrive after the controller has
moved on are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .errors import InvalidTransitionError, ResourceLookupError, ValidationError
from .gateway import AIGateway
from .history import HistoryLedger
from .models import Difficulty, Resource, StudySession, utcnow
from .quiz import QuizLifecycleManager

__all__ = [
    "SessionState",
    "SuggestionState",
    "StopOutcome",
    "SessionController",
    "choose_difficulty",
    "duration_minutes",
]

Listener = Callable[[str], None]


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


@dataclass(frozen=True)
class SuggestionState:
    topic: Optional[str] = None
    resources: tuple[Resource, ...] = ()
    loading: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class StopOutcome:
    session: StudySession
    difficulty: Difficulty


def duration_minutes(elapsed_seconds: int) -> int:
    """Round elapsed seconds to whole minutes, halves rounding up."""

    return int(math.floor(elapsed_seconds / 60 + 0.5))


def choose_difficulty(
    session: StudySession, ledger: HistoryLedger
) -> Difficulty:
    """Hard only for a repeated topic studied with saved resources."""

    if ledger.has_topic(session.topic) and session.resources:
        return Difficulty.HARD
    return Difficulty.NORMAL


@dataclass
class _Clock:
    elapsed_seconds: int = 0
    paused: bool = False
    timer: Optional[asyncio.Task[None]] = field(default=None, repr=False)


class SessionController:
    """Start, pause, resume and stop timed study sessions."""

    def __init__(
        self,
        *,
        gateway: AIGateway,
        ledger: HistoryLedger,
        quiz: QuizLifecycleManager,
        tick_seconds: float = 1.0,
        logger: Optional[logging.Logger] = None,
        listener: Optional[Listener] = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._gateway = gateway
        self._ledger = ledger
        self._quiz = quiz
        self._tick_seconds = tick_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._listener = listener
        self._now = now
        self._state = SessionState.IDLE
        self._active: Optional[StudySession] = None
        self._clock = _Clock()
        self._suggestions = SuggestionState()
        self._suggestion_task: Optional[asyncio.Task[None]] = None
        self._generation = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active_session(self) -> Optional[StudySession]:
        return self._active

    @property
    def elapsed_seconds(self) -> int:
        return self._clock.elapsed_seconds

    @property
    def is_paused(self) -> bool:
        return self._clock.paused

    @property
    def timer_running(self) -> bool:
        timer = self._clock.timer
        return timer is not None and not timer.done()

    @property
    def suggestions(self) -> SuggestionState:
        return self._suggestions

    def start(self, topic: str) -> StudySession:
        """Begin a new session on ``topic``.

        Must be called from a running event loop; the clock timer and the
        resource lookup are scheduled on it.
        """

        cleaned = (topic or "").strip()
        if not cleaned:
            raise ValidationError("Enter a topic to start studying.")
        if self._state is not SessionState.IDLE:
            raise InvalidTransitionError("A study session is already running.")
        if self._quiz.pending_session is not None:
            raise InvalidTransitionError(
                "Finish the pending quiz before starting a new session."
            )
        loop = asyncio.get_running_loop()

        self._generation += 1
        self._active = StudySession.begin(
            cleaned, now=self._now(), taken=self._ledger
        )
        self._state = SessionState.ACTIVE
        self._clock = _Clock()
        self._arm_timer(loop)

        self._cancel_suggestions()
        self._suggestions = SuggestionState(topic=cleaned, loading=True)
        self._suggestion_task = loop.create_task(
            self._fetch_suggestions(self._generation, cleaned)
        )
        self._logger.info(
            "Study session started",
            extra={
                "event": "session.started",
                "session_id": self._active.id,
                "topic": cleaned,
            },
        )
        return self._active

    def pause(self) -> None:
        self._require_active()
        if self._clock.paused:
            return
        self._clock.paused = True
        self._disarm_timer()
        self._logger.debug("Session paused", extra={"event": "session.paused"})

    def resume(self) -> None:
        self._require_active()
        if not self._clock.paused:
            return
        self._clock.paused = False
        self._arm_timer(asyncio.get_running_loop())
        self._logger.debug("Session resumed", extra={"event": "session.resumed"})

    def toggle_pause(self) -> bool:
        if self.is_paused:
            self.resume()
        else:
            self.pause()
        return self.is_paused

    def tick(self, seconds: int = 1) -> int:
        """Advance the clock unless idle or paused; return elapsed seconds."""

        if self._state is SessionState.ACTIVE and not self._clock.paused:
            self._clock.elapsed_seconds += max(0, int(seconds))
        return self._clock.elapsed_seconds

    def add_resource(self, resource: Resource) -> bool:
        """Save ``resource`` to the active session; ``False`` if duplicate."""

        if self._active is None:
            return False
        updated = self._active.with_resource(resource)
        if updated is self._active:
            return False
        self._active = updated
        self._logger.debug(
            "Resource saved",
            extra={"event": "session.resource_added", "uri": resource.uri},
        )
        return True

    def stop(self) -> StopOutcome:
        """Finish the active session and hand it to the quiz manager."""

        active = self._require_active()
        self._state = SessionState.STOPPING
        finished = active.finished(
            duration_minutes=duration_minutes(self._clock.elapsed_seconds),
            now=self._now(),
        )
        difficulty = choose_difficulty(finished, self._ledger)

        self._reset()
        self._logger.info(
            "Study session stopped",
            extra={
                "event": "session.stopped",
                "session_id": finished.id,
                "topic": finished.topic,
                "duration_minutes": finished.duration_minutes,
                "resource_count": len(finished.resources),
                "difficulty": difficulty.value,
            },
        )
        self._quiz.begin(finished, difficulty)
        return StopOutcome(finished, difficulty)

    def close(self) -> None:
        """Tear down background tasks and discard any active session."""

        if self._active is not None:
            self._logger.info(
                "Discarding active session",
                extra={"event": "session.discarded", "session_id": self._active.id},
            )
        self._reset()

    async def wait_for_suggestions(self) -> SuggestionState:
        task = self._suggestion_task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._suggestions

    def _reset(self) -> None:
        self._generation += 1
        self._disarm_timer()
        self._cancel_suggestions()
        self._active = None
        self._clock = _Clock()
        self._suggestions = SuggestionState()
        self._state = SessionState.IDLE

    def _require_active(self) -> StudySession:
        if self._state is not SessionState.ACTIVE or self._active is None:
            raise InvalidTransitionError("No study session is running.")
        return self._active

    def _arm_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        self._disarm_timer()
        self._clock.timer = loop.create_task(self._run_timer())

    def _disarm_timer(self) -> None:
        timer = self._clock.timer
        if timer is not None and not timer.done():
            timer.cancel()
        self._clock.timer = None

    async def _run_timer(self) -> None:
        # tick_seconds is only the polling interval; whole elapsed seconds
        # are measured on the loop clock and the remainder carried over.
        loop = asyncio.get_running_loop()
        last = loop.time()
        carry = 0.0
        while True:
            await asyncio.sleep(self._tick_seconds)
            now = loop.time()
            carry += now - last
            last = now
            whole = int(carry)
            if whole:
                carry -= whole
                self.tick(whole)

    def _cancel_suggestions(self) -> None:
        task = self._suggestion_task
        if task is not None and not task.done():
            task.cancel()
        self._suggestion_task = None

    async def _fetch_suggestions(self, generation: int, topic: str) -> None:
        try:
            resources = await asyncio.to_thread(
                self._gateway.suggest_resources, topic
            )
        except ResourceLookupError as exc:
            self._settle_suggestions(generation, topic, error=str(exc))
            return
        except Exception as exc:
            self._logger.warning(
                "Unexpected resource lookup failure",
                extra={"event": "session.suggestions_failed", "topic": topic},
                exc_info=exc,
            )
            self._settle_suggestions(
                generation, topic, error="Could not load resource suggestions."
            )
            return
        self._settle_suggestions(generation, topic, resources=tuple(resources))

    def _settle_suggestions(
        self,
        generation: int,
        topic: str,
        *,
        resources: tuple[Resource, ...] = (),
        error: Optional[str] = None,
    ) -> None:
        if generation != self._generation:
            self._logger.debug(
                "Discarding stale suggestions",
                extra={"event": "session.suggestions_stale", "topic": topic},
            )
            return
        self._suggestions = SuggestionState(
            topic=topic, resources=resources, loading=False, error=error
        )
        if self._listener is not None:
            self._listener("suggestions_ready")
