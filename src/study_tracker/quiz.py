"""Quiz lifecycle: from a finished study session to an archived score.

A stopped session is handed to :class:`QuizLifecycleManager`, which asks the
AI gateway for questions in the background, tracks answers in a
:class:`QuizRun`, persists a progress snapshot after every answer and
navigation step, and archives the scored session in the history ledger.

Scoring follows a first-answer-counts rule: a question's first recorded
answer is final, so repeating or changing it never alters the score.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from .errors import (
    InvalidTransitionError,
    PersistenceError,
    ValidationError,
)
from .gateway import AIGateway
from .history import HistoryLedger
from .models import (
    Difficulty,
    QuizProgress,
    QuizQuestion,
    QuizResult,
    QuizSnapshot,
    StudySession,
    coerce_difficulty,
)
from .store import TrackerStore

__all__ = [
    "QuizState",
    "QuizRun",
    "QuizLifecycleManager",
    "score_feedback",
    "generation_message",
]

Listener = Callable[[str], None]


class QuizState(str, Enum):
    NONE = "none"
    GENERATING = "generating"
    READY = "ready"
    ANSWERING = "answering"
    FINISHED = "finished"


def generation_message(difficulty: Difficulty) -> str:
    if difficulty is Difficulty.HARD:
        return "Raising the challenge! Preparing a harder quiz..."
    return "Preparing your personalized quiz..."


def score_feedback(score: int, total_questions: int) -> str:
    """Return the encouragement shown on the quiz results screen."""

    if total_questions == 0:
        return "The quiz is complete. Keep going on your learning journey!"
    percentage = score / total_questions * 100
    if percentage == 100:
        return (
            "Amazing! You have completely mastered this topic. Keep up the "
            "excellent work!"
        )
    if percentage >= 70:
        return (
            "Excellent result! You know this subject well. Keep studying to "
            "sharpen it even more!"
        )
    if percentage >= 50:
        return (
            "Good job! You are on the right track. Review the questions you "
            "missed to strengthen your knowledge."
        )
    return (
        "Don't give up! Every mistake is a chance to learn. Review the "
        "material and try again. You can do it!"
    )


@dataclass
class QuizRun:
    """Mutable answering state for one generated quiz."""

    questions: tuple[QuizQuestion, ...]
    index: int = 0
    answers: list[Optional[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.answers:
            self.answers = [None] * len(self.questions)
        if len(self.answers) != len(self.questions):
            raise ValidationError("answers length does not match questions")
        if self.questions and not 0 <= self.index < len(self.questions):
            raise ValidationError("question index out of range")

    @classmethod
    def from_progress(
        cls, questions: Sequence[QuizQuestion], progress: QuizProgress
    ) -> "QuizRun":
        return cls(
            questions=tuple(questions),
            index=progress.current_question_index,
            answers=list(progress.answers),
        )

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current(self) -> QuizQuestion:
        return self.questions[self.index]

    @property
    def score(self) -> int:
        return sum(
            1
            for question, answer in zip(self.questions, self.answers)
            if question.is_correct(answer)
        )

    @property
    def is_last(self) -> bool:
        return self.index >= self.total_questions - 1

    def answered_count(self) -> int:
        return sum(1 for answer in self.answers if answer is not None)

    def answer_for(self, question_index: int) -> Optional[str]:
        return self.answers[question_index]

    def record(self, question_index: int, option: str) -> bool:
        """Store ``option`` unless the question already has an answer."""

        if not 0 <= question_index < self.total_questions:
            raise ValidationError(
                f"Question {question_index + 1} does not exist."
            )
        question = self.questions[question_index]
        if option not in question.options:
            raise ValidationError(f"'{option}' is not an option for this question.")
        if self.answers[question_index] is not None:
            return False
        self.answers[question_index] = option
        return True

    def next(self) -> bool:
        if self.is_last:
            return False
        self.index += 1
        return True

    def previous(self) -> bool:
        if self.index == 0:
            return False
        self.index -= 1
        return True

    def progress(self) -> QuizProgress:
        return QuizProgress(self.index, tuple(self.answers))


class QuizLifecycleManager:
    """Own the pending session from quiz generation until it is archived."""

    def __init__(
        self,
        user_id: str,
        *,
        store: TrackerStore,
        ledger: HistoryLedger,
        gateway: AIGateway,
        logger: Optional[logging.Logger] = None,
        listener: Optional[Listener] = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._ledger = ledger
        self._gateway = gateway
        self._logger = logger or logging.getLogger(__name__)
        self._listener = listener
        self._state = QuizState.NONE
        self._pending: Optional[StudySession] = None
        self._difficulty = Difficulty.NORMAL
        self._run: Optional[QuizRun] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._generation = 0
        self.last_error: Optional[str] = None

    @property
    def state(self) -> QuizState:
        return self._state

    @property
    def pending_session(self) -> Optional[StudySession]:
        return self._pending

    @property
    def difficulty(self) -> Difficulty:
        return self._difficulty

    @property
    def run(self) -> Optional[QuizRun]:
        return self._run

    @property
    def questions(self) -> tuple[QuizQuestion, ...]:
        return self._run.questions if self._run else ()

    @property
    def score(self) -> int:
        return self._run.score if self._run else 0

    @property
    def status_message(self) -> Optional[str]:
        if self._state is QuizState.GENERATING:
            return generation_message(self._difficulty)
        return None

    def begin(
        self, session: StudySession, difficulty: Difficulty | str
    ) -> asyncio.Task[None]:
        """Take ownership of ``session`` and start generating its quiz.

        Must be called from a running event loop.
        """

        if session.end_time is None:
            raise InvalidTransitionError("Only a stopped session can be quizzed.")
        if self._pending is not None:
            raise InvalidTransitionError(
                "Another session is still waiting for its quiz."
            )
        level = coerce_difficulty(difficulty)
        self._clear_snapshot()
        self._pending = session
        self._difficulty = level
        self._run = None
        self.last_error = None
        self._state = QuizState.GENERATING
        self._generation += 1
        self._logger.info(
            "Quiz generation started",
            extra={
                "event": "quiz.generating",
                "user_id": self._user_id,
                "session_id": session.id,
                "topic": session.topic,
                "difficulty": level.value,
            },
        )
        self._task = asyncio.get_running_loop().create_task(
            self._generate(self._generation, session, level)
        )
        return self._task

    async def wait_until_settled(self) -> QuizState:
        """Wait for an outstanding generation request, if any."""

        task = self._task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._state

    def resume(self, snapshot: QuizSnapshot) -> None:
        """Restore a quiz interrupted in a previous run."""

        if self._pending is not None:
            raise InvalidTransitionError("A quiz is already in progress.")
        if not snapshot.questions:
            raise ValidationError("The saved quiz has no questions.")
        run = QuizRun.from_progress(snapshot.questions, snapshot.progress)
        self._pending = snapshot.session
        self._run = run
        self._state = (
            QuizState.ANSWERING
            if self._run.answered_count()
            else QuizState.READY
        )
        self._logger.info(
            "Quiz resumed",
            extra={
                "event": "quiz.resumed",
                "user_id": self._user_id,
                "session_id": snapshot.session.id,
                "question_index": self._run.index,
            },
        )

    def record_answer(self, question_index: int, option: str) -> bool:
        """Record an answer; return ``False`` when the question was answered."""

        run = self._require_run()
        if self._state is QuizState.FINISHED:
            raise InvalidTransitionError("The quiz is already finished.")
        accepted = run.record(question_index, option)
        if accepted:
            self._state = QuizState.ANSWERING
            self._save_snapshot()
        return accepted

    def advance(self) -> QuizState:
        """Move to the next question, or finish after the last one."""

        run = self._require_run()
        if self._state is QuizState.FINISHED:
            return self._state
        if run.next():
            self._save_snapshot()
        else:
            self._state = QuizState.FINISHED
        return self._state

    def go_back(self) -> bool:
        run = self._require_run()
        if self._state is QuizState.FINISHED:
            self._state = QuizState.ANSWERING
            return True
        moved = run.previous()
        if moved:
            self._save_snapshot()
        return moved

    def finish(self, score: Optional[int] = None) -> StudySession:
        """Attach the quiz result and move the session into the ledger."""

        run = self._require_run()
        final_score = run.score if score is None else score
        if not 0 <= final_score <= run.total_questions:
            raise ValidationError("Score is outside the number of questions.")
        return self._archive(QuizResult(final_score, run.total_questions))

    def close(self) -> None:
        """Release in-memory state, e.g. on logout.

        A session still waiting for its quiz is archived without one; a quiz
        being answered keeps its stored snapshot so the next login resumes it.
        """

        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._state is QuizState.GENERATING and self._pending is not None:
            self._archive(QuizResult(0, 0))
            return
        self._pending = None
        self._run = None
        self._state = QuizState.NONE

    async def _generate(
        self, generation: int, session: StudySession, difficulty: Difficulty
    ) -> None:
        try:
            questions = await asyncio.to_thread(
                self._gateway.generate_quiz,
                session.topic,
                session.resources,
                difficulty,
            )
        except Exception as exc:
            if generation != self._generation:
                return
            self._logger.warning(
                "Quiz generation failed; archiving session without a quiz",
                extra={
                    "event": "quiz.generation_failed",
                    "user_id": self._user_id,
                    "session_id": session.id,
                },
                exc_info=exc,
            )
            self._archive(QuizResult(0, 0))
            self.last_error = (
                "The quiz could not be generated. Your session was saved."
            )
            self._notify("quiz_failed")
            return

        if generation != self._generation:
            self._logger.debug(
                "Discarding stale quiz",
                extra={"event": "quiz.stale", "session_id": session.id},
            )
            return
        self._install(session, questions)
        self._notify("quiz_ready")

    def _install(
        self, session: StudySession, questions: Sequence[QuizQuestion]
    ) -> None:
        self._run = QuizRun(tuple(questions))
        self._state = QuizState.READY
        self._save_snapshot()
        self._logger.info(
            "Quiz ready",
            extra={
                "event": "quiz.ready",
                "user_id": self._user_id,
                "session_id": session.id,
                "count": len(questions),
            },
        )

    def _archive(self, result: QuizResult) -> StudySession:
        if self._pending is None:
            raise InvalidTransitionError("There is no session awaiting a quiz.")
        archived = self._pending.with_quiz_result(result)
        self._ledger.append(archived)
        self._clear_snapshot()
        self._pending = None
        self._run = None
        self._task = None
        self._state = QuizState.NONE
        self._logger.info(
            "Session archived",
            extra={
                "event": "quiz.archived",
                "user_id": self._user_id,
                "session_id": archived.id,
                "score": result.score,
                "total_questions": result.total_questions,
            },
        )
        return archived

    def _require_run(self) -> QuizRun:
        if self._run is None or self._pending is None:
            raise InvalidTransitionError("No quiz is ready.")
        return self._run

    def _save_snapshot(self) -> None:
        if self._run is None or self._pending is None:
            return
        snapshot = QuizSnapshot(
            session=self._pending,
            questions=self._run.questions,
            progress=self._run.progress(),
        )
        try:
            self._store.save_quiz_snapshot(self._user_id, snapshot)
        except PersistenceError:
            self._logger.exception(
                "Failed to save quiz progress",
                extra={"event": "quiz.save_failed", "user_id": self._user_id},
            )

    def _clear_snapshot(self) -> None:
        try:
            self._store.clear_quiz_snapshot(self._user_id)
        except PersistenceError:
            self._logger.exception(
                "Failed to clear quiz progress",
                extra={"event": "quiz.clear_failed", "user_id": self._user_id},
            )

    def _notify(self, event: str) -> None:
        if self._listener is not None:
            self._listener(event)
