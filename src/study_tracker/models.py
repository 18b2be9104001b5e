"""Domain records and their JSON document shapes.

Records are frozen dataclasses; components hand them to each other by value
and derive new versions with :func:`dataclasses.replace`. Serialized documents
use the camelCase keys of the persisted layout and ISO-8601 timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Container, Mapping, MutableMapping

__all__ = [
    "Difficulty",
    "User",
    "Resource",
    "QuizResult",
    "StudySession",
    "QuizQuestion",
    "QuizProgress",
    "QuizSnapshot",
    "OPTIONS_PER_QUESTION",
    "utcnow",
    "parse_timestamp",
    "format_timestamp",
    "epoch_millis",
    "coerce_difficulty",
]

OPTIONS_PER_QUESTION = 4


class Difficulty(str, Enum):
    NORMAL = "normal"
    HARD = "hard"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Rehydrate a stored timestamp, treating naive values as UTC."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"Expected an ISO-8601 timestamp, got {value!r}.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class User:
    """A local study profile. Passwords are stored as given."""

    id: str
    name: str
    password: str

    def to_dict(self) -> MutableMapping[str, Any]:
        return {"id": self.id, "name": self.name, "password": self.password}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "User":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            password=str(payload.get("password") or ""),
        )


@dataclass(frozen=True)
class Resource:
    """A reading suggestion; ``uri`` identifies it within a session."""

    title: str
    uri: str
    description: str = ""

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "title": self.title,
            "uri": self.uri,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Resource":
        return cls(
            title=str(payload["title"]),
            uri=str(payload["uri"]),
            description=str(payload.get("description") or ""),
        )


@dataclass(frozen=True)
class QuizResult:
    score: int
    total_questions: int

    @property
    def accuracy(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return self.score / self.total_questions

    def to_dict(self) -> MutableMapping[str, Any]:
        return {"score": self.score, "totalQuestions": self.total_questions}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizResult":
        return cls(
            score=int(payload["score"]),
            total_questions=int(payload["totalQuestions"]),
        )


@dataclass(frozen=True)
class StudySession:
    """One timed study interval on a topic.

    ``end_time`` is ``None`` only for the in-memory active session.
    """

    id: str
    topic: str
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: int = 0
    resources: tuple[Resource, ...] = ()
    quiz_result: QuizResult | None = None

    @classmethod
    def begin(
        cls,
        topic: str,
        *,
        now: datetime | None = None,
        taken: Container[str] = (),
    ) -> "StudySession":
        """Open a session whose id is ``session-<epoch ms>`` not in ``taken``."""

        started = now or utcnow()
        millis = epoch_millis(started)
        while f"session-{millis}" in taken:
            millis += 1
        return cls(id=f"session-{millis}", topic=topic, start_time=started)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def has_resource(self, uri: str) -> bool:
        return any(resource.uri == uri for resource in self.resources)

    def with_resource(self, resource: Resource) -> "StudySession":
        if self.has_resource(resource.uri):
            return self
        return replace(self, resources=self.resources + (resource,))

    def finished(
        self, *, duration_minutes: int, now: datetime | None = None
    ) -> "StudySession":
        return replace(
            self,
            end_time=now or utcnow(),
            duration_minutes=duration_minutes,
        )

    def with_quiz_result(self, result: QuizResult) -> "StudySession":
        return replace(self, quiz_result=result)

    def to_dict(self) -> MutableMapping[str, Any]:
        payload: MutableMapping[str, Any] = {
            "id": self.id,
            "topic": self.topic,
            "startTime": format_timestamp(self.start_time),
            "endTime": (
                format_timestamp(self.end_time)
                if self.end_time is not None
                else None
            ),
            "durationMinutes": self.duration_minutes,
            "resources": [resource.to_dict() for resource in self.resources],
        }
        if self.quiz_result is not None:
            payload["quizResult"] = self.quiz_result.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StudySession":
        raw_end = payload.get("endTime")
        raw_result = payload.get("quizResult")
        raw_resources = payload.get("resources") or []
        if not isinstance(raw_resources, list):
            raise ValueError("Session resources must be a list.")
        return cls(
            id=str(payload["id"]),
            topic=str(payload["topic"]),
            start_time=parse_timestamp(payload["startTime"]),
            end_time=parse_timestamp(raw_end) if raw_end else None,
            duration_minutes=int(payload.get("durationMinutes") or 0),
            resources=tuple(Resource.from_dict(item) for item in raw_resources),
            quiz_result=(
                QuizResult.from_dict(raw_result)
                if isinstance(raw_result, Mapping)
                else None
            ),
        )


@dataclass(frozen=True)
class QuizQuestion:
    question: str
    options: tuple[str, ...]
    correct_answer: str

    def validate(self) -> None:
        """Raise ``ValueError`` when the question is not well formed."""

        if not self.question.strip():
            raise ValueError("question text is required")
        if len(self.options) != OPTIONS_PER_QUESTION:
            raise ValueError(
                f"expected {OPTIONS_PER_QUESTION} options, "
                f"got {len(self.options)}"
            )
        if not all(option.strip() for option in self.options):
            raise ValueError("option text must be non-empty")
        if self.correct_answer not in self.options:
            raise ValueError("correctAnswer must match one of the options")

    def is_correct(self, option: str | None) -> bool:
        return option is not None and option == self.correct_answer

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizQuestion":
        options = payload.get("options")
        if not isinstance(options, list):
            raise ValueError("options must be a list")
        return cls(
            question=str(payload["question"]).strip(),
            options=tuple(str(option).strip() for option in options),
            correct_answer=str(payload["correctAnswer"]).strip(),
        )


@dataclass(frozen=True)
class QuizProgress:
    """Position and answers of an in-flight quiz."""

    current_question_index: int = 0
    answers: tuple[str | None, ...] = ()

    @classmethod
    def fresh(cls, question_count: int) -> "QuizProgress":
        return cls(0, (None,) * question_count)

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "currentQuestionIndex": self.current_question_index,
            "answers": list(self.answers),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizProgress":
        answers = payload.get("answers")
        if not isinstance(answers, list):
            raise ValueError("answers must be a list")
        return cls(
            current_question_index=int(payload["currentQuestionIndex"]),
            answers=tuple(
                None if answer is None else str(answer) for answer in answers
            ),
        )


@dataclass(frozen=True)
class QuizSnapshot:
    """Durable record of a quiz in progress, used to resume after a crash."""

    session: StudySession
    questions: tuple[QuizQuestion, ...]
    progress: QuizProgress = field(default_factory=QuizProgress)

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "session": self.session.to_dict(),
            "questions": [question.to_dict() for question in self.questions],
            "progress": self.progress.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizSnapshot":
        raw_questions = payload.get("questions")
        if not isinstance(raw_questions, list):
            raise ValueError("questions must be a list")
        questions = tuple(QuizQuestion.from_dict(item) for item in raw_questions)
        progress = QuizProgress.from_dict(payload["progress"])
        if len(progress.answers) != len(questions):
            raise ValueError("answers length does not match question count")
        return cls(
            session=StudySession.from_dict(payload["session"]),
            questions=questions,
            progress=progress,
        )


def coerce_difficulty(value: str | Difficulty) -> Difficulty:
    return value if isinstance(value, Difficulty) else Difficulty(value)

