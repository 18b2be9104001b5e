from __future__ import annotations

import asyncio
import threading

import pytest

from study_tracker.app import StudyApp
from study_tracker.errors import NotLoggedInError
from study_tracker.models import Difficulty, QuizResult
from study_tracker.quiz import QuizState


@pytest.fixture
def app(store, gateway, logger) -> StudyApp:
    return StudyApp(store, gateway, logger=logger)


def _login(app: StudyApp) -> str:
    user = app.register("Ana", "secret")
    app.login(user.id, "secret")
    return user.id


def _study(app: StudyApp, topic: str, *, minutes: int, save: int = 0) -> Difficulty:
    """Run one full session and quiz, answering every question correctly."""

    async def scenario() -> Difficulty:
        app.start(topic)
        suggestions = await app.controller.wait_for_suggestions()
        for resource in suggestions.resources[:save]:
            app.add_resource(resource)
        app.controller.tick(minutes * 60)
        outcome = app.stop()
        await app.quiz.wait_until_settled()
        return outcome.difficulty

    difficulty = asyncio.run(scenario())
    for idx, question in enumerate(app.quiz.questions):
        app.record_answer(idx, question.correct_answer)
        app.advance()
    app.finish()
    return difficulty


def test_operations_require_login(app: StudyApp) -> None:
    with pytest.raises(NotLoggedInError):
        app.start("Graphs")
    with pytest.raises(NotLoggedInError):
        app.delete_all_history()
    with pytest.raises(NotLoggedInError):
        app.history


def test_linear_algebra_session_archived(app: StudyApp) -> None:
    _login(app)

    _study(app, "Linear Algebra", minutes=25, save=2)

    sessions = app.history.sessions
    assert len(sessions) == 1
    assert sessions[0].topic == "Linear Algebra"
    assert sessions[0].duration_minutes == 25
    assert len(sessions[0].resources) == 2
    assert sessions[0].quiz_result == QuizResult(10, 10)


def test_recursion_third_session_is_hard(app: StudyApp) -> None:
    _login(app)

    first = _study(app, "Recursion", minutes=10)
    second = _study(app, "recursion", minutes=10)
    third = _study(app, "Recursion", minutes=10, save=1)

    assert (first, second, third) == (
        Difficulty.NORMAL,
        Difficulty.NORMAL,
        Difficulty.HARD,
    )
    assert len(app.history) == 3
    assert [row.minutes for row in app.history.topic_minutes()] == [30]


def test_login_resumes_saved_quiz(app: StudyApp, store) -> None:
    user_id = _login(app)

    async def scenario() -> None:
        app.start("Graphs")
        app.stop()
        await app.quiz.wait_until_settled()

    asyncio.run(scenario())
    for idx in range(2):
        app.record_answer(idx, app.quiz.questions[idx].correct_answer)
        app.advance()
    app.logout()
    assert app.user is None

    app.login(user_id, "secret")

    assert app.quiz.state is QuizState.ANSWERING
    assert app.quiz.run.index == 2
    assert app.quiz.score == 2
    assert len(app.history) == 0


def test_logout_while_generating_archives_session(app: StudyApp, gateway) -> None:
    user_id = _login(app)
    gateway.quiz_gate = threading.Event()

    async def scenario() -> None:
        app.start("Graphs")
        app.stop()
        await asyncio.sleep(0)
        app.logout()
        gateway.quiz_gate.set()

    asyncio.run(scenario())
    app.login(user_id, "secret")

    assert [s.quiz_result for s in app.history] == [QuizResult(0, 0)]
    assert app.quiz.pending_session is None


def test_unusable_snapshot_is_discarded_on_login(app: StudyApp, store) -> None:
    user_id = _login(app)

    async def scenario() -> None:
        app.start("Graphs")
        app.stop()
        await app.quiz.wait_until_settled()

    asyncio.run(scenario())
    snapshot = store.load_quiz_snapshot(user_id)
    payload = snapshot.to_dict()
    payload["progress"]["currentQuestionIndex"] = 99
    store.blobs.put(f"quizProgress_{user_id}", payload)
    app.logout()

    app.login(user_id, "secret")

    assert app.quiz.pending_session is None
    assert store.load_quiz_snapshot(user_id) is None


def test_delete_operations(app: StudyApp) -> None:
    _login(app)
    _study(app, "Graphs", minutes=5)
    _study(app, "Trees", minutes=5)
    first_id = app.history.sessions[0].id

    assert app.delete_session("missing") is False
    assert app.delete_session(first_id) is True
    assert [s.topic for s in app.history] == ["Trees"]

    app.delete_all_history()
    assert len(app.history) == 0
