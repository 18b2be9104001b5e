"""Application facade wiring accounts, sessions, quizzes and history."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .accounts import Accounts
from .config import TrackerConfig, default_config
from .core import workspace
from .errors import NotLoggedInError, ValidationError
from .gateway import AIGateway, OpenAIGateway
from .history import HistoryLedger
from .models import Resource, StudySession, User
from .quiz import QuizLifecycleManager, QuizState
from .session import SessionController, StopOutcome
from .store import JsonFileStore, TrackerStore

__all__ = ["StudyApp", "open_app"]

Listener = Callable[[str], None]


class StudyApp:
    """One logged-in user's view of the tracker.

    Per-user components (ledger, quiz manager, session controller) are built
    on :meth:`login` and torn down on :meth:`logout`.
    """

    def __init__(
        self,
        store: TrackerStore,
        gateway: AIGateway,
        *,
        config: Optional[TrackerConfig] = None,
        logger: Optional[logging.Logger] = None,
        listener: Optional[Listener] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config or default_config()
        self._logger = logger or logging.getLogger(__name__)
        self._listener = listener
        self.accounts = Accounts(store, logger=self._logger)
        self._user: Optional[User] = None
        self._ledger: Optional[HistoryLedger] = None
        self._quiz: Optional[QuizLifecycleManager] = None
        self._controller: Optional[SessionController] = None

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def history(self) -> HistoryLedger:
        self._require_user()
        assert self._ledger is not None
        return self._ledger

    @property
    def quiz(self) -> QuizLifecycleManager:
        self._require_user()
        assert self._quiz is not None
        return self._quiz

    @property
    def controller(self) -> SessionController:
        self._require_user()
        assert self._controller is not None
        return self._controller

    def register(self, name: str, password: str) -> User:
        return self.accounts.register(name, password)

    def login(self, user_id: str, password: str) -> User:
        user = self.accounts.login(user_id, password)
        if self._user is not None:
            self.logout()
        self._user = user
        self._ledger = HistoryLedger(user.id, self._store, logger=self._logger)
        self._quiz = QuizLifecycleManager(
            user.id,
            store=self._store,
            ledger=self._ledger,
            gateway=self._gateway,
            logger=self._logger,
            listener=self._listener,
        )
        self._controller = SessionController(
            gateway=self._gateway,
            ledger=self._ledger,
            quiz=self._quiz,
            tick_seconds=self._config.session.tick_seconds,
            logger=self._logger,
            listener=self._listener,
        )
        self._restore_quiz(user.id)
        return user

    def logout(self) -> None:
        if self._user is None:
            return
        assert self._controller is not None and self._quiz is not None
        self._controller.close()
        self._quiz.close()
        self._logger.info(
            "User logged out",
            extra={"event": "accounts.logout", "user_id": self._user.id},
        )
        self._user = None
        self._ledger = None
        self._quiz = None
        self._controller = None

    def start(self, topic: str) -> StudySession:
        return self.controller.start(topic)

    def pause(self) -> None:
        self.controller.pause()

    def resume(self) -> None:
        self.controller.resume()

    def toggle_pause(self) -> bool:
        return self.controller.toggle_pause()

    def add_resource(self, resource: Resource) -> bool:
        return self.controller.add_resource(resource)

    def stop(self) -> StopOutcome:
        return self.controller.stop()

    def record_answer(self, question_index: int, option: str) -> bool:
        return self.quiz.record_answer(question_index, option)

    def advance(self) -> QuizState:
        return self.quiz.advance()

    def go_back(self) -> bool:
        return self.quiz.go_back()

    def finish(self, score: Optional[int] = None) -> StudySession:
        return self.quiz.finish(score)

    def delete_session(self, session_id: str) -> bool:
        return self.history.delete(session_id)

    def delete_all_history(self) -> None:
        self.history.delete_all()

    def _require_user(self) -> User:
        if self._user is None:
            raise NotLoggedInError("Log in to continue.")
        return self._user

    def _restore_quiz(self, user_id: str) -> None:
        assert self._quiz is not None
        snapshot = self._store.load_quiz_snapshot(user_id)
        if snapshot is None:
            return
        try:
            self._quiz.resume(snapshot)
        except ValidationError:
            self._logger.exception(
                "Discarding unusable quiz progress",
                extra={"event": "quiz.resume_failed", "user_id": user_id},
            )
            self._store.clear_quiz_snapshot(user_id)


def open_app(
    config: TrackerConfig,
    *,
    logger: Optional[logging.Logger] = None,
    gateway: Optional[AIGateway] = None,
    store_root: Optional[Path] = None,
) -> StudyApp:
    """Build a :class:`StudyApp` backed by the workspace JSON store."""

    if store_root is None:
        layout = workspace.ensure_workspace(path=config.data_home)
        store_root = layout.path_for("store")
    store = TrackerStore(JsonFileStore(store_root), logger=logger)
    if gateway is None:
        gateway = OpenAIGateway(config=config.ai, logger=logger)
    return StudyApp(store, gateway, config=config, logger=logger)
