from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

# Ensure src/ is importable when the package is not installed
ROOT = TESTS_DIR.parent
for extra in (ROOT / "src",):
    path_str = str(extra)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from fixtures import DataHome, FakeGateway  # noqa: E402

from study_tracker.history import HistoryLedger  # noqa: E402
from study_tracker.quiz import QuizLifecycleManager  # noqa: E402
from study_tracker.session import SessionController  # noqa: E402
from study_tracker.store import MemoryStore, TrackerStore  # noqa: E402


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("study_tracker.tests")


@pytest.fixture
def blobs() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def store(blobs: MemoryStore, logger: logging.Logger) -> TrackerStore:
    return TrackerStore(blobs, logger=logger)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def data_home(tmp_path: Path) -> DataHome:
    return DataHome(tmp_path)


class Tracker:
    """Ledger, quiz manager and controller wired for one user."""

    def __init__(
        self,
        store: TrackerStore,
        gateway: FakeGateway,
        logger: logging.Logger,
        *,
        user_id: str = "user-1",
        tick_seconds: float = 3600.0,
    ) -> None:
        self.events: list[str] = []
        self.ledger = HistoryLedger(user_id, store, logger=logger)
        self.quiz = QuizLifecycleManager(
            user_id,
            store=store,
            ledger=self.ledger,
            gateway=gateway,
            logger=logger,
            listener=self.events.append,
        )
        self.controller = SessionController(
            gateway=gateway,
            ledger=self.ledger,
            quiz=self.quiz,
            tick_seconds=tick_seconds,
            logger=logger,
            listener=self.events.append,
        )


@pytest.fixture
def make_tracker(
    store: TrackerStore, gateway: FakeGateway, logger: logging.Logger
) -> Callable[..., Tracker]:
    def _make(**kwargs: object) -> Tracker:
        return Tracker(store, gateway, logger, **kwargs)  # type: ignore[arg-type]

    return _make
