"""Shared testing fixtures and doubles for the study_tracker test suite."""

from .console import make_provider, make_waiting_provider, wait_for  # noqa: F401
from .datahome import DataHome  # noqa: F401
from .gateway import FakeGateway, make_questions, make_resources  # noqa: F401
from .openai import (  # noqa: F401
    FakeOpenAIClient,
    FakeOpenAIFactory,
    chat_response,
    url_citation,
)

__all__ = [
    "DataHome",
    "FakeGateway",
    "FakeOpenAIClient",
    "FakeOpenAIFactory",
    "chat_response",
    "make_provider",
    "make_waiting_provider",
    "make_questions",
    "make_resources",
    "url_citation",
    "wait_for",
]
