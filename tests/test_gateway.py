from __future__ import annotations

import json

import pytest
from openai import OpenAIError

from fixtures import FakeOpenAIClient, chat_response, url_citation
from study_tracker.config import default_config
from study_tracker.core import ai
from study_tracker.errors import QuizGenerationError, ResourceLookupError
from study_tracker.gateway import (
    QUIZ_QUESTION_COUNT,
    OpenAIGateway,
    build_quiz_prompt,
    parse_descriptions,
    parse_quiz_payload,
)
from study_tracker.models import Difficulty, Resource


def _question(idx: int, **overrides: object) -> dict:
    item = {
        "question": f"Question {idx}?",
        "options": ["a", "b", "c", "d"],
        "correctAnswer": "a",
    }
    item.update(overrides)
    return item


def test_quiz_prompt_embeds_saved_resources() -> None:
    resources = [Resource("Call stack", "https://x", "Frames and returns.")]

    prompt = build_quiz_prompt("Recursion", resources, Difficulty.HARD)

    assert "Title: Call stack, Description: Frames and returns." in prompt
    assert "strictly based" in prompt
    assert "difficult" in prompt
    assert f"{QUIZ_QUESTION_COUNT} questions" in prompt


def test_quiz_prompt_without_resources_is_topic_only() -> None:
    prompt = build_quiz_prompt("Recursion", [], "normal")

    assert "Title:" not in prompt
    assert '"Recursion"' in prompt
    assert "fundamental concepts" in prompt


def test_parse_descriptions_tolerates_surrounding_prose() -> None:
    text = 'Sure! {"descriptions": ["One.", "Two."]} Hope this helps.'

    assert parse_descriptions(text) == ["One.", "Two."]


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        '{"descriptions": "One."}',
        '{"descriptions": [1, 2]}',
        '{"other": []}',
        "{broken",
    ],
)
def test_parse_descriptions_rejects_bad_payloads(text: str) -> None:
    with pytest.raises(ResourceLookupError):
        parse_descriptions(text)


def test_parse_quiz_payload_filters_and_caps() -> None:
    items = [_question(idx) for idx in range(12)]
    items.insert(0, _question(99, options=["a", "b", "c"]))
    items.insert(1, _question(98, correctAnswer="z"))
    items.insert(2, "not a question")
    text = "```json\n" + json.dumps(items) + "\n```"

    questions = parse_quiz_payload(text)

    assert len(questions) == QUIZ_QUESTION_COUNT
    assert questions[0].question == "Question 0?"


def test_parse_quiz_payload_accepts_questions_object() -> None:
    text = json.dumps({"questions": [_question(1)]})

    questions = parse_quiz_payload(text)

    assert [q.correct_answer for q in questions] == ["a"]


@pytest.mark.parametrize(
    "text",
    ["not json", json.dumps({"questions": []}), json.dumps({"q": 1})],
)
def test_parse_quiz_payload_without_usable_questions(text: str) -> None:
    with pytest.raises(QuizGenerationError):
        parse_quiz_payload(text)


def test_suggest_resources_pairs_citations_with_descriptions() -> None:
    client = FakeOpenAIClient()
    client.queue(
        chat_response(
            json.dumps({"descriptions": ["First.", "Second."]}),
            annotations=[
                url_citation("One", "https://one"),
                url_citation(None, "https://untitled"),
                url_citation("Two", "https://two"),
                url_citation("Three", "https://three"),
            ],
        )
    )
    gateway = OpenAIGateway(client)

    resources = gateway.suggest_resources("Graphs")

    assert resources == [
        Resource("One", "https://one", "First."),
        Resource("Two", "https://two", "Second."),
    ]
    call = client.calls[0]
    assert call["model"] == default_config().ai.search_model
    assert call["web_search_options"] == {}
    assert "Graphs" in call["messages"][0]["content"]


def test_suggest_resources_without_hits() -> None:
    client = FakeOpenAIClient()
    client.queue(chat_response(json.dumps({"descriptions": ["x"]})))

    with pytest.raises(ResourceLookupError):
        OpenAIGateway(client).suggest_resources("Graphs")


def test_suggest_resources_wraps_transport_errors() -> None:
    client = FakeOpenAIClient()
    client.fail_with(OpenAIError("connection reset"))

    with pytest.raises(ResourceLookupError) as exc:
        OpenAIGateway(client).suggest_resources("Graphs")

    assert "connection reset" not in str(exc.value)


def test_suggest_resources_without_api_key(monkeypatch) -> None:
    monkeypatch.setattr(ai, "load_dotenv", lambda: False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ResourceLookupError):
        OpenAIGateway().suggest_resources("Graphs")


def test_generate_quiz_requests_json_with_chat_model() -> None:
    client = FakeOpenAIClient()
    client.queue(chat_response(json.dumps({"questions": [_question(1)]})))
    gateway = OpenAIGateway(client)

    questions = gateway.generate_quiz(
        "Graphs", [Resource("BFS", "https://bfs", "Layers.")], "hard"
    )

    assert len(questions) == 1
    call = client.calls[0]
    assert call["model"] == default_config().ai.chat_model
    assert call["response_format"] == {"type": "json_object"}
    assert "Title: BFS" in call["messages"][-1]["content"]


def test_generate_quiz_wraps_transport_errors() -> None:
    client = FakeOpenAIClient()
    client.fail_with(OpenAIError("rate limited"))

    with pytest.raises(QuizGenerationError):
        OpenAIGateway(client).generate_quiz("Graphs", [], Difficulty.NORMAL)


def test_generate_quiz_rejects_malformed_reply() -> None:
    client = FakeOpenAIClient()
    client.queue(chat_response("Here is your quiz!"))

    with pytest.raises(QuizGenerationError):
        OpenAIGateway(client).generate_quiz("Graphs", [], Difficulty.NORMAL)
