"""OpenAI-backed resource suggestions and quiz generation.

Both calls are blocking; the session controller and quiz manager run them
off the event loop. Failures surface as :class:`ResourceLookupError` or
:class:`QuizGenerationError` whose messages are safe to show to users.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol, Sequence

from openai import OpenAIError

from .config import AIConfig, default_config
from .core.ai import load_client
from .errors import QuizGenerationError, ResourceLookupError
from .models import Difficulty, QuizQuestion, Resource, coerce_difficulty

__all__ = [
    "AIGateway",
    "OpenAIGateway",
    "QUIZ_QUESTION_COUNT",
    "SUGGESTION_COUNT",
    "build_resource_prompt",
    "build_quiz_prompt",
    "parse_descriptions",
    "parse_quiz_payload",
]

QUIZ_QUESTION_COUNT = 10
SUGGESTION_COUNT = 5

_TRANSPORT_ERRORS = (OpenAIError, OSError)


class AIGateway(Protocol):
    def suggest_resources(self, topic: str) -> list[Resource]: ...

    def generate_quiz(
        self,
        topic: str,
        resources: Sequence[Resource],
        difficulty: Difficulty | str,
    ) -> list[QuizQuestion]: ...


def build_resource_prompt(topic: str) -> str:
    return (
        f'Based on web search results for the topic "{topic}", write a short, '
        f"informative description for each of the top {SUGGESTION_COUNT} "
        "results. Each description must be at most 2 sentences. Respond "
        'ONLY with a JSON object with a single key "descriptions" holding an '
        "array of strings, one per result, in the same order as the results. "
        "Do not add any text or markdown before or after the object. "
        'Example: {"descriptions": ["First link.", "Second link."]}'
    )


def _difficulty_instruction(difficulty: Difficulty) -> str:
    if difficulty is Difficulty.HARD:
        return (
            "The questions must be difficult, testing advanced concepts, edge "
            "cases and practical application of the material. Avoid trivial "
            "questions."
        )
    return "The questions should test fundamental concepts."


def build_quiz_prompt(
    topic: str,
    resources: Sequence[Resource],
    difficulty: Difficulty | str,
) -> str:
    """Build the quiz request, grounding it on saved resources when present."""

    level = coerce_difficulty(difficulty)
    schema = (
        'Respond with a JSON object {"questions": [{"question": str, '
        '"options": [str, str, str, str], "correctAnswer": str}]} where '
        "correctAnswer repeats one of the options verbatim."
    )
    if resources:
        context = "\n".join(
            f"Title: {resource.title}, Description: {resource.description}"
            for resource in resources
        )
        body = (
            f"Generate a multiple-choice quiz with {QUIZ_QUESTION_COUNT} "
            f'questions about the topic "{topic}". The questions must be '
            "strictly based on the following resources the user saved for "
            f"study:\n\n{context}\n\nEach question must have 4 options and "
            "one correct answer."
        )
    else:
        body = (
            f"Generate a multiple-choice quiz with {QUIZ_QUESTION_COUNT} "
            f'questions about "{topic}". Each question must have 4 options.'
        )
    return f"{body} {_difficulty_instruction(level)}\n\n{schema}"


def parse_descriptions(text: str) -> list[str]:
    """Extract the ``descriptions`` array from a model reply.

    The outermost ``{...}`` span is parsed so stray prose around the object
    is tolerated.
    """

    raw = (text or "").strip()
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ResourceLookupError(
            "The AI response did not contain a valid descriptions object."
        )
    try:
        payload = json.loads(raw[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ResourceLookupError(
            "Could not read the AI response: the returned JSON is invalid."
        ) from exc
    descriptions = (
        payload.get("descriptions") if isinstance(payload, dict) else None
    )
    if not isinstance(descriptions, list) or not all(
        isinstance(item, str) for item in descriptions
    ):
        raise ResourceLookupError(
            "The AI did not return a 'descriptions' array of strings."
        )
    return descriptions


def parse_quiz_payload(text: str) -> list[QuizQuestion]:
    """Parse and validate generated questions, dropping malformed items."""

    raw = (text or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.+?)```", raw, re.DOTALL)
    if fenced:
        raw = fenced.group(1).strip()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise QuizGenerationError(
            "Failed to generate the quiz: the AI returned malformed data."
        ) from exc
    if isinstance(payload, dict):
        payload = payload.get("questions")
    if not isinstance(payload, list):
        raise QuizGenerationError(
            "Failed to generate the quiz: the AI returned no questions."
        )

    questions: list[QuizQuestion] = []
    for item in payload:
        if len(questions) >= QUIZ_QUESTION_COUNT:
            break
        if not isinstance(item, dict):
            continue
        try:
            question = QuizQuestion.from_dict(item)
            question.validate()
        except (KeyError, ValueError):
            continue
        questions.append(question)
    if not questions:
        raise QuizGenerationError(
            "Failed to generate the quiz: no usable questions were returned."
        )
    return questions


class OpenAIGateway:
    """:class:`AIGateway` implementation over the OpenAI chat API."""

    def __init__(
        self,
        client: Any = None,
        *,
        config: Optional[AIConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._config = config or default_config().ai
        self._logger = logger or logging.getLogger(__name__)

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = load_client(
                timeout=self._config.request_timeout_seconds
            )
        return self._client

    def suggest_resources(self, topic: str) -> list[Resource]:
        try:
            client = self._ensure_client()
            response = client.chat.completions.create(
                model=self._config.search_model,
                web_search_options={},
                messages=[
                    {"role": "user", "content": build_resource_prompt(topic)}
                ],
            )
            message = response.choices[0].message
        except RuntimeError as exc:
            self._logger.warning(
                "AI client unavailable for resource lookup",
                extra={"event": "gateway.client_unavailable", "topic": topic},
                exc_info=exc,
            )
            raise ResourceLookupError(
                "Resource suggestions are unavailable right now."
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            self._logger.warning(
                "Resource lookup request failed",
                extra={"event": "gateway.lookup_failed", "topic": topic},
                exc_info=exc,
            )
            raise ResourceLookupError(
                "Failed to fetch learning resources."
            ) from exc

        hits = _search_hits(message)
        if not hits:
            raise ResourceLookupError(
                "The web search returned no results for this topic."
            )
        descriptions = parse_descriptions(_field(message, "content") or "")
        resources = [
            Resource(title=title, uri=uri, description=description)
            for (title, uri), description in zip(hits, descriptions)
        ]
        if not resources:
            raise ResourceLookupError(
                "Could not match search results with their descriptions."
            )
        self._logger.info(
            "Suggested resources",
            extra={
                "event": "gateway.suggested",
                "topic": topic,
                "count": len(resources),
            },
        )
        return resources

    def generate_quiz(
        self,
        topic: str,
        resources: Sequence[Resource],
        difficulty: Difficulty | str,
    ) -> list[QuizQuestion]:
        level = coerce_difficulty(difficulty)
        prompt = build_quiz_prompt(topic, resources, level)
        try:
            client = self._ensure_client()
            response = client.chat.completions.create(
                model=self._config.chat_model,
                messages=[
                    {
                        "role": "system",
                        "content": "You write accurate multiple-choice "
                        "study quizzes.",
                    },
                    {"role": "user", "content": prompt},
                ],
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
        except (RuntimeError, *_TRANSPORT_ERRORS) as exc:
            self._logger.warning(
                "Quiz generation request failed",
                extra={
                    "event": "gateway.quiz_failed",
                    "topic": topic,
                    "difficulty": level.value,
                },
                exc_info=exc,
            )
            raise QuizGenerationError(
                "Failed to generate the quiz. The topic may be too broad or "
                "unsupported."
            ) from exc

        questions = parse_quiz_payload(content)
        self._logger.info(
            "Generated quiz",
            extra={
                "event": "gateway.quiz_generated",
                "topic": topic,
                "difficulty": level.value,
                "count": len(questions),
            },
        )
        return questions


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _search_hits(message: Any) -> list[tuple[str, str]]:
    """Return ``(title, url)`` pairs from the message's url citations."""

    hits: list[tuple[str, str]] = []
    for annotation in _field(message, "annotations") or []:
        if _field(annotation, "type") != "url_citation":
            continue
        citation = _field(annotation, "url_citation")
        title = _field(citation, "title")
        url = _field(citation, "url")
        if title and url:
            hits.append((str(title), str(url)))
    return hits
