"""Rich-powered study and quiz loops for the terminal.

The study loop reads commands on a daemon thread so the session clock and
the resource lookup keep running on the event loop while the prompt waits.
The quiz loop is plain synchronous input handling on top of
:class:`QuizLifecycleManager`.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Callable, Literal, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .app import StudyApp
from .errors import InvalidTransitionError, ValidationError
from .models import Difficulty, StudySession
from .quiz import QuizLifecycleManager, QuizRun, QuizState, score_feedback
from .session import SuggestionState

__all__ = [
    "StudyCommand",
    "QuizCommand",
    "parse_study_command",
    "parse_quiz_command",
    "run_study",
    "run_quiz",
    "format_clock",
]

InputProvider = Callable[[], str]
ExitAction = Literal["finished", "saved", "failed", "discarded"]

OPTION_KEYS = "ABCD"

_STUDY_HINT = "Commands: pause, resume, add N, list, stop, help"
_QUIZ_HINT = "Commands: choices [A-D], n (next), p (prev), quit"


@dataclass(frozen=True)
class StudyCommand:
    type: Literal["pause", "resume", "add", "list", "stop", "help"]
    index: Optional[int] = None


@dataclass(frozen=True)
class QuizCommand:
    type: Literal["select", "next", "prev", "quit"]
    choice: Optional[str] = None


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_study_command(raw: Optional[str]) -> Optional[StudyCommand]:
    if raw is None:
        return None
    parts = raw.strip().lower().split()
    if not parts:
        return None
    head, rest = parts[0], parts[1:]
    if head in {"pause", "resume", "stop", "list"} and not rest:
        return StudyCommand(head)  # type: ignore[arg-type]
    if head in {"ls"} and not rest:
        return StudyCommand("list")
    if head in {"help", "?", "h"}:
        return StudyCommand("help")
    if head == "add" and len(rest) == 1 and rest[0].isdigit():
        return StudyCommand("add", int(rest[0]))
    return None


def parse_quiz_command(raw: Optional[str]) -> Optional[QuizCommand]:
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in {"n", "next"}:
        return QuizCommand("next")
    if lowered in {"p", "prev", "previous"}:
        return QuizCommand("prev")
    if lowered in {"q", "quit", "exit"}:
        return QuizCommand("quit")
    if len(text) == 1 and text.upper() in OPTION_KEYS:
        return QuizCommand("select", text.upper())
    return None


def _read_line(input_provider: InputProvider) -> Optional[str]:
    try:
        return input_provider()
    except (EOFError, KeyboardInterrupt, StopIteration):
        return None


async def _read_line_async(input_provider: InputProvider) -> Optional[str]:
    """Read one line on a daemon thread.

    A thread blocked in ``input()`` must not keep the process alive after
    Ctrl-C, so the default executor (which ``asyncio.run`` joins) is not used.
    """

    loop = asyncio.get_running_loop()
    future: asyncio.Future[Optional[str]] = loop.create_future()

    def _deliver(line: Optional[str]) -> None:
        if not future.done():
            future.set_result(line)

    def _worker() -> None:
        line = _read_line(input_provider)
        try:
            loop.call_soon_threadsafe(_deliver, line)
        except RuntimeError:
            # The loop shut down while this thread was waiting for input.
            return

    threading.Thread(target=_worker, name="study-input", daemon=True).start()
    return await future


async def _announce_suggestions(
    app: StudyApp, console: Console, session_id: str
) -> None:
    suggestions = await app.controller.wait_for_suggestions()
    active = app.controller.active_session
    if active is None or active.id != session_id:
        return
    _render_suggestions(console, suggestions, active)


async def run_study(
    app: StudyApp,
    topic: str,
    console: Console,
    input_provider: InputProvider,
) -> ExitAction:
    """Drive one study session from start to archived quiz."""

    if app.quiz.pending_session is not None:
        pending = app.quiz.pending_session
        console.print(
            Panel(
                f"Resuming your quiz on [bold]{pending.topic}[/].",
                title="Quiz in progress",
                border_style="cyan",
            )
        )
        return run_quiz(app, console, input_provider)

    session = app.start(topic)
    console.print(
        Panel(
            f"Studying [bold]{session.topic}[/]. {_STUDY_HINT}",
            title="Study session",
            border_style="green",
        )
    )
    console.print(Text("Searching for learning resources...", style="dim"))
    announcer = asyncio.create_task(
        _announce_suggestions(app, console, session.id)
    )
    try:
        while True:
            raw = await _read_line_async(input_provider)
            if raw is None:
                app.controller.close()
                console.print(
                    "\n[bold yellow]Session interrupted and discarded.[/]"
                )
                return "discarded"
            command = parse_study_command(raw)
            if command is None:
                console.print("[red]Unrecognized command. Try again.[/]")
                continue
            if command.type == "stop":
                break
            _apply_study_command(app, command, console)
    finally:
        announcer.cancel()

    outcome = app.stop()
    console.print(
        f"Session finished after [bold]{outcome.session.duration_minutes}[/] "
        f"minute(s) with {len(outcome.session.resources)} saved resource(s)."
    )
    if outcome.difficulty is Difficulty.HARD:
        console.print("[magenta]You've studied this before, so the quiz is harder.[/]")
    with console.status(app.quiz.status_message or "Preparing your quiz..."):
        state = await app.quiz.wait_until_settled()
    if state is QuizState.NONE:
        console.print(
            Panel(
                app.quiz.last_error or "The quiz could not be generated.",
                title="Quiz unavailable",
                border_style="red",
            )
        )
        return "failed"
    return run_quiz(app, console, input_provider)


def _apply_study_command(
    app: StudyApp, command: StudyCommand, console: Console
) -> None:
    controller = app.controller
    if command.type == "pause":
        controller.pause()
        console.print(
            f"Paused at [bold]{format_clock(controller.elapsed_seconds)}[/]."
        )
    elif command.type == "resume":
        controller.resume()
        console.print("Timer resumed.")
    elif command.type == "list":
        _render_suggestions(
            console, controller.suggestions, controller.active_session
        )
        state = "paused" if controller.is_paused else "running"
        console.print(
            Text(
                f"Elapsed {format_clock(controller.elapsed_seconds)} ({state})",
                style="dim",
            )
        )
    elif command.type == "add":
        if controller.suggestions.loading:
            console.print("[yellow]Suggestions are still loading.[/]")
            return
        resources = controller.suggestions.resources
        position = (command.index or 0) - 1
        if not 0 <= position < len(resources):
            console.print(f"[red]No suggestion number {command.index}.[/]")
            return
        resource = resources[position]
        if controller.add_resource(resource):
            console.print(f"Saved [bold]{resource.title}[/].")
        else:
            console.print("[yellow]That resource is already saved.[/]")
    elif command.type == "help":
        console.print(Text(_STUDY_HINT, style="dim"))


def _render_suggestions(
    console: Console,
    suggestions: SuggestionState,
    active: Optional[StudySession],
) -> None:
    if suggestions.loading:
        console.print("[dim]Still searching for resources...[/]")
        return
    if suggestions.error:
        console.print(f"[yellow]{suggestions.error}[/]")
        return
    if not suggestions.resources:
        console.print("[dim]No suggestions yet.[/]")
        return
    table = Table(title="Suggested resources", box=box.SIMPLE, expand=True)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Title", overflow="fold")
    table.add_column("Description", overflow="fold")
    table.add_column("Saved", justify="center")
    for idx, resource in enumerate(suggestions.resources, start=1):
        saved = active is not None and active.has_resource(resource.uri)
        table.add_row(
            str(idx),
            f"{resource.title}\n[dim]{resource.uri}[/]",
            resource.description,
            "yes" if saved else "",
        )
    console.print(table)


def run_quiz(
    app: StudyApp, console: Console, input_provider: InputProvider
) -> ExitAction:
    """Answer the ready quiz; ``quit`` keeps progress for a later resume."""

    quiz = app.quiz
    while True:
        run = quiz.run
        if run is None:
            return "failed"
        _render_question(console, run)
        raw = _read_line(input_provider)
        if raw is None:
            console.print("\n[bold yellow]Quiz progress saved.[/]")
            return "saved"
        command = parse_quiz_command(raw)
        if command is None:
            console.print("[red]Unrecognized command. Try again.[/]")
            continue
        if command.type == "quit":
            console.print(
                "\n[bold yellow]Quiz progress saved. Run study again to "
                "resume.[/]"
            )
            return "saved"
        if command.type == "prev":
            quiz.go_back()
            continue
        if command.type == "next":
            if quiz.advance() is QuizState.FINISHED:
                archived = app.finish()
                _render_results(console, archived)
                return "finished"
            continue
        _select(quiz, run, command.choice or "", console)


def _select(
    quiz: QuizLifecycleManager, run: QuizRun, key: str, console: Console
) -> None:
    position = OPTION_KEYS.index(key)
    options = run.current.options
    if position >= len(options):
        console.print(f"[red]'{key}' is not a valid choice.[/]")
        return
    option = options[position]
    try:
        accepted = quiz.record_answer(run.index, option)
    except (ValidationError, InvalidTransitionError) as exc:
        console.print(f"[red]{exc}[/]")
        return
    if not accepted:
        console.print("[yellow]This question is already answered.[/]")
        return
    if run.current.is_correct(option):
        console.print("[bold green]Correct![/]")
    else:
        console.print(
            f"[bold red]Incorrect.[/] The answer is "
            f"[bold]{run.current.correct_answer}[/]."
        )


def _render_question(console: Console, run: QuizRun) -> None:
    question = run.current
    header = Text.assemble(
        (f"Question {run.index + 1}", "bold cyan"),
        (f" / {run.total_questions}", "dim"),
    )
    console.print()
    console.rule(header)
    console.print(Text(question.question, style="bold"))

    table = Table(show_header=False, box=box.SIMPLE, expand=True)
    table.add_column("Key", justify="center", style="cyan")
    table.add_column("Choice")
    selected = run.answer_for(run.index)
    for key, option in zip(OPTION_KEYS, question.options):
        text = Text(option)
        if selected is not None:
            if option == question.correct_answer:
                text.stylize("bold green")
            elif option == selected:
                text.stylize("bold red")
        indicator = "*" if option == selected else " "
        row = Text(indicator + " ")
        row += text
        table.add_row(key, row)
    console.print(table)
    console.print(
        Text(
            f"Score {run.score} | Answered {run.answered_count()}/"
            f"{run.total_questions} | {_QUIZ_HINT}",
            style="dim",
        )
    )


def _render_results(console: Console, session: StudySession) -> None:
    result = session.quiz_result
    score = result.score if result else 0
    total = result.total_questions if result else 0
    console.print()
    console.rule(Text("Quiz Summary", style="bold magenta"))
    overview = Table(show_header=False, box=box.MINIMAL_DOUBLE_HEAD)
    overview.add_column("Metric", style="bold")
    overview.add_column("Value", justify="right")
    overview.add_row("Topic", session.topic)
    overview.add_row("Correct", f"{score}/{total}")
    overview.add_row(
        "Accuracy", f"{(result.accuracy if result else 0.0) * 100:.1f}%"
    )
    console.print(overview)
    console.print(Panel(score_feedback(score, total), border_style="green"))
