"""Unified CLI entry point for the study tracker."""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import config as config_mod
from .app import StudyApp, open_app
from .core import workspace as workspace_mod
from .core.logging import configure_logger
from .errors import StudyTrackerError
from .gateway import AIGateway
from .history import resolve_window
from .interactive import run_study
from .models import StudySession, User

InputProvider = Callable[[], str]


@dataclass
class CliContext:
    """Runtime collaborators shared by subcommands."""

    console: Console = field(default_factory=Console)
    input_provider: InputProvider = input
    env: Optional[Mapping[str, str]] = None
    gateway: Optional[AIGateway] = None


CommandHandler = Callable[[Sequence[str], CliContext], int]


@dataclass(frozen=True)
class CommandSpec:
    """Represents a study-tracker subcommand."""

    name: str
    summary: str
    handler: CommandHandler
    is_interactive: bool = False


def _base_parser(name: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"study-tracker {name}", description=description
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=(
            "Path to tracker.toml (defaults to STUDY_TRACKER_CONFIG or the "
            "workspace config directory)."
        ),
    )
    return parser


def _user_parser(name: str, description: str) -> argparse.ArgumentParser:
    parser = _base_parser(name, description)
    parser.add_argument("--user", required=True, help="User id to log in as.")
    parser.add_argument(
        "--password", help="Password for the user (prompted when omitted)."
    )
    return parser


def _bootstrap(
    args: argparse.Namespace, ctx: CliContext
) -> tuple[config_mod.TrackerConfig, StudyApp]:
    config = config_mod.load_config(explicit_path=args.config, env=ctx.env)
    layout = workspace_mod.ensure_workspace(env=ctx.env, path=config.data_home)
    logger, _ = configure_logger(
        "study_tracker",
        log_dir=layout.path_for("logs"),
        level=config.logging.level,
        verbose=config.logging.verbose,
    )
    app = open_app(
        config,
        logger=logger,
        gateway=ctx.gateway,
        store_root=layout.path_for("store"),
    )
    return config, app


def _password(args: argparse.Namespace, ctx: CliContext) -> str:
    if args.password is not None:
        return args.password
    return Prompt.ask("Password", password=True, console=ctx.console)


def _login(
    args: argparse.Namespace, ctx: CliContext
) -> tuple[StudyApp, User]:
    _, app = _bootstrap(args, ctx)
    user = app.login(args.user, _password(args, ctx))
    return app, user


def _handle_init(argv: Sequence[str], ctx: CliContext) -> int:
    parser = argparse.ArgumentParser(
        prog="study-tracker init",
        description=(
            "Bootstrap the study-tracker workspace and write a default "
            "tracker.toml."
        ),
    )
    parser.add_argument(
        "--path",
        type=Path,
        help=(
            "Override the workspace root (defaults to STUDY_TRACKER_DATA_HOME "
            "or ~/.study-tracker-data)."
        ),
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing tracker.toml.",
    )
    args = parser.parse_args(list(argv))

    layout = workspace_mod.ensure_workspace(env=ctx.env, path=args.path)
    target = layout.path_for("config") / config_mod.CONFIG_FILENAME
    if target.exists() and not args.force:
        config_status = "exists"
    else:
        config_mod.write_template(target, overwrite=args.force)
        config_status = "written"

    home_status = "created" if layout.created.get("home") else "exists"
    ctx.console.print(f"Workspace ready at {layout.home} ({home_status})")
    width = max(len(name) for name in layout.directories)
    for name, directory in layout.items():
        status = "created" if layout.created.get(name) else "exists"
        ctx.console.print(f"  {name.ljust(width)}  {directory} ({status})")
    ctx.console.print(f"Config: {target} ({config_status})")
    return 0


def _handle_register(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _base_parser("register", "Create a local study profile.")
    parser.add_argument("name", help="Display name for the new user.")
    parser.add_argument(
        "--password", help="Password for the user (prompted when omitted)."
    )
    args = parser.parse_args(list(argv))
    _, app = _bootstrap(args, ctx)
    user = app.register(args.name, _password(args, ctx))
    ctx.console.print(f"Registered [bold]{user.name}[/] with id {user.id}.")
    return 0


def _handle_users(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _base_parser("users", "List registered profiles.")
    args = parser.parse_args(list(argv))
    _, app = _bootstrap(args, ctx)
    users = app.accounts.users()
    if not users:
        ctx.console.print("No users registered yet.")
        return 0
    table = Table(title="Users", box=box.SIMPLE)
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    for user in users:
        table.add_row(user.id, user.name)
    ctx.console.print(table)
    return 0


def _handle_study(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser(
        "study",
        "Run an interactive study session followed by its quiz. An "
        "unfinished quiz is resumed first.",
    )
    parser.add_argument("topic", nargs="*", help="Topic to study.")
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    topic = " ".join(args.topic)

    async def _session() -> str:
        try:
            return await run_study(app, topic, ctx.console, ctx.input_provider)
        finally:
            app.logout()

    action = asyncio.run(_session())
    return 0 if action in ("finished", "saved") else 1


def _add_window_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--window",
        default="all",
        choices=("7days", "30days", "all"),
        help="Only include sessions started within this window.",
    )


def _selected_sessions(
    app: StudyApp, window: str, topic: Optional[str] = None
) -> list[StudySession]:
    ledger = app.history
    recent = {s.id for s in ledger.filter_by_recency(resolve_window(window))}
    pool = ledger.filter_by_topic(topic) if topic else list(ledger.sessions)
    return [s for s in pool if s.id in recent]


def _format_quiz(session: StudySession) -> str:
    result = session.quiz_result
    if result is None or result.total_questions == 0:
        return "-"
    return f"{result.score}/{result.total_questions}"


def _handle_history(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser("history", "List archived study sessions.")
    parser.add_argument("--topic", help="Case-insensitive topic filter.")
    _add_window_option(parser)
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    try:
        sessions = _selected_sessions(app, args.window, args.topic)
    finally:
        app.logout()
    if not sessions:
        ctx.console.print("No study sessions found.")
        return 0
    table = Table(title="Study history", box=box.SIMPLE, expand=True)
    table.add_column("Id", style="cyan")
    table.add_column("Date")
    table.add_column("Topic", overflow="fold")
    table.add_column("Minutes", justify="right")
    table.add_column("Resources", justify="right")
    table.add_column("Quiz", justify="right")
    for session in reversed(sessions):
        table.add_row(
            session.id,
            session.start_time.astimezone().strftime("%Y-%m-%d %H:%M"),
            session.topic,
            str(session.duration_minutes),
            str(len(session.resources)),
            _format_quiz(session),
        )
    ctx.console.print(table)
    return 0


def _handle_topics(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser(
        "topics", "List topics studied so far, to pick one to continue."
    )
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    try:
        topics = app.history.topics()
    finally:
        app.logout()
    if not topics:
        ctx.console.print("No topics studied yet.")
        return 0
    ctx.console.print("Topics studied:")
    for topic in topics:
        ctx.console.print(f"  {topic}", highlight=False)
    ctx.console.print(
        f"Continue with: study-tracker study --user {args.user} <topic>",
        highlight=False,
    )
    return 0


def _handle_stats(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser(
        "stats", "Show minutes per topic and quiz scores by date."
    )
    _add_window_option(parser)
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    try:
        sessions = _selected_sessions(app, args.window)
        minutes = app.history.topic_minutes(sessions)
        scores = app.history.quiz_scores_by_date(sessions)
    finally:
        app.logout()

    if not minutes:
        ctx.console.print("No study sessions found.")
        return 0
    time_table = Table(title="Minutes per topic", box=box.SIMPLE)
    time_table.add_column("Topic")
    time_table.add_column("Minutes", justify="right")
    for row in minutes:
        time_table.add_row(row.topic, str(row.minutes))
    ctx.console.print(time_table)

    if scores:
        score_table = Table(title="Quiz scores by date", box=box.SIMPLE)
        score_table.add_column("Date")
        score_table.add_column("Topic")
        score_table.add_column("Score", justify="right")
        for day in scores:
            for topic, score in day.scores.items():
                score_table.add_row(day.day.isoformat(), topic, str(score))
        ctx.console.print(score_table)
    return 0


def _handle_delete(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser("delete", "Delete one archived session.")
    parser.add_argument("session_id", help="Id shown by `history`.")
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    try:
        removed = app.delete_session(args.session_id)
    finally:
        app.logout()
    if removed:
        ctx.console.print(f"Deleted session {args.session_id}.")
    else:
        ctx.console.print(f"No session with id {args.session_id}.")
    return 0


def _handle_clear(argv: Sequence[str], ctx: CliContext) -> int:
    parser = _user_parser("clear", "Delete the entire study history.")
    parser.add_argument(
        "--yes", action="store_true", help="Skip the confirmation prompt."
    )
    args = parser.parse_args(list(argv))
    app, _ = _login(args, ctx)
    try:
        confirmed = args.yes or Confirm.ask(
            "Delete your entire study history?", console=ctx.console
        )
        if confirmed:
            app.delete_all_history()
    finally:
        app.logout()
    ctx.console.print("History cleared." if confirmed else "Nothing deleted.")
    return 0


_COMMAND_SPECS: Sequence[CommandSpec] = (
    CommandSpec(
        name="init",
        summary="Bootstrap the workspace and default config.",
        handler=_handle_init,
    ),
    CommandSpec(
        name="register",
        summary="Create a local study profile.",
        handler=_handle_register,
    ),
    CommandSpec(
        name="users",
        summary="List registered profiles.",
        handler=_handle_users,
    ),
    CommandSpec(
        name="study",
        summary="Run a timed study session and its quiz.",
        handler=_handle_study,
        is_interactive=True,
    ),
    CommandSpec(
        name="history",
        summary="List archived study sessions.",
        handler=_handle_history,
    ),
    CommandSpec(
        name="topics",
        summary="List topics studied so far.",
        handler=_handle_topics,
    ),
    CommandSpec(
        name="stats",
        summary="Show study time and quiz score summaries.",
        handler=_handle_stats,
    ),
    CommandSpec(
        name="delete",
        summary="Delete one archived session.",
        handler=_handle_delete,
    ),
    CommandSpec(
        name="clear",
        summary="Delete the entire study history.",
        handler=_handle_clear,
    ),
)

COMMANDS: Mapping[str, CommandSpec] = {
    spec.name: spec for spec in _COMMAND_SPECS
}


def _iter_specs() -> Iterable[CommandSpec]:
    # Declaration order is the order shown in help.
    return _COMMAND_SPECS


def format_command_table() -> str:
    """Return a formatted command table for help output."""

    width = max(len(spec.name) for spec in _iter_specs())
    lines = ["Available commands:"]
    for spec in _iter_specs():
        suffix = " (interactive)" if spec.is_interactive else ""
        lines.append(f"  {spec.name.ljust(width)}  {spec.summary}{suffix}")
    return "\n".join(lines)


def format_usage() -> str:
    parts = [
        "Usage: study-tracker <command> [args...]",
        "Run `study-tracker <command> --help` for command options.",
        "",
        format_command_table(),
    ]
    return "\n".join(parts)


def _print(
    text: str, *, stream: Optional[Callable[[str], None]] = None
) -> None:
    target = stream if stream is not None else sys.stdout.write
    if text:
        target(text + "\n")


def _handle_version() -> int:
    try:
        version = metadata.version("study-tracker")
    except metadata.PackageNotFoundError:
        version = "unknown"
    _print(version)
    return 0


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    context: Optional[CliContext] = None,
) -> int:
    args = list(argv if argv is not None else sys.argv[1:])
    ctx = context or CliContext()

    if not args:
        _print(format_usage())
        return 2

    head, *tail = args

    if head in ("-h", "--help", "help"):
        _print(format_usage())
        return 0

    if head in ("-V", "--version", "version"):
        return _handle_version()

    spec = COMMANDS.get(head)
    if spec is None:
        _print(f"Unknown command '{head}'.", stream=sys.stderr.write)
        _print(format_command_table(), stream=sys.stderr.write)
        return 2

    try:
        return spec.handler(tail, ctx)
    except SystemExit as exc:
        return _normalize_system_exit(exc)
    except (
        StudyTrackerError,
        config_mod.ConfigError,
        workspace_mod.WorkspaceError,
    ) as exc:
        ctx.console.print(f"[red]{exc}[/]")
        return 1


def _normalize_system_exit(exc: SystemExit) -> int:
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    _print(str(code), stream=sys.stderr.write)
    return 1


if __name__ == "__main__":  # pragma: no cover - manual invocation guard
    raise SystemExit(main())
