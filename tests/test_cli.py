from __future__ import annotations

import pytest
from rich.console import Console

from fixtures import DataHome, FakeGateway, make_provider
from study_tracker import cli


@pytest.fixture
def run(data_home: DataHome):
    gateway = FakeGateway()

    def _run(*argv: str, inputs: list[str] | None = None) -> tuple[int, str]:
        console = Console(record=True, width=120, force_terminal=False)
        context = cli.CliContext(
            console=console,
            input_provider=make_provider(inputs or []),
            env=data_home.env,
            gateway=gateway,
        )
        code = cli.main(list(argv), context=context)
        return code, console.export_text()

    return _run


def test_init_writes_workspace_and_config(run, data_home: DataHome) -> None:
    code, output = run("init")

    assert code == 0
    assert "Workspace ready" in output
    assert (data_home.home / "config" / "tracker.toml").is_file()
    assert (data_home.home / "store").is_dir()

    code, output = run("init")
    assert "(exists)" in output


def test_register_and_list_users(run, data_home: DataHome) -> None:
    code, output = run("register", "Ana", "--password", "pw")
    assert code == 0
    assert "Registered Ana" in output

    code, output = run("register", "ana", "--password", "pw")
    assert code == 1
    assert "already exists" in output

    code, output = run("users")
    assert code == 0
    assert data_home.user_id("Ana") in output


def test_study_then_history_stats_and_delete(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")
    answers: list[str] = []
    for _ in range(10):
        answers += ["a", "n"]

    code, output = run(
        "study",
        "--user",
        user_id,
        "--password",
        "pw",
        "Linear",
        "Algebra",
        inputs=["stop", *answers],
    )
    assert code == 0
    assert "Quiz Summary" in output

    code, output = run("history", "--user", user_id, "--password", "pw")
    assert code == 0
    assert "Linear Algebra" in output
    assert "10/10" in output

    code, output = run(
        "history", "--user", user_id, "--password", "pw", "--topic", "calc"
    )
    assert "No study sessions found." in output

    code, output = run(
        "stats", "--user", user_id, "--password", "pw", "--window", "7days"
    )
    assert code == 0
    assert "Minutes per topic" in output
    assert "Quiz scores by date" in output

    session_id = data_home.stored(f"history_{user_id}")[0]["id"]
    code, output = run(
        "delete", "--user", user_id, "--password", "pw", session_id
    )
    assert f"Deleted session {session_id}" in output
    code, output = run(
        "delete", "--user", user_id, "--password", "pw", session_id
    )
    assert "No session with id" in output


def test_study_quit_then_resume(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")
    login = ("--user", user_id, "--password", "pw")

    code, _ = run("study", *login, "Graphs", inputs=["stop", "a", "quit"])
    assert code == 0
    assert data_home.has_stored(f"quizProgress_{user_id}")

    code, output = run("study", *login, inputs=["n", "quit"])
    assert code == 0
    assert "Resuming your quiz on Graphs" in output
    assert "Question 2" in output


def test_clear_history(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")
    login = ("--user", user_id, "--password", "pw")
    run("study", *login, "Graphs", inputs=["stop", *["n"] * 10])

    code, output = run("clear", *login, "--yes")

    assert code == 0
    assert "History cleared." in output
    assert data_home.stored(f"history_{user_id}") == []


def test_wrong_password_is_reported(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")

    code, output = run("history", "--user", user_id, "--password", "nope")

    assert code == 1
    assert "Incorrect password." in output


def test_study_without_topic_is_rejected(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")

    code, output = run("study", "--user", user_id, "--password", "pw")

    assert code == 1
    assert "Enter a topic" in output


def test_usage_and_unknown_commands(capsys) -> None:
    assert cli.main([]) == 2
    assert "Available commands" in capsys.readouterr().out

    assert cli.main(["help"]) == 0
    assert "study-tracker <command>" in capsys.readouterr().out

    assert cli.main(["bogus"]) == 2
    assert "Unknown command 'bogus'" in capsys.readouterr().err


def test_argparse_errors_return_exit_code(run) -> None:
    code, _ = run("history")

    assert code == 2


def test_topics_lists_distinct_studied_topics(run, data_home: DataHome) -> None:
    run("register", "Ana", "--password", "pw")
    user_id = data_home.user_id("Ana")
    login = ("--user", user_id, "--password", "pw")

    code, output = run("topics", *login)
    assert code == 0
    assert "No topics studied yet." in output

    for topic in ("Graphs", "graphs", "Recursion"):
        run("study", *login, topic, inputs=["stop", *["n"] * 10])

    code, output = run("topics", *login)

    assert code == 0
    lines = [line.strip() for line in output.splitlines()]
    assert lines[1:3] == ["Graphs", "Recursion"]
    assert f"study-tracker study --user {user_id} <topic>" in output


def test_command_table_follows_declaration_order() -> None:
    table = cli.format_command_table().splitlines()[1:]

    names = [line.split()[0] for line in table]

    assert names == list(cli.COMMANDS)
    assert names[:4] == ["init", "register", "users", "study"]
    assert "study" in table[3] and "(interactive)" in table[3]
