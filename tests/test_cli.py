"""
Tests for CLI commands.
"""

import shutil
import subprocess

import pytest
from typer.testing import CliRunner

from retort.cli import app, preview_text

runner = CliRunner()

MOCKED = "This is a mocked response."


def invoke(*args: str):
    return runner.invoke(app, list(args))


class TestSendCommand:
    """Tests for send, list and history."""

    def test_send_new_tagged_chat(self, cli_env):
        result = invoke("send", "hello world", "--chat", "main")

        assert result.exit_code == 0, result.output
        assert "CONTEXT (for this message):\n  (empty)\n---" in result.output
        assert "Added user message with ID: 1" in result.output
        assert MOCKED in result.output
        assert "Added assistant message with ID: 2" in result.output
        assert "Creating new chat with tag 'main'" in result.output
        assert "Updated tag 'main' to point to message ID 2" in result.output

    def test_list_shows_leaves_with_tags(self, cli_env):
        invoke("send", "hello world", "--chat", "main")
        invoke("send", "second\nline", "--new")

        result = invoke("list")

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0] == f"{'ID':<5} {'Tag':<20} Last User Message"
        assert lines[1] == f"{'-' * 5} {'-' * 20} {'-' * 70}"
        assert lines[2] == f"{4:<5} {'-':<20} second line"
        assert lines[3] == f"{2:<5} {'main':<20} hello world"

    def test_history_by_tag_and_message(self, cli_env):
        invoke("send", "hello world", "--chat", "main")

        by_tag = invoke("history", "main")
        by_message = invoke("history", "-m", "2")

        expected = f"[user]\nhello world\n---\n[assistant]\n{MOCKED}\n"
        assert by_tag.output == expected
        assert by_message.output == expected

    def test_history_errors(self, cli_env):
        no_active = invoke("history")
        assert no_active.exit_code == 1
        assert "Error: No active chat tag set." in no_active.output

        missing_tag = invoke("history", "nope")
        assert missing_tag.exit_code == 1
        assert "Error: Tag 'nope' not found." in missing_tag.output

        missing_message = invoke("history", "-m", "7")
        assert missing_message.exit_code == 1
        assert "Error: Message with ID '7' not found." in missing_message.output

    def test_active_chat_is_continued_by_default(self, cli_env):
        invoke("send", "first", "--chat", "main")
        assert invoke("profile", "--active-chat", "main").output == "Set active chat tag to: main\n"

        result = invoke("send", "second")

        assert result.exit_code == 0, result.output
        assert "Updated tag 'main' to point to message ID 4" in result.output
        assert "Creating new chat" not in result.output
        history = invoke("history")
        assert history.output.count("[user]") == 2

    def test_parent_branch_leaves_tag_alone(self, cli_env):
        invoke("send", "first", "--chat", "main")

        result = invoke("send", "branch", "--parent", "1")

        assert result.exit_code == 0, result.output
        assert "Updated tag" not in result.output
        assert invoke("history", "main").output.count("[user]") == 1

    def test_conflicting_send_options(self, cli_env):
        result = invoke("send", "x", "--new", "--chat", "main")
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_stream_prints_response(self, cli_env, monkeypatch):
        monkeypatch.setenv("MOCK_LLM_CONTENT", "line one\nline two")

        result = invoke("send", "go", "--stream")

        assert result.exit_code == 0, result.output
        assert "line one\nline two\nAdded assistant message with ID: 2" in result.output


class TestTagCommand:
    """Tests for tag set, delete and list."""

    def test_tag_lifecycle(self, cli_env):
        invoke("send", "first", "--new")
        invoke("send", "second", "--new")

        assert invoke("tag", "list").output == "No tags found.\n"
        assert invoke("tag", "set", "work", "-m", "2").output == "Tagged message 2 with 'work'\n"
        assert (
            invoke("tag", "set", "work", "-m", "2").output
            == "Tag 'work' already points to message 2.\n"
        )
        assert (
            invoke("tag", "set", "work", "-m", "4").output
            == "Moved tag 'work' from message 2 to 4.\n"
        )

        listing = invoke("tag", "list").output.splitlines()
        assert listing[0] == f"{'Tag':<30} Message ID"
        assert listing[1] == f"{'-' * 30} {'-' * 10}"
        assert listing[2] == f"{'work':<30} 4"

        assert (
            invoke("tag", "delete", "work").output
            == "Deleted tag 'work' which pointed to message ID 4\n"
        )
        assert invoke("tag", "delete", "work").output == "Tag 'work' not found.\n"

    def test_tag_unknown_message(self, cli_env):
        result = invoke("tag", "set", "work", "-m", "99")
        assert result.exit_code == 1
        assert "Error: Message with ID '99' not found." in result.output


class TestStageCommand:
    """Tests for staging files."""

    def test_empty_stage(self, cli_env):
        result = invoke("stage")
        assert result.output == (
            "Inherited Context (from active chat):\n"
            "  (empty)\n"
            "\n"
            "Prepared Context (for next message):\n"
            "  (empty)\n"
        )

    def test_stage_and_drop_files(self, cli_env):
        assert invoke("stage", "a.py").output == "Staged a.py as read-write.\n"
        assert invoke("stage", "b.md", "-r").output == "Staged b.md as read-only.\n"
        assert invoke("stage", "c.py", "--drop").output == "Removed c.py from stage.\n"

        result = invoke("stage")
        assert (
            "Prepared Context (for next message):\n"
            "  Read-Write:\n"
            "    - a.py\n"
            "  Read-Only:\n"
            "    - b.md\n"
        ) in result.output

    def test_staged_files_are_inherited_by_active_chat(self, cli_env):
        (cli_env.parent / "work" / "a.py").write_text("x = 1\n", encoding="utf-8")
        invoke("stage", "a.py")
        invoke("profile", "--active-chat", "main")

        sent = invoke("send", "look at this")
        assert sent.exit_code == 0, sent.output
        assert "CONTEXT (for this message):\n  Read-Write:\n    - a.py\n---" in sent.output

        result = invoke("stage")
        assert result.output == (
            "Inherited Context (from active chat):\n"
            "  Read-Write:\n"
            "    - a.py\n"
            "\n"
            "Prepared Context (for next message):\n"
            "  (empty)\n"
        )

    def test_missing_staged_file_fails_send(self, cli_env):
        invoke("stage", "missing.py")
        result = invoke("send", "hello")
        assert result.exit_code == 1
        assert "Error: File missing.py not found." in result.output


class TestProfileCommand:
    """Tests for the profile command."""

    def test_show_default_profile(self, cli_env):
        assert invoke("profile").output == (
            "Active Profile: default\n  active_chat_tag: None\n  project_root: None\n"
        )

    def test_set_project_root_is_canonical(self, cli_env):
        project = cli_env.parent / "work"
        result = invoke("profile", "--set-project-root", ".")

        assert result.output == f"Set project root to: {project.resolve()}\n"
        assert f"  project_root: {project.resolve()}" in invoke("profile").output

    def test_set_missing_project_root(self, cli_env):
        result = invoke("profile", "--set-project-root", "does/not/exist")
        assert result.exit_code == 1
        assert "Error:" in result.output


def _git(workdir, *args):
    subprocess.run(["git", *args], cwd=workdir, capture_output=True, text=True, check=True)


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_send_applies_and_commits_edits(cli_env, monkeypatch):
    workdir = cli_env.parent / "work"
    _git(workdir, "init", "-q")
    _git(workdir, "config", "user.email", "dev@example.com")
    _git(workdir, "config", "user.name", "Dev")
    _git(workdir, "config", "commit.gpgsign", "false")
    (workdir / "greet.txt").write_text("hello\n", encoding="utf-8")
    _git(workdir, "add", "greet.txt")
    _git(workdir, "commit", "-q", "-m", "initial")
    monkeypatch.setenv(
        "MOCK_LLM_CONTENT",
        "Say goodbye\ngreet.txt\n<<<<<<< SEARCH\nhello\n=======\ngoodbye\n>>>>>>> REPLACE\n",
    )
    invoke("profile", "--set-project-root", ".")

    result = invoke("send", "be rude", "--new")

    assert result.exit_code == 0, result.output
    assert "Applying changes to greet.txt" in result.output
    assert "Committing changes with message: Say goodbye" in result.output
    assert "Changes committed successfully." in result.output
    assert (workdir / "greet.txt").read_text(encoding="utf-8") == "goodbye\n"
    log = subprocess.run(
        ["git", "log", "-1", "--format=%s"], cwd=workdir, capture_output=True, text=True
    )
    assert log.stdout.strip() == "Say goodbye"


def test_edit_outside_project_root_is_refused(cli_env, monkeypatch):
    workdir = cli_env.parent / "work"
    outside = cli_env.parent / "outside.txt"
    outside.write_text("hello\n", encoding="utf-8")
    monkeypatch.setenv(
        "MOCK_LLM_CONTENT",
        f"Escape\n{outside}\n<<<<<<< SEARCH\nhello\n=======\ngoodbye\n>>>>>>> REPLACE\n",
    )
    invoke("profile", "--set-project-root", str(workdir))

    result = invoke("send", "escape", "--new")

    assert result.exit_code == 1
    assert "outside the project root" in result.output
    assert outside.read_text(encoding="utf-8") == "hello\n"
    assert "Added assistant message" not in result.output


def test_preview_text_truncates_and_flattens():
    assert preview_text("a\nb") == "a b"
    assert preview_text("x" * 100) == "x" * 70
