"""
Tests for shell execution — timeouts, summaries and output handling
"""

import asyncio
import sys

import pytest

from little_helper.skills.base import Mode, SkillContext
from little_helper.skills.safety import CommandRejected, RejectionCategory
from little_helper.skills.shell import (
    MAX_OUTPUT_CHARS, combine_output, execute_command, parse_progress, summarize,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs sh")


@posix_only
class TestExecuteCommand:
    """execute_command against a real shell."""

    def test_success(self):
        """stdout is captured and the exit code is 0."""
        result = asyncio.run(execute_command("echo hello"))
        assert result.success
        assert result.exit_code == 0
        assert result.stdout == "hello\n"
        assert result.summary.startswith("Complete (")

    def test_nonzero_exit(self):
        """A failing command is a result, not an exception."""
        result = asyncio.run(execute_command("exit 3"))
        assert not result.success
        assert result.exit_code == 3
        assert result.summary.startswith("Command failed")

    def test_timeout(self):
        """Commands past the timeout are killed."""
        result = asyncio.run(execute_command("sleep 5", timeout=0.1))
        assert not result.success
        assert result.output == "Command timed out after 0.1 seconds"
        assert result.duration_ms < 2000

    def test_timeout_kills_child_processes(self):
        """Processes the shell started are killed with it."""
        result = asyncio.run(execute_command("sleep 5 | cat", timeout=0.1))
        assert result.summary == "Timed out after 0.1s"
        assert result.duration_ms < 2000

    def test_runs_in_given_folder(self, tmp_path):
        """cwd sets where relative names resolve."""
        (tmp_path / "here.txt").write_text("found")
        result = asyncio.run(execute_command("cat here.txt", cwd=tmp_path))
        assert result.stdout == "found"

    def test_blocked_command_never_runs(self, tmp_path):
        """Blocked commands return at once."""
        result = asyncio.run(execute_command("mkfs /dev/null"))
        assert not result.success
        assert result.summary == "Command blocked for safety"
        assert result.duration_ms == 0

    def test_context_validates_before_running(self, tmp_path):
        """SkillContext.execute_command checks allowed_dirs first, then runs in working_dir."""
        (tmp_path / "a.txt").write_text("x")
        ctx = SkillContext(Mode.FIX, tmp_path, working_dir=tmp_path, allowed_dirs=[str(tmp_path)])

        result = asyncio.run(ctx.execute_command("ls"))
        assert result.stdout.split() == ["a.txt"]

        with pytest.raises(CommandRejected):
            asyncio.run(ctx.execute_command("ls /etc"))

    def test_context_blocks_relative_secrets(self, tmp_path):
        """A dotenv file next to the working dir's other files is never read."""
        (tmp_path / ".env").write_text("TOKEN=secret")
        ctx = SkillContext(Mode.FIX, tmp_path, working_dir=tmp_path, allowed_dirs=[str(tmp_path)])

        with pytest.raises(CommandRejected) as exc:
            asyncio.run(ctx.execute_command("cat .env"))
        assert exc.value.category == RejectionCategory.SENSITIVE_PATH

    def test_context_outside_allowed_working_dir(self, tmp_path):
        """A context whose working dir is not allowed cannot run commands."""
        allowed = tmp_path / "allowed"
        allowed.mkdir()
        ctx = SkillContext(Mode.FIX, tmp_path, working_dir=tmp_path, allowed_dirs=[str(allowed)])

        with pytest.raises(CommandRejected):
            asyncio.run(ctx.execute_command("ls"))


class TestSummaries:
    """summarize / combine_output / parse_progress."""

    def test_summaries(self):
        """Common commands get friendly one-liners."""
        assert summarize("ls", "a\nb\n", "", True, 5) == "Found 2 items (5ms)"
        assert summarize("grep x f", "", "", True, 5) == "No matches found"
        assert summarize("git status", "nothing to commit", "", True, 5) == "Working tree clean"
        assert summarize("mkdir d", "", "", True, 5) == "Directory created"
        assert summarize("foo", "", "sh: foo: command not found", False, 5) == "'foo' is not installed"
        assert summarize("cat x", "", "cat: x: No such file or directory", False, 5) == \
            "File or directory not found"

    def test_combine_and_truncate(self):
        """stderr follows stdout; long output is truncated with a note."""
        assert combine_output("out", "err") == "out\nerr"
        assert combine_output("", "err") == "err"
        long = combine_output("x" * (MAX_OUTPUT_CHARS + 10), "")
        assert long.startswith("x" * MAX_OUTPUT_CHARS)
        assert long.endswith(f"[Output truncated, {MAX_OUTPUT_CHARS + 10} bytes total]")

    def test_parse_progress(self):
        """The last percentage up to 100 wins."""
        assert parse_progress("10% ... 55% ... 150%") == 55
        assert parse_progress("no numbers here") is None
