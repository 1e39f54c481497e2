"""
Shell — Run a command with a timeout and summarize the outcome

Commands run through `sh -c`. Blocked commands never start. Combined output
is truncated for display; stdout and stderr are kept whole.
"""

import asyncio
import logging
import os
import re
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .safety import DangerLevel, classify_command

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 10000

_PERCENT = re.compile(r"(\d{1,3})%")


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    output: str          # combined, truncated
    duration_ms: int
    success: bool
    summary: str
    needed_sudo: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "summary": self.summary,
            "needed_sudo": self.needed_sudo,
        }


def _failed(command: str, message: str, summary: str, duration_ms: int = 0) -> CommandResult:
    return CommandResult(command=command, exit_code=-1, stdout="", stderr=message,
                         output=message, duration_ms=duration_ms, success=False, summary=summary)


def combine_output(stdout: str, stderr: str) -> str:
    combined = stdout
    if stderr:
        combined = f"{combined}\n{stderr}" if combined else stderr
    if len(combined) > MAX_OUTPUT_CHARS:
        total = len(combined.encode("utf-8"))
        combined = f"{combined[:MAX_OUTPUT_CHARS]}...\n[Output truncated, {total} bytes total]"
    return combined


async def execute_command(command: str, timeout: float = 60.0,
                          cwd: Optional[Path] = None) -> CommandResult:
    """
    Run `command` in `cwd` and return a CommandResult. Never raises for
    command failures.

    The shell gets its own process group; on timeout the whole group is
    killed, so children it started do not outlive the call.
    """
    if classify_command(command) == DangerLevel.BLOCKED:
        return _failed(command, "This command is blocked for safety reasons.",
                       "Command blocked for safety")

    start = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            "sh", "-c", command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        return _failed(command, str(e), f"Command failed: {e}")

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        _kill_group(process)
        await process.wait()
        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("Command timed out after %ss", timeout)
        return CommandResult(
            command=command, exit_code=-1, stdout="", stderr="Command timed out",
            output=f"Command timed out after {timeout:g} seconds", duration_ms=elapsed,
            success=False, summary=f"Timed out after {timeout:g}s",
        )

    elapsed = int((time.monotonic() - start) * 1000)
    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")
    exit_code = process.returncode if process.returncode is not None else -1
    success = exit_code == 0

    return CommandResult(
        command=command,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        output=combine_output(stdout, stderr),
        duration_ms=elapsed,
        success=success,
        summary=summarize(command, stdout, stderr, success, elapsed),
        needed_sudo=any(s in stderr for s in ("Permission denied", "Operation not permitted", "password")),
    )


def _kill_group(process) -> None:
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass  # already gone


def summarize(command: str, stdout: str, stderr: str, success: bool, duration_ms: int) -> str:
    """One-line, user-friendly description of what happened."""
    parts = command.split()
    base = parts[0] if parts else command

    if not success:
        if "command not found" in stderr:
            return f"'{base}' is not installed"
        if "No such file" in stderr:
            return "File or directory not found"
        if "Permission denied" in stderr:
            return "Permission denied - may need admin access"
        return f"Command failed ({duration_ms}ms)"

    lines = len(stdout.splitlines())
    if base in ("ls", "find", "tree"):
        return f"Found {lines} items ({duration_ms}ms)"
    if base in ("grep", "rg", "ag"):
        return "No matches found" if lines == 0 else f"Found {lines} matches ({duration_ms}ms)"
    if base in ("cat", "head", "tail"):
        return f"Displayed {lines} lines ({duration_ms}ms)"
    if base in ("cp", "mv"):
        return "File operation complete"
    if base == "mkdir":
        return "Directory created"
    if base == "git":
        if "status" in command:
            return "Working tree clean" if "nothing to commit" in stdout else "Changes detected"
        return f"Git operation complete ({duration_ms}ms)"
    return f"Complete ({duration_ms}ms)"


def parse_progress(output: str) -> Optional[int]:
    """The last percentage (0-100) mentioned in the output, if any."""
    last = None
    for match in _PERCENT.finditer(output):
        value = int(match.group(1))
        if value <= 100:
            last = value
    return last
