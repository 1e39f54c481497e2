"""
Command Safety — Classification and validation of shell commands

Two independent checks:
  classify_command(cmd)  -> DangerLevel, used by hosts to decide whether to ask
  validate_command(cmd, allowed_dirs) -> raises CommandRejected when the
      command chains commands, substitutes output, dumps the environment,
      touches a sensitive path, or reaches outside allowed_dirs

Usage:
    from little_helper.skills.safety import validate_command, CommandRejected

    try:
        validate_command("ls ~/Documents", settings.allowed_dirs)
    except CommandRejected as e:
        print(e.rejection_message())
"""

import os
import shlex
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from ..errors import OperationBlocked
from ..utils.paths import (
    expand_user_path, is_path_in_allowed_dirs, is_sensitive_path, strip_glob_prefix,
)


class DangerLevel(Enum):
    SAFE = "safe"                            # read-only
    NEEDS_CONFIRMATION = "needs_confirmation"  # modifies files, reversible
    DANGEROUS = "dangerous"                  # destructive
    NEEDS_SUDO = "needs_sudo"                # elevated privileges
    BLOCKED = "blocked"                      # never runs


class RejectionCategory(Enum):
    NO_ALLOWED_DIRS = "no_allowed_dirs"
    SHELL_OPERATOR = "shell_operator"
    ENVIRONMENT_DUMP = "environment_dump"
    SENSITIVE_PATH = "sensitive_path"
    OUTSIDE_ALLOWED = "outside_allowed"


class CommandRejected(OperationBlocked):
    """A command failed validation. Carries a category and a suggestion."""

    def __init__(self, message: str, category: RejectionCategory, command: str,
                 suggestion: str = ""):
        super().__init__(message, detail=command)
        self.category = category
        self.command = command
        self.suggestion = suggestion

    def rejection_message(self) -> str:
        lines = [
            f"REJECTED: '{self.command}'",
            "",
            f"Category: {self.category.value}",
            f"Reason: {self.message}",
        ]
        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")
        return "\n".join(lines)


# =============================================================================
# Classification
# =============================================================================

SAFE_COMMANDS = (
    # files
    "ls", "find", "cat", "head", "tail", "wc", "du", "df", "pwd", "file", "stat",
    "tree", "which", "whereis",
    # text
    "grep", "rg", "ag", "sort", "uniq", "cut", "tr", "diff", "comm", "join", "paste", "column",
    # system
    "uname", "hostname", "uptime", "free", "ps", "top", "htop", "lscpu", "lsblk", "lsusb",
    "lspci", "lsof", "id", "whoami", "date", "cal",
    # network
    "ip", "ifconfig", "netstat", "ss", "ping", "nslookup", "dig", "host", "traceroute",
    "curl", "wget",
    # archives
    "tar -tf", "unzip -l", "zipinfo",
    # version control
    "git status", "git log", "git diff", "git show", "git branch", "git remote",
    "git fetch", "git ls-files", "git blame",
    # toolchains
    "node --version", "npm --version", "python --version", "python3 --version",
    "pip --version", "pip3 --version", "cargo --version", "rustc --version",
)

NEEDS_CONFIRMATION = (
    "cp", "mv", "mkdir", "touch", "ln",
    "git add", "git commit", "git push", "git pull", "git merge", "git checkout",
    "git reset", "git stash",
    "pip install", "pip3 install", "npm install", "cargo install",
    "nano", "vim", "nvim", "code",
)

DANGEROUS_COMMANDS = (
    "rm", "rmdir", "shred",
    "chmod", "chown", "chgrp",
    "kill", "killall", "pkill",
    "git reset --hard", "git clean", "git push --force",
    "drop", "delete", "truncate",
)

BLOCKED_COMMANDS = (
    "rm -rf /", "rm -rf /*", ":(){ :|:& };:",
    "mkfs", "dd if=/dev/zero", "dd if=/dev/random",
    "> /dev/sda", ">/dev/sda",
    "format c:",
    "nc -l", "nmap",
)


def _starts_with_word(text: str, prefix: str) -> bool:
    return text == prefix or text.startswith(prefix + " ")


def classify_command(command: str) -> DangerLevel:
    """Blocked list first, then sudo, dangerous, confirmation, safe; unknown needs confirmation."""
    cmd = command.strip().lower()

    if any(blocked in cmd for blocked in BLOCKED_COMMANDS):
        return DangerLevel.BLOCKED
    if cmd.startswith("sudo "):
        return DangerLevel.NEEDS_SUDO
    for dangerous in DANGEROUS_COMMANDS:
        if _starts_with_word(cmd, dangerous) or f" {dangerous} " in f"{cmd} ":
            return DangerLevel.DANGEROUS
    if any(_starts_with_word(cmd, confirm) for confirm in NEEDS_CONFIRMATION):
        return DangerLevel.NEEDS_CONFIRMATION
    if any(_starts_with_word(cmd, safe) for safe in SAFE_COMMANDS):
        return DangerLevel.SAFE
    return DangerLevel.NEEDS_CONFIRMATION


# =============================================================================
# Validation
# =============================================================================

def find_forbidden_operator(command: str) -> Optional[str]:
    """
    First chaining or substitution operator that the shell would act on, or None.

    Pipes and simple redirects are allowed, including `2>&1`.
    """
    in_single = in_double = False
    prev = ""
    i = 0
    while i < len(command):
        c = command[i]
        nxt = command[i + 1] if i + 1 < len(command) else ""
        if c == "\\":
            prev = c
            i += 2
            continue
        if c == "'" and not in_double:
            in_single = not in_single
        elif c == '"' and not in_single:
            in_double = not in_double
        elif in_double:
            # sh still substitutes inside double quotes
            if c == "`":
                return "`"
            if c == "$" and nxt == "(":
                return "$()"
        elif not in_single:
            if c == ";":
                return ";"
            if c == "&":
                if nxt == "&":
                    return "&&"
                if not (prev == ">" or (prev.isdigit() and nxt == ">")):
                    return "&"
            if c == "|" and nxt == "|":
                return "||"
            if c == "`":
                return "`"
            if c == "$" and nxt == "(":
                return "$()"
            if c == "<" and nxt == "<":
                return "<<"
        prev = c
        i += 1
    return None


def _tokens(command: str) -> List[str]:
    """Shell words, with pipe and redirect operators as their own tokens."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    return list(lexer)


def command_paths(command: str) -> Iterator[Tuple[str, bool]]:
    """
    Arguments that may name a file, as (text, is_redirect_target).

    Command words are skipped unless they contain a separator; flag values
    (`--out=x`) are included. Raises ValueError on an unclosed quote.
    """
    expect_command = True
    redirect = False
    for token in _tokens(command):
        if not token:
            continue
        if token[0] in "();|&<>":
            if token[0] in "<>" or token.startswith("&>"):
                redirect = True
            else:
                expect_command = True
            continue
        if redirect:
            redirect = False
            if not token.isdigit() and token != "-":
                yield token, True
            continue
        if expect_command:
            expect_command = False
            if "/" in token or "\\" in token:
                yield token, False
            continue
        if token.startswith("-"):
            _, sep, value = token.partition("=")
            if sep and value:
                yield value, False
            continue
        yield token, False


def _looks_like_path(text: str) -> bool:
    return "/" in text or "\\" in text or text.startswith((".", "~"))


def validate_command(command: str, allowed_dirs: Iterable[str],
                     working_dir: Optional[Path] = None) -> None:
    """
    Raise CommandRejected unless the command may run against allowed_dirs.

    Relative arguments resolve against `working_dir` (the process cwd when
    None). A given working_dir must itself be inside an allowed folder.
    """
    allowed = [d for d in allowed_dirs if str(d).strip()]
    if not allowed:
        raise CommandRejected(
            "No folders are allowed. Add one in Settings first.",
            RejectionCategory.NO_ALLOWED_DIRS, command,
            suggestion="Add a folder to allowed_dirs",
        )

    operator = find_forbidden_operator(command)
    if operator:
        raise CommandRejected(
            f"This command includes a blocked shell feature ({operator}). "
            "Please run one step at a time.",
            RejectionCategory.SHELL_OPERATOR, command,
            suggestion="Split the command and run each part separately",
        )

    trimmed = command.strip().lower()
    if trimmed == "env" or trimmed.startswith("env ") or trimmed == "printenv" \
            or trimmed.startswith("printenv "):
        raise CommandRejected(
            "For privacy, printing all environment variables is blocked.",
            RejectionCategory.ENVIRONMENT_DUMP, command,
        )

    if working_dir is not None and not is_path_in_allowed_dirs(working_dir, allowed):
        raise CommandRejected(
            f"The working folder `{working_dir}` is outside the allowed folders.",
            RejectionCategory.OUTSIDE_ALLOWED, command,
            suggestion="Run the command from inside an allowed folder",
        )
    base = Path(working_dir) if working_dir is not None else Path.cwd()

    try:
        arguments = list(command_paths(command))
    except ValueError as e:
        raise CommandRejected(
            f"This command could not be read ({e}).",
            RejectionCategory.SHELL_OPERATOR, command,
            suggestion="Check the quotes in the command",
        ) from e

    for raw, is_target in arguments:
        if "://" in raw:
            continue
        text = strip_glob_prefix(raw)
        if not text or text == "/dev/null":
            continue
        candidate = expand_user_path(text)
        if not candidate.is_absolute():
            candidate = base / candidate
        if is_sensitive_path(raw) or is_sensitive_path(candidate):
            raise CommandRejected(
                f"This command touches a sensitive path (`{raw}`). "
                "For safety, this is blocked by default.",
                RejectionCategory.SENSITIVE_PATH, command,
            )
        exists = os.path.exists(candidate)
        # bare words (patterns, names) only count when they name something here
        if not (is_target or exists or _looks_like_path(text)):
            continue
        # redirect targets may not exist yet; check where they would land
        to_check = candidate if exists else candidate.parent
        if not is_path_in_allowed_dirs(to_check, allowed):
            raise CommandRejected(
                f"Path `{raw}` is outside the allowed folders.",
                RejectionCategory.OUTSIDE_ALLOWED, command,
                suggestion="Add the folder to allowed_dirs or pick a path inside one",
            )
