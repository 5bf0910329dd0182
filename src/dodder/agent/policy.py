"""Deny-list predicate for commands proposed by the model.

The policy errs toward refusal: a command is refused when any segment of it
matches a destructive rule, even if the rest of the command line is benign.
Scripts handed to ``sh -c``/``eval`` and the bodies of ``$(...)`` and
backtick substitutions are checked as commands of their own.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass

_PUNCTUATION = ";&|()<>\n"
_SEGMENT_SPLIT = re.compile(r"\|\||&&|[;|&\n()]")
_SUBSTITUTION = re.compile(r"\$\(([^()]*)\)|`([^`]*)`")
_MAX_NESTING = 5
_PREFIX_WORDS = {"sudo", "doas", "env", "nohup", "time", "command", "exec", "xargs"}
_LEADING_WORDS = {"(", "{", "!", "if", "then", "elif", "else", "do", "while", "until"}
_SHELL_PROGRAMS = {"sh", "bash", "zsh", "dash", "ksh", "ash", "mksh"}
_FIND_EXEC_FLAGS = {"-exec", "-execdir", "-ok", "-okdir"}
_HOME_TARGETS = {"~", "~/", "$HOME", "${HOME}", "$HOME/", "${HOME}/"}
_WILDCARD_TARGETS = {"*", "/*", "./*", "~/*", "$HOME/*", "${HOME}/*", ".*"}
_RECURSIVE_FLAGS = {"--recursive"}

_DENY_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (name, re.compile(pattern, re.IGNORECASE))
    for name, pattern in (
        ("no_preserve_root", r"--no-preserve-root\b"),
        ("make_filesystem", r"(?:^|[\s;&|(])mkfs(?:\.\w+)?\b"),
        ("wipe_filesystem", r"(?:^|[\s;&|(])wipefs\b"),
        ("format_drive", r"(?:^|[\s;&|(])format(?:\.com)?\s+[a-z]:"),
        ("format_volume", r"\b(?:format-volume|clear-disk|initialize-disk)\b"),
        ("diskpart", r"(?:^|[\s;&|(])diskpart\b"),
        ("raw_device_dd", r"\bdd\b[^\n]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)"),
        (
            "raw_device_redirect",
            r">\s*/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d|mmcblk\d|disk\d|rdisk\d)",
        ),
        ("shred_device", r"\bshred\b[^\n]*\s/dev/"),
        ("fork_bomb", r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
        ("power_off", r"(?:^|[\s;&|(])(?:shutdown|reboot|halt|poweroff)\b"),
        ("stop_computer", r"\b(?:stop-computer|restart-computer)\b"),
        ("windows_drive_delete", r"\b(?:rd|rmdir|del|erase)\b[^\n]*/s\b[^\n]*\b[a-z]:\\?(?:\*)?(?:\s|$)"),
        (
            "windows_drive_remove_item",
            r"\b(?:remove-item|ri)\b[^\n]*-recurse\b[^\n]*\b[a-z]:\\?(?:\*)?(?:[\s'\"]|$)",
        ),
    )
]


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Outcome of evaluating one command against the deny-list."""

    allowed: bool
    rule: str | None = None
    detail: str | None = None


def check_command(command: str) -> PolicyDecision:
    """Return whether ``command`` may be executed."""
    return _check(command, depth=0)


def is_destructive(command: str) -> bool:
    return not check_command(command).allowed


def _check(command: str, *, depth: int) -> PolicyDecision:
    if depth > _MAX_NESTING:
        return PolicyDecision(
            allowed=False,
            rule="shell_nesting",
            detail=f"more than {_MAX_NESTING} nested shell invocations",
        )

    for name, pattern in _DENY_PATTERNS:
        match = pattern.search(command)
        if match:
            return PolicyDecision(allowed=False, rule=name, detail=match.group(0).strip())

    for match in _SUBSTITUTION.finditer(command):
        decision = _check(match.group(1) or match.group(2) or "", depth=depth + 1)
        if not decision.allowed:
            return decision

    for words in _split_segments(command):
        decision = _check_segment(words, depth=depth)
        if not decision.allowed:
            return decision
    return PolicyDecision(allowed=True)


def _split_segments(command: str) -> list[list[str]]:
    """Tokenize ``command`` and split it on control operators, respecting quotes."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=_PUNCTUATION)
    lexer.whitespace = " \t\r"
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        tokens = list(lexer)
    except ValueError:
        # Unbalanced quotes or a dangling escape: fall back to a plain split.
        unquoted = command.replace("'", " ").replace('"', " ")
        return [segment.split() for segment in _SEGMENT_SPLIT.split(unquoted)]

    segments: list[list[str]] = [[]]
    for token in tokens:
        if token and all(char in _PUNCTUATION for char in token):
            segments.append([])
        else:
            segments[-1].append(token)
    return [segment for segment in segments if segment]


def _check_segment(words: list[str], *, depth: int) -> PolicyDecision:
    while words and (
        words[0] in _PREFIX_WORDS
        or words[0] in _LEADING_WORDS
        or "=" in words[0]
        or words[0].startswith("-")
    ):
        words = words[1:]
    if not words:
        return PolicyDecision(allowed=True)

    program = words[0].rsplit("/", 1)[-1].lower()
    args = words[1:]
    if program in _SHELL_PROGRAMS:
        script = _inline_script(args)
        if script is None:
            return PolicyDecision(allowed=True)
        return _check(script, depth=depth + 1)
    if program == "eval":
        return _check(" ".join(args), depth=depth + 1)
    if program == "find":
        return _check_find(args)
    if program not in {"rm", "chmod", "chown", "chgrp"}:
        return PolicyDecision(allowed=True)
    return _check_recursive_root_operation(program, args)


def _inline_script(args: list[str]) -> str | None:
    """Return the script passed to a shell with ``-c`` (also ``-lc``, ``-ec``...)."""
    for index, arg in enumerate(args):
        if arg.startswith("-") and not arg.startswith("--") and "c" in arg[1:]:
            return " ".join(args[index + 1 :]) or None
    return None


def _check_find(args: list[str]) -> PolicyDecision:
    start_points = []
    for arg in args:
        if arg.startswith("-") or arg in {"(", "!"}:
            break
        start_points.append(arg)

    deletes = "-delete" in args or any(
        flag in _FIND_EXEC_FLAGS
        and index + 1 < len(args)
        and args[index + 1].rsplit("/", 1)[-1].lower() in {"rm", "shred"}
        for index, flag in enumerate(args)
    )
    if not deletes:
        return PolicyDecision(allowed=True)

    for target in start_points:
        # "." stays allowed as a start point; "rm -rf ." does not.
        if target in {".", "./"}:
            continue
        if _is_root_level_target(target):
            return PolicyDecision(
                allowed=False,
                rule="find_delete_root",
                detail=f"find {target}",
            )
    return PolicyDecision(allowed=True)


def _check_recursive_root_operation(program: str, args: list[str]) -> PolicyDecision:
    if not _has_recursive_flag(program, args):
        return PolicyDecision(allowed=True)

    for target in (arg for arg in args if not arg.startswith("-")):
        if _is_root_level_target(target):
            return PolicyDecision(
                allowed=False,
                rule=f"recursive_{program}_root",
                detail=f"{program} {target}",
            )
    return PolicyDecision(allowed=True)


def _has_recursive_flag(program: str, args: list[str]) -> bool:
    for arg in args:
        if arg in _RECURSIVE_FLAGS:
            return True
        if arg.startswith("-") and not arg.startswith("--"):
            flags = arg[1:]
            if "R" in flags or (program == "rm" and "r" in flags):
                return True
    return False


def _is_root_level_target(target: str) -> bool:
    if target in _HOME_TARGETS or target in _WILDCARD_TARGETS:
        return True
    normalized = target.rstrip("/") or "/"
    if normalized in {"/", "/.", "/..", "."}:
        return True
    if normalized.startswith("/"):
        # "/etc", "/usr/*" and "/home/" are root level; "/tmp/build" is not.
        parts = [part for part in normalized.split("/") if part and part != "*"]
        return len(parts) <= 1
    if normalized.startswith(("~/", "$HOME/", "${HOME}/")):
        parts = [part for part in normalized.split("/")[1:] if part and part != "*"]
        return not parts
    return False
