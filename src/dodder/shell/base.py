"""Base shell adapter: runs one command string and captures its output."""

from __future__ import annotations

import abc
import locale
import logging
import os
import re
import signal
import subprocess
import time
from typing import Any
from pathlib import Path

from dodder.agent.models import ExecutionResult
from dodder.errors import InvalidWorkingDirectory, UserCancelled

LOGGER = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124
NOT_FOUND_RETURNCODE = 127
CANCELLED_RETURNCODE = 130
KILL_GRACE_SECONDS = 2.0

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


class ShellAdapter(abc.ABC):
    """Abstract adapter for shell-specific command execution."""

    def __init__(self, executable: str) -> None:
        self.executable = executable

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_args(self, command: str) -> list[str]:
        """Return the argv that runs ``command`` through this shell."""

    def execute(
        self,
        command: str,
        *,
        cwd: str,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Execute a shell command in ``cwd`` and return a normalized result.

        Raises:
            InvalidWorkingDirectory: ``cwd`` is not an existing directory.
            UserCancelled: interrupted by the user; carries the partial result.
        """
        if not Path(cwd).is_dir():
            raise InvalidWorkingDirectory(cwd)

        self.log_request(command, cwd=cwd, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                self.build_args(command),
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **_process_group_options(),
            )
        except OSError as exc:
            result = ExecutionResult(
                command=command,
                shell=self.name,
                stdout="",
                stderr=f"{self.name} executable could not be started: {self.executable}",
                success=False,
                returncode=NOT_FOUND_RETURNCODE,
                error=str(exc),
                duration_seconds=self.monotonic_now() - started,
            )
            self.log_result(result)
            return result

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            stdout, stderr = self.stop_process(process)
            result = ExecutionResult(
                command=command,
                shell=self.name,
                stdout=normalize_output(stdout),
                stderr=normalize_output(stderr),
                success=False,
                returncode=TIMEOUT_RETURNCODE,
                error=f"Command timed out after {timeout:.1f}s and was terminated.",
                duration_seconds=self.monotonic_now() - started,
                timed_out=True,
            )
            self.log_result(result)
            return result
        except KeyboardInterrupt:
            stdout, stderr = self.stop_process(process)
            result = ExecutionResult(
                command=command,
                shell=self.name,
                stdout=normalize_output(stdout),
                stderr=normalize_output(stderr),
                success=False,
                returncode=CANCELLED_RETURNCODE,
                error="Command cancelled by user; output is incomplete.",
                duration_seconds=self.monotonic_now() - started,
                cancelled=True,
            )
            self.log_result(result)
            raise UserCancelled(result) from None

        returncode = process.returncode
        result = ExecutionResult(
            command=command,
            shell=self.name,
            stdout=normalize_output(stdout),
            stderr=normalize_output(stderr),
            success=returncode == 0,
            returncode=returncode,
            error=None if returncode == 0 else f"Command exited with status {returncode}.",
            duration_seconds=self.monotonic_now() - started,
        )
        self.log_result(result)
        return result

    def stop_process(
        self, process: subprocess.Popen[bytes]
    ) -> tuple[bytes | None, bytes | None]:
        """Kill the command with everything it spawned and collect the partial output.

        Children that escaped the process group can keep the pipes open; the
        wait for output is bounded and whatever arrived so far is returned.
        """
        kill_process_tree(process)
        try:
            return process.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired as exc:
            LOGGER.warning(
                "command_pipes_held_open",
                extra={"shell": self.name, "pid": process.pid, "grace": KILL_GRACE_SECONDS},
            )
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            return exc.stdout, exc.stderr

    def log_request(self, command: str, *, cwd: str, timeout: float | None) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": sanitize_command(command),
                "cwd": cwd,
                "timeout": timeout,
            },
        )

    def log_result(self, result: ExecutionResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "success": result.success,
                "timed_out": result.timed_out,
                "cancelled": result.cancelled,
                "duration_seconds": round(result.duration_seconds, 4),
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()


def kill_process_tree(process: subprocess.Popen[bytes]) -> None:
    """Kill the process group started for one command."""
    if os.name == "nt":
        try:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(process.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as exc:
            LOGGER.warning("taskkill_failed", extra={"pid": process.pid, "error": str(exc)})
        process.kill()
        return

    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()


def _process_group_options() -> dict[str, Any]:
    # Each command gets its own group so a timeout or cancel reaches its children.
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def sanitize_command(command: str) -> str:
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "cp1252"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
