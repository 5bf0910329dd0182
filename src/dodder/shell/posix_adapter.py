"""POSIX shell adapter implementation."""

from __future__ import annotations

import os

from .base import ShellAdapter

DEFAULT_POSIX_SHELL = "/bin/sh"


class PosixShellAdapter(ShellAdapter):
    """Adapter for command execution via the user's POSIX shell (``$SHELL``)."""

    def __init__(self, executable: str | None = None) -> None:
        super().__init__(executable or DEFAULT_POSIX_SHELL)

    @property
    def name(self) -> str:
        return os.path.basename(self.executable) or "sh"

    def build_args(self, command: str) -> list[str]:
        return [self.executable, "-c", command]
