"""Windows Command Prompt adapter."""

from __future__ import annotations

from .base import ShellAdapter

DEFAULT_COMSPEC = "C:\\Windows\\System32\\cmd.exe"


class CmdAdapter(ShellAdapter):
    """Adapter for command execution via ``cmd.exe``."""

    def __init__(self, executable: str | None = None) -> None:
        super().__init__(executable or DEFAULT_COMSPEC)

    @property
    def name(self) -> str:
        return "cmd"

    def build_args(self, command: str) -> list[str]:
        return [self.executable, "/d", "/s", "/c", command]
