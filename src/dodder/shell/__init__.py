"""Shell adapter implementations and host shell resolution."""

from __future__ import annotations

import os
from collections.abc import Mapping

from .base import ShellAdapter
from .cmd_adapter import DEFAULT_COMSPEC, CmdAdapter
from .posix_adapter import DEFAULT_POSIX_SHELL, PosixShellAdapter
from .powershell_adapter import PowerShellAdapter


def create_shell_adapter(shell_name: str) -> ShellAdapter:
    """Build an adapter from an explicit shell name or executable path."""
    normalized = shell_name.strip()
    lowered = normalized.lower()
    if lowered in {"cmd", "cmd.exe"}:
        return CmdAdapter()
    if lowered in {"powershell", "pwsh", "powershell.exe", "pwsh.exe"}:
        return PowerShellAdapter(executable=None if lowered == "powershell" else normalized)
    if lowered in {"sh", "bash", "zsh", "dash", "ksh", "fish"}:
        return PosixShellAdapter(executable=normalized)
    if "/" in normalized:
        return PosixShellAdapter(executable=normalized)
    msg = f"Unsupported shell adapter: {shell_name}"
    raise ValueError(msg)


def resolve_shell(
    environ: Mapping[str, str] | None = None,
    *,
    os_name: str | None = None,
) -> ShellAdapter:
    """Pick the host shell: the user's configured shell, else the platform default.

    Windows prefers PowerShell when ``PSModulePath`` is set and otherwise uses
    ``COMSPEC``; POSIX hosts use ``$SHELL`` and fall back to ``/bin/sh``.
    """
    env = os.environ if environ is None else environ
    platform_name = os.name if os_name is None else os_name
    if platform_name == "nt":
        if env.get("PSModulePath"):
            return PowerShellAdapter(executable="powershell.exe")
        return CmdAdapter(executable=env.get("COMSPEC") or DEFAULT_COMSPEC)
    return PosixShellAdapter(executable=env.get("SHELL") or DEFAULT_POSIX_SHELL)


__all__ = [
    "CmdAdapter",
    "PosixShellAdapter",
    "PowerShellAdapter",
    "ShellAdapter",
    "create_shell_adapter",
    "resolve_shell",
]
