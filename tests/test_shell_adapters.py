from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

import pytest

from dodder.errors import InvalidWorkingDirectory, UserCancelled
from dodder.shell import base as shell_base
from dodder.shell import (
    CmdAdapter,
    PosixShellAdapter,
    PowerShellAdapter,
    create_shell_adapter,
    resolve_shell,
)


class FakePopen:
    """Stands in for ``subprocess.Popen`` and records how it was invoked."""

    instances: list[FakePopen] = []
    returncode_value = 0
    stdout = b"hi\n"
    stderr = b""
    first_communicate_error: BaseException | None = None
    later_communicate_error: BaseException | None = None

    def __init__(self, args: list[str], **kwargs: object) -> None:
        self.args = args
        self.kwargs = kwargs
        self.returncode: int | None = None
        self.killed = False
        self.communicate_calls = 0
        self.communicate_timeouts: list[float | None] = []
        self.pid = 40000 + len(FakePopen.instances)
        # No real pipes; the class-level stdout/stderr are the canned output.
        self.stdout = None
        self.stderr = None
        FakePopen.instances.append(self)

    def communicate(self, timeout: float | None = None) -> tuple[bytes, bytes]:
        self.communicate_calls += 1
        self.communicate_timeouts.append(timeout)
        if self.communicate_calls == 1 and FakePopen.first_communicate_error is not None:
            raise FakePopen.first_communicate_error
        if self.communicate_calls > 1 and FakePopen.later_communicate_error is not None:
            raise FakePopen.later_communicate_error
        self.returncode = -9 if self.killed else FakePopen.returncode_value
        return FakePopen.stdout, FakePopen.stderr

    def kill(self) -> None:
        self.killed = True


def fake_killpg(pgid: int, sig: int) -> None:
    for process in FakePopen.instances:
        if process.pid == pgid:
            process.killed = True


@pytest.fixture
def fake_popen(monkeypatch: pytest.MonkeyPatch) -> type[FakePopen]:
    FakePopen.instances = []
    FakePopen.returncode_value = 0
    FakePopen.stdout = b"hi\n"
    FakePopen.stderr = b""
    FakePopen.first_communicate_error = None
    FakePopen.later_communicate_error = None
    monkeypatch.setattr(subprocess, "Popen", FakePopen)
    monkeypatch.setattr(shell_base.os, "killpg", fake_killpg, raising=False)
    return FakePopen


@pytest.mark.parametrize(
    ("factory_input", "expected_type"),
    [
        ("powershell", PowerShellAdapter),
        ("pwsh", PowerShellAdapter),
        ("cmd", CmdAdapter),
        ("bash", PosixShellAdapter),
        ("zsh", PosixShellAdapter),
        ("/usr/bin/fish", PosixShellAdapter),
    ],
)
def test_create_shell_adapter(factory_input: str, expected_type: type[object]) -> None:
    adapter = create_shell_adapter(factory_input)
    assert isinstance(adapter, expected_type)


def test_create_shell_adapter_invalid() -> None:
    with pytest.raises(ValueError, match="Unsupported shell adapter"):
        create_shell_adapter("tcsh-ish")


def test_resolve_shell_prefers_configured_posix_shell() -> None:
    adapter = resolve_shell({"SHELL": "/usr/bin/zsh"}, os_name="posix")
    assert isinstance(adapter, PosixShellAdapter)
    assert adapter.executable == "/usr/bin/zsh"
    assert adapter.name == "zsh"


def test_resolve_shell_falls_back_to_bin_sh() -> None:
    adapter = resolve_shell({}, os_name="posix")
    assert adapter.executable == "/bin/sh"


def test_resolve_shell_windows_prefers_powershell() -> None:
    adapter = resolve_shell({"PSModulePath": "C:\\modules"}, os_name="nt")
    assert isinstance(adapter, PowerShellAdapter)


def test_resolve_shell_windows_uses_comspec() -> None:
    adapter = resolve_shell({"COMSPEC": "D:\\cmd.exe"}, os_name="nt")
    assert isinstance(adapter, CmdAdapter)
    assert adapter.executable == "D:\\cmd.exe"


def test_resolve_shell_windows_default_comspec() -> None:
    adapter = resolve_shell({}, os_name="nt")
    assert adapter.executable == "C:\\Windows\\System32\\cmd.exe"


def test_execute_rejects_missing_directory_before_spawning(
    fake_popen: type[FakePopen], tmp_path: Path
) -> None:
    with pytest.raises(InvalidWorkingDirectory):
        PosixShellAdapter("/bin/sh").execute("echo hi", cwd=str(tmp_path / "missing"))
    assert fake_popen.instances == []


def test_posix_adapter_command_formatting(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    result = PosixShellAdapter("/bin/bash").execute("echo hi", cwd=str(tmp_path))

    process = fake_popen.instances[0]
    assert process.args == ["/bin/bash", "-c", "echo hi"]
    assert process.kwargs["cwd"] == str(tmp_path)
    assert result.success is True
    assert result.stdout == "hi\n"
    assert result.shell == "bash"


def test_powershell_adapter_command_formatting(
    fake_popen: type[FakePopen], tmp_path: Path
) -> None:
    PowerShellAdapter(executable="pwsh").execute("Write-Output hi", cwd=str(tmp_path))

    assert fake_popen.instances[0].args == [
        "pwsh",
        "-NoProfile",
        "-NonInteractive",
        "-Command",
        "Write-Output hi",
    ]


def test_cmd_adapter_command_formatting(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    CmdAdapter(executable="cmd.exe").execute("dir", cwd=str(tmp_path))

    assert fake_popen.instances[0].args == ["cmd.exe", "/d", "/s", "/c", "dir"]


def test_non_zero_exit_is_a_failure_result(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    fake_popen.returncode_value = 3
    fake_popen.stderr = b"boom"

    result = PosixShellAdapter("/bin/sh").execute("false", cwd=str(tmp_path))

    assert result.success is False
    assert result.returncode == 3
    assert result.stderr == "boom"
    assert result.error == "Command exited with status 3."


def test_timeout_kills_process_and_keeps_partial_output(
    fake_popen: type[FakePopen], tmp_path: Path
) -> None:
    fake_popen.first_communicate_error = subprocess.TimeoutExpired(cmd="sleep", timeout=1)
    fake_popen.stdout = b"partial"

    result = PosixShellAdapter("/bin/sh").execute("sleep 100", cwd=str(tmp_path), timeout=1)

    assert fake_popen.instances[0].killed is True
    assert result.timed_out is True
    assert result.returncode == 124
    assert result.success is False
    assert result.stdout == "partial"


def test_keyboard_interrupt_cancels_process(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    fake_popen.first_communicate_error = KeyboardInterrupt()
    fake_popen.stdout = b"halfway"

    with pytest.raises(UserCancelled) as exc_info:
        PosixShellAdapter("/bin/sh").execute("npm install", cwd=str(tmp_path))

    assert fake_popen.instances[0].killed is True
    partial = exc_info.value.result
    assert partial is not None
    assert partial.cancelled is True
    assert partial.stdout == "halfway"


def test_missing_executable_is_a_failure_result(tmp_path: Path) -> None:
    missing_executable = str(tmp_path / "no-such-shell")

    result = PosixShellAdapter(missing_executable).execute("echo hi", cwd=str(tmp_path))

    assert result.success is False
    assert result.returncode == 127
    assert missing_executable in result.stderr


def test_secrets_are_masked_in_request_log(
    fake_popen: type[FakePopen], tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level("INFO", logger="dodder.shell.base"):
        PosixShellAdapter("/bin/sh").execute("deploy --token abc123", cwd=str(tmp_path))

    request_record = next(record for record in caplog.records if record.msg == "command_request")
    assert request_record.command == "deploy --token ***"


@pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
def test_posix_adapter_runs_real_echo(tmp_path: Path) -> None:
    result = PosixShellAdapter("/bin/sh").execute("echo hello", cwd=str(tmp_path))

    assert result.success is True
    assert result.stdout == "hello\n"


@pytest.mark.skipif(os.name == "nt", reason="requires process groups")
def test_timeout_kills_whole_process_group(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    fake_popen.first_communicate_error = subprocess.TimeoutExpired(cmd="sleep", timeout=1)

    PosixShellAdapter("/bin/sh").execute("sleep 100", cwd=str(tmp_path), timeout=1)

    process = fake_popen.instances[0]
    assert process.kwargs["start_new_session"] is True
    assert process.killed is True
    assert process.communicate_timeouts == [1, shell_base.KILL_GRACE_SECONDS]


def test_timeout_returns_when_pipes_stay_open(fake_popen: type[FakePopen], tmp_path: Path) -> None:
    fake_popen.first_communicate_error = subprocess.TimeoutExpired(cmd="sleep", timeout=1)
    fake_popen.later_communicate_error = subprocess.TimeoutExpired(
        cmd="sleep", timeout=shell_base.KILL_GRACE_SECONDS, output=b"so far"
    )

    result = PosixShellAdapter("/bin/sh").execute("sleep 100 &", cwd=str(tmp_path), timeout=1)

    assert result.timed_out is True
    assert result.returncode == 124
    assert result.stdout == "so far"


@pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
def test_timeout_does_not_wait_for_child_processes(tmp_path: Path) -> None:
    started = time.monotonic()

    result = PosixShellAdapter("/bin/sh").execute(
        "sleep 6; echo done", cwd=str(tmp_path), timeout=0.5
    )

    assert time.monotonic() - started < 4
    assert result.timed_out is True
    assert result.success is False
    assert "done" not in result.stdout
