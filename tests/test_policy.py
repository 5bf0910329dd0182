from __future__ import annotations

import pytest

from dodder.agent.policy import check_command, is_destructive


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "rm -rf /*",
        "sudo rm -rf /",
        "rm -fr ~",
        "rm -r -f $HOME",
        "rm --recursive --force /etc",
        "rm -rf /usr/",
        "cd build && rm -rf /",
        "rm -rf *",
        "rm -rf .",
        "rm --no-preserve-root -rf /",
        "chmod -R 777 /",
        "chown -R nobody /var",
        "mkfs.ext4 /dev/sda1",
        "sudo wipefs -a /dev/nvme0n1",
        "dd if=/dev/zero of=/dev/sda bs=1M",
        "cat image.iso > /dev/sdb",
        "shred -n 3 /dev/sda",
        ":(){ :|:& };:",
        "format C:",
        "Format-Volume -DriveLetter D",
        "rd /s /q C:\\",
        "Remove-Item -Recurse -Force C:\\",
        "shutdown -h now",
    ],
)
def test_destructive_commands_are_refused(command: str) -> None:
    decision = check_command(command)
    assert decision.allowed is False
    assert decision.rule
    assert is_destructive(command) is True


@pytest.mark.parametrize(
    "command",
    [
        "echo hello",
        "ls -la",
        "rm -rf ./build",
        "rm -rf build dist",
        "rm -rf /tmp/dodder-build",
        "rm notes.txt",
        "rm -f /etc/app.conf.bak",
        "dd if=/dev/zero of=disk.img bs=1M count=10",
        "echo done > /dev/null",
        "npm init -y && npm install react",
        "chmod +x run.sh",
        "git format-patch HEAD~1",
        "Remove-Item -Recurse -Force .\\node_modules",
    ],
)
def test_benign_commands_are_allowed(command: str) -> None:
    decision = check_command(command)
    assert decision.allowed is True
    assert decision.rule is None


def test_unbalanced_quotes_still_checked() -> None:
    assert check_command("rm -rf / 'unterminated").allowed is False


@pytest.mark.parametrize(
    "command",
    [
        "bash -c 'rm -rf /'",
        'sh -c "rm -rf /"',
        "bash -lc 'cd /tmp && rm -rf ~'",
        "(rm -rf /)",
        "{ rm -rf /; }",
        "if true; then rm -rf /; fi",
        "for d in a b; do rm -rf /; done",
        "! rm -rf /",
        "eval rm -rf /",
        "eval 'rm -rf $HOME'",
        "echo $(rm -rf /)",
        'echo "$(rm -rf /)"',
        "echo `rm -rf /`",
        "sh -c \"bash -c 'rm -rf /'\"",
        "rm -rf /\nls",
        "find / -delete",
        "find ~ -name '*' -delete",
        "find /etc -type f -exec rm -f {} \\;",
        "bash -c 'rm -rf / ",
    ],
)
def test_wrapped_destructive_commands_are_refused(command: str) -> None:
    decision = check_command(command)
    assert decision.allowed is False
    assert decision.rule


@pytest.mark.parametrize(
    "command",
    [
        "bash -c 'echo rm -rf /'",
        "sh build.sh",
        "echo 'rm -rf /'",
        "find . -name '*.pyc' -delete",
        "find ./build -type f -exec rm {} +",
        "find / -name config.json",
        "if [ -d build ]; then rm -rf build; fi",
        "echo $(date)",
    ],
)
def test_wrapped_benign_commands_are_allowed(command: str) -> None:
    assert check_command(command).allowed is True


def test_rule_names_identify_the_operation() -> None:
    assert check_command("bash -c 'rm -rf /'").rule == "recursive_rm_root"
    assert check_command("find / -delete").rule == "find_delete_root"
