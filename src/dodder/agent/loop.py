"""Turn-by-turn orchestration of model replies and shell actions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from dodder.agent.conversation import Conversation, to_messages
from dodder.agent.models import (
    Action,
    ExecutionResult,
    GenerationParams,
    LoopState,
    ProjectContext,
    SessionTurn,
)
from dodder.agent.validator import validate
from dodder.errors import (
    BackendTimeout,
    BackendUnavailable,
    InvalidWorkingDirectory,
    MalformedOutput,
    PolicyViolation,
    SchemaViolation,
    UserCancelled,
)
from dodder.llm.prompt import build_correction_prompt
from dodder.shell import ShellAdapter

LOGGER = logging.getLogger(__name__)

INVALID_CWD_RETURNCODE = 2
CANCELLED_RETURNCODE = 130


class ModelClient(Protocol):
    model: str

    def generate(self, messages: list[dict[str, str]], params: GenerationParams) -> str: ...


class AgentLoop:
    """Runs the generate/validate/execute/report cycle for one project run.

    The loop owns its conversation. Between cycles it rests in ``planning``
    (the model is still planning and waits for the next request) or
    ``awaiting_user``; :meth:`submit` resumes it and :meth:`stop` ends the run.
    """

    def __init__(
        self,
        *,
        client: ModelClient,
        shell: ShellAdapter,
        context: ProjectContext,
        system_prompt: str,
        log_dir: str | Path | None = None,
        max_steps: int = 20,
        max_backend_attempts: int = 2,
        max_correction_attempts: int = 1,
        max_context_chars: int = 24000,
        max_output_chars: int = 8000,
        command_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.shell = shell
        self.context = context
        self.system_prompt = system_prompt
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.max_steps = max_steps
        self.max_backend_attempts = max(1, max_backend_attempts)
        self.max_correction_attempts = max(0, max_correction_attempts)
        self.max_context_chars = max_context_chars
        self.max_output_chars = max_output_chars
        self.command_timeout = command_timeout
        self.state: LoopState = "planning"
        self._inconsistencies = 0
        self._conversation: Conversation | None = None
        self._correction_attempts = 0

    @property
    def conversation(self) -> Conversation:
        if self._conversation is None:
            msg = "Agent loop has not been started."
            raise RuntimeError(msg)
        return self._conversation

    def start(self, request: str) -> list[SessionTurn]:
        """Seed the conversation with the user's project request and run a cycle."""
        if self._conversation is not None:
            msg = "Agent loop was already started; use submit() for follow-up input."
            raise RuntimeError(msg)
        self._conversation = Conversation(self.system_prompt)
        self._conversation.append("user", request)
        self.state = "planning"
        return self._run_cycle()

    def submit(self, text: str) -> list[SessionTurn]:
        """Append new user input and resume the loop."""
        if self.state == "done":
            msg = "Agent loop is done; no further input is accepted."
            raise RuntimeError(msg)
        if self.state == "executing":
            msg = "Agent loop is executing; wait for the cycle to finish."
            raise RuntimeError(msg)
        self.conversation.append("user", text)
        self.state = "planning"
        return self._run_cycle()

    def stop(self) -> None:
        self.state = "done"

    def _run_cycle(self) -> list[SessionTurn]:
        conversation = self.conversation
        turns: list[SessionTurn] = []
        backend_failures = 0
        steps_taken = 0
        self._correction_attempts = 0

        while True:
            messages = to_messages(conversation.window(self.max_context_chars))
            try:
                raw = self.client.generate(messages, self.context.params)
            except BackendTimeout as exc:
                backend_failures += 1
                LOGGER.warning(
                    "backend_timeout",
                    extra={"attempt": backend_failures, "max": self.max_backend_attempts},
                )
                if backend_failures < self.max_backend_attempts:
                    continue
                return self._finish(
                    turns,
                    state="awaiting_user",
                    error=f"{exc} (gave up after {backend_failures} attempts)",
                )
            except BackendUnavailable as exc:
                backend_failures += 1
                LOGGER.warning(
                    "backend_unavailable",
                    extra={"attempt": backend_failures, "max": self.max_backend_attempts},
                )
                if backend_failures < self.max_backend_attempts:
                    continue
                return self._finish(
                    turns,
                    state="done",
                    error=f"{exc} (gave up after {backend_failures} attempts)",
                )
            except KeyboardInterrupt:
                return self._finish(
                    turns,
                    state="awaiting_user",
                    error="Generation cancelled by user.",
                )
            backend_failures = 0

            try:
                action = validate(raw)
            except PolicyViolation as exc:
                self._correction_attempts = 0
                return self._refuse(turns, exc)
            except (MalformedOutput, SchemaViolation) as exc:
                if self._correction_attempts < self.max_correction_attempts:
                    self._correction_attempts += 1
                    conversation.append("user", build_correction_prompt(str(exc), raw))
                    turn = SessionTurn(
                        state=self.state,
                        notice="Model reply rejected; requesting a corrected response.",
                        error=str(exc),
                    )
                    turns.append(turn)
                    self._append_log(turn)
                    continue
                self._correction_attempts = 0
                return self._finish(
                    turns,
                    state="awaiting_user",
                    error=f"Model kept returning invalid replies: {exc}",
                )
            self._correction_attempts = 0

            self._check_kind_consistency(action)
            conversation.append("assistant", action.to_json())

            if not action.runs_command:
                self.state = "planning" if action.kind == "agent" else "awaiting_user"
                turn = SessionTurn(state=self.state, action=action)
                turns.append(turn)
                self._append_log(turn)
                return turns

            if steps_taken >= self.max_steps:
                notice = (
                    f"Step budget exhausted after {self.max_steps} commands;"
                    " command was not executed."
                )
                conversation.append("tool-result", notice)
                self.state = "awaiting_user"
                turn = SessionTurn(state=self.state, action=action, notice=notice)
                turns.append(turn)
                self._append_log(turn)
                return turns

            self.state = "executing"
            try:
                result = self._execute(action)
            except UserCancelled as exc:
                result = exc.result or self._cancelled_result(action)
                conversation.append("tool-result", self._format_result(result))
                self.state = "awaiting_user"
                turn = SessionTurn(
                    state=self.state,
                    action=action,
                    result=result,
                    notice="Command cancelled; partial output recorded.",
                )
                turns.append(turn)
                self._append_log(turn)
                return turns

            steps_taken += 1
            conversation.append("tool-result", self._format_result(result))
            turn = SessionTurn(state=self.state, action=action, result=result)
            turns.append(turn)
            self._append_log(turn)

    def _execute(self, action: Action) -> ExecutionResult:
        command = action.command or ""
        cwd = self._resolve_cwd(action.working_directory)
        try:
            return self.shell.execute(command, cwd=cwd, timeout=self.command_timeout)
        except InvalidWorkingDirectory as exc:
            return ExecutionResult(
                command=command,
                shell=self.shell.name,
                stdout="",
                stderr=str(exc),
                success=False,
                returncode=INVALID_CWD_RETURNCODE,
                error=str(exc),
            )

    def _resolve_cwd(self, working_directory: str | None) -> str:
        root = Path(self.context.root)
        if not working_directory:
            return str(root)
        path = Path(working_directory).expanduser()
        if not path.is_absolute():
            path = root / path
        return str(path)

    def _cancelled_result(self, action: Action) -> ExecutionResult:
        return ExecutionResult(
            command=action.command or "",
            shell=self.shell.name,
            stdout="",
            stderr="",
            success=False,
            returncode=CANCELLED_RETURNCODE,
            error="Command cancelled by user; output is incomplete.",
            cancelled=True,
        )

    def _refuse(self, turns: list[SessionTurn], exc: PolicyViolation) -> list[SessionTurn]:
        conversation = self.conversation
        conversation.append("assistant", exc.action.to_json())
        refusal = (
            f"Refused: the command was not executed. {exc}"
            " Propose a safer alternative or ask the user how to proceed."
        )
        conversation.append("tool-result", refusal)
        self.state = "awaiting_user"
        turn = SessionTurn(state=self.state, action=exc.action, notice=refusal, error=str(exc))
        turns.append(turn)
        self._append_log(turn)
        return turns

    def _finish(
        self,
        turns: list[SessionTurn],
        *,
        state: LoopState,
        error: str,
    ) -> list[SessionTurn]:
        self.state = state
        turn = SessionTurn(state=state, error=error)
        turns.append(turn)
        self._append_log(turn)
        return turns

    def _check_kind_consistency(self, action: Action) -> None:
        if action.kind == "agent" and self.state == "executing":
            self._inconsistencies += 1
            LOGGER.warning(
                "action_kind_inconsistent",
                extra={
                    "inconsistent_count": self._inconsistencies,
                    "declared_kind": action.kind,
                    "action_type": action.action_type,
                    "loop_state": self.state,
                },
            )

    def _format_result(self, result: ExecutionResult) -> str:
        if result.cancelled:
            status = "incomplete"
        elif result.success:
            status = "success"
        else:
            status = "failure"
        lines = [
            f"command={result.command}",
            f"status={status}",
            f"returncode={result.returncode}",
            f"duration={result.duration_seconds:.4f}s",
        ]
        if result.error:
            lines.append(f"error={result.error}")
        lines.append(f"stdout:\n{self._truncate(result.stdout)}")
        lines.append(f"stderr:\n{self._truncate(result.stderr)}")
        return "\n".join(lines)

    def _truncate(self, text: str) -> str:
        limit = self.max_output_chars
        if limit <= 0 or len(text) <= limit:
            return text
        head = limit // 2
        tail = limit - head
        omitted = len(text) - limit
        return f"{text[:head]}\n...[{omitted} characters truncated]...\n{text[-tail:]}"

    def _append_log(self, turn: SessionTurn) -> None:
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        day_file = self.log_dir / f"session-{datetime.now(timezone.utc).date().isoformat()}.log"
        result = turn.result
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": self.context.model,
            "shell": getattr(self.shell, "name", self.shell.__class__.__name__),
            "project_root": self.context.root,
            "state": turn.state,
            "action": turn.action.to_wire() if turn.action else None,
            "returncode": result.returncode if result else None,
            "success": result.success if result else None,
            "duration": result.duration_seconds if result else None,
            "timed_out": result.timed_out if result else None,
            "cancelled": result.cancelled if result else None,
            "notice": turn.notice,
            "error": turn.error,
        }
        with day_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")
