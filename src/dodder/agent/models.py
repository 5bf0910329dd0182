"""Data models used by the agent loop."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["system", "user", "assistant", "tool-result"]
ActionKind = Literal["agent", "assistant"]
ActionType = Literal["run-command", "none"]
LoopState = Literal["planning", "executing", "awaiting_user", "done"]

ACTION_KINDS: tuple[ActionKind, ...] = ("agent", "assistant")
ACTION_TYPES: tuple[ActionType, ...] = ("run-command", "none")


@dataclass(frozen=True, slots=True)
class Turn:
    """One message of the conversation."""

    role: Role
    content: str
    index: int


@dataclass(frozen=True, slots=True)
class Action:
    """A validated decision extracted from one assistant reply."""

    kind: ActionKind
    thought: str
    action_type: ActionType
    command: str | None
    working_directory: str | None
    reason: str
    user_message: str
    next_step: str

    @property
    def runs_command(self) -> bool:
        return self.action_type == "run-command"

    def to_wire(self) -> dict[str, object]:
        """Return the action in the JSON shape the model is asked to emit."""
        return {
            "type": self.kind,
            "thought": self.thought,
            "action": {
                "type": self.action_type,
                "cmd": self.command,
                "cwd": self.working_directory,
                "reason": self.reason,
                "msg": self.user_message,
            },
            "nextMessage": self.next_step,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


@dataclass(slots=True)
class ExecutionResult:
    """Normalized shell execution output returned to the model."""

    command: str
    shell: str
    stdout: str
    stderr: str
    success: bool
    returncode: int
    error: str | None = None
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class GenerationParams:
    """Sampling parameters forwarded to the backend."""

    temperature: float = 0.7
    max_tokens: int = 1500
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


@dataclass(frozen=True, slots=True)
class ProjectContext:
    """Per-run configuration, fixed when the run starts."""

    root: str
    model: str
    instructions: str | None = None
    params: GenerationParams = field(default_factory=GenerationParams)


@dataclass(slots=True)
class SessionTurn:
    """Captured data for a single loop step, used for display and logging."""

    state: LoopState
    action: Action | None = None
    result: ExecutionResult | None = None
    notice: str | None = None
    error: str | None = None
