"""Append-only conversation history owned by a single agent loop."""

from __future__ import annotations

from collections.abc import Iterable

from dodder.agent.models import Role, Turn

TOOL_RESULT_PREFIX = "[tool-result]"


class Conversation:
    """Ordered turns, starting with exactly one system turn."""

    def __init__(self, system_prompt: str) -> None:
        self._turns: list[Turn] = [Turn(role="system", content=system_prompt, index=0)]

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def system_turn(self) -> Turn:
        return self._turns[0]

    def append(self, role: Role, content: str) -> Turn:
        if role == "system":
            msg = "Conversation already has its system turn; only one is allowed."
            raise ValueError(msg)
        turn = Turn(role=role, content=content, index=len(self._turns))
        self._turns.append(turn)
        return turn

    def snapshot(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def window(self, limit: int) -> list[Turn]:
        """Return the system turn plus the newest turns that fit in ``limit`` characters.

        The newest non-system turn is always kept, even when it alone exceeds
        the budget. A non-positive limit disables windowing.
        """
        if limit <= 0 or len(self._turns) == 1:
            return list(self._turns)

        budget = limit - len(self.system_turn.content)
        selected: list[Turn] = []
        for turn in reversed(self._turns[1:]):
            if selected and len(turn.content) > budget:
                break
            selected.append(turn)
            budget -= len(turn.content)
        return [self.system_turn, *reversed(selected)]


def to_messages(turns: Iterable[Turn]) -> list[dict[str, str]]:
    """Map turns onto the backend's chat roles."""
    messages: list[dict[str, str]] = []
    for turn in turns:
        if turn.role == "tool-result":
            messages.append({"role": "user", "content": f"{TOOL_RESULT_PREFIX}\n{turn.content}"})
        else:
            messages.append({"role": turn.role, "content": turn.content})
    return messages
