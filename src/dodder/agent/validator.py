"""Strict parse-and-validate boundary between model text and shell actions."""

from __future__ import annotations

import json
import logging
from typing import cast

from dodder.agent.models import ACTION_KINDS, ACTION_TYPES, Action, ActionKind, ActionType
from dodder.agent.policy import check_command
from dodder.errors import MalformedOutput, PolicyViolation, SchemaViolation

LOGGER = logging.getLogger(__name__)

TOP_LEVEL_KEYS = frozenset({"type", "thought", "action", "nextMessage"})
ACTION_KEYS = frozenset({"type", "cmd", "cwd", "reason", "msg"})


def validate(raw: str) -> Action:
    """Parse ``raw`` into an :class:`Action` or raise a validation error.

    Raises:
        MalformedOutput: ``raw`` is not exactly one JSON object.
        SchemaViolation: the object does not match the action schema.
        PolicyViolation: the action is well formed but its command is refused.
    """
    payload = _parse_single_object(raw)
    action = _to_action(payload)
    if action.runs_command:
        decision = check_command(cast(str, action.command))
        if not decision.allowed:
            LOGGER.warning(
                "action_policy_violation",
                extra={"rule": decision.rule, "detail": decision.detail},
            )
            raise PolicyViolation(
                f"Command refused by safety policy ({decision.rule}): {decision.detail}",
                action=action,
                rule=decision.rule or "unknown",
            )
    return action


def _parse_single_object(raw: str) -> dict[str, object]:
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedOutput("Model reply was empty.")

    text = raw.strip()
    if not text.startswith("{"):
        raise MalformedOutput("Model reply must start with '{' and contain only a JSON object.")

    try:
        parsed = json.loads(
            text,
            object_pairs_hook=_reject_duplicate_keys,
            parse_constant=_reject_constant,
        )
    except json.JSONDecodeError as exc:
        raise MalformedOutput(f"Model reply is not a single JSON object: {exc.msg}") from exc

    if not isinstance(parsed, dict):
        raise MalformedOutput("Model reply must be a JSON object.")
    return parsed


def _reject_duplicate_keys(pairs: list[tuple[str, object]]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in pairs:
        if key in result:
            raise MalformedOutput(f"Duplicate key in model reply: {key}")
        result[key] = value
    return result


def _reject_constant(name: str) -> object:
    raise MalformedOutput(f"Non-standard JSON constant in model reply: {name}")


def _to_action(payload: dict[str, object]) -> Action:
    _require_exact_keys(payload, TOP_LEVEL_KEYS, where="reply")

    kind = payload["type"]
    if kind not in ACTION_KINDS:
        raise SchemaViolation(f"'type' must be one of {list(ACTION_KINDS)}, got {kind!r}.")
    thought = _require_string(payload, "thought", where="reply")
    next_step = _require_string(payload, "nextMessage", where="reply")

    action = payload["action"]
    if not isinstance(action, dict):
        raise SchemaViolation("'action' must be an object.")
    _require_exact_keys(action, ACTION_KEYS, where="action")

    action_type = action["type"]
    if action_type not in ACTION_TYPES:
        raise SchemaViolation(
            f"'action.type' must be one of {list(ACTION_TYPES)}, got {action_type!r}."
        )
    reason = _require_string(action, "reason", where="action")
    user_message = _require_string(action, "msg", where="action")
    command = _optional_string(action, "cmd")
    working_directory = _optional_string(action, "cwd")

    if action_type == "run-command":
        if command is None:
            raise SchemaViolation("'action.cmd' must be a non-empty string for run-command.")
        if working_directory is None:
            raise SchemaViolation("'action.cwd' must be a non-empty string for run-command.")
    else:
        if command is not None or working_directory is not None:
            raise SchemaViolation("'action.cmd' and 'action.cwd' must be null when type is none.")

    return Action(
        kind=cast(ActionKind, kind),
        thought=thought,
        action_type=cast(ActionType, action_type),
        command=command,
        working_directory=working_directory,
        reason=reason,
        user_message=user_message,
        next_step=next_step,
    )


def _require_exact_keys(obj: dict[str, object], expected: frozenset[str], *, where: str) -> None:
    missing = sorted(expected - obj.keys())
    if missing:
        raise SchemaViolation(f"Missing keys in {where}: {', '.join(missing)}.")
    extra = sorted(obj.keys() - expected)
    if extra:
        raise SchemaViolation(f"Unexpected keys in {where}: {', '.join(extra)}.")


def _require_string(obj: dict[str, object], key: str, *, where: str) -> str:
    value = obj[key]
    if not isinstance(value, str):
        raise SchemaViolation(f"'{key}' in {where} must be a string.")
    return value


def _optional_string(obj: dict[str, object], key: str) -> str | None:
    value = obj[key]
    if value is None:
        return None
    if not isinstance(value, str):
        raise SchemaViolation(f"'action.{key}' must be a string or null.")
    return value if value.strip() else None
