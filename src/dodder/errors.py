"""Error taxonomy shared by the agent loop, model client and shell adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dodder.agent.models import Action, ExecutionResult


class DodderError(Exception):
    """Base class for all dodder errors."""


class BackendError(DodderError):
    """The generative backend could not produce a reply."""


class BackendUnavailable(BackendError):
    """The backend could not be reached or answered with an error."""


class BackendTimeout(BackendError):
    """No backend response arrived within the configured duration."""


class ValidationError(DodderError):
    """A model reply was rejected before it could become an action."""


class MalformedOutput(ValidationError):
    """The reply is not exactly one JSON object."""


class SchemaViolation(ValidationError):
    """The reply is a JSON object that does not match the action schema."""


class PolicyViolation(ValidationError):
    """A well-formed action whose command is refused on safety grounds."""

    def __init__(self, message: str, *, action: Action, rule: str) -> None:
        super().__init__(message)
        self.action = action
        self.rule = rule


class InvalidWorkingDirectory(DodderError):
    """The requested working directory does not exist or is not a directory."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Working directory does not exist or is not a directory: {path}")
        self.path = path


class UserCancelled(DodderError):
    """The user interrupted an in-flight command."""

    def __init__(self, result: ExecutionResult | None = None) -> None:
        super().__init__("Command cancelled by user.")
        self.result = result
