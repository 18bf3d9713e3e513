"""Exception hierarchy shared by the pattern matcher, parser, actions and engine."""

from __future__ import annotations


class TagScriptError(Exception):
    """Base exception for all script errors."""


class ParseError(TagScriptError):
    """A script configuration could not be turned into triggers."""


class PatternError(TagScriptError):
    """Pattern extraction or template interpolation failed."""


class MissingVariableError(PatternError):
    """A required template token did not resolve to a value."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing variable '{name}'")
        self.name = name


class UnterminatedPlaceholderError(PatternError):
    """A template contains ``{{`` without a closing ``}}``."""

    def __init__(self, template: str, position: int) -> None:
        super().__init__(f"Unterminated placeholder at position {position} in template: {template}")
        self.template = template
        self.position = position


class ActionError(TagScriptError):
    """An action failed while executing."""


class HttpActionError(ActionError):
    """HTTP call failed, either at the transport level or with a non-2xx status."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ShellActionError(ActionError):
    """Shell command exited non-zero or timed out. Keeps the partial output."""

    def __init__(self, message: str, *, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class SandboxViolationError(ActionError):
    """Shell command references a path outside the document root."""


class ValidationFailedError(ActionError):
    """A ``validate`` action's condition did not hold."""


class DurationError(ActionError):
    """A ``delay`` duration string could not be parsed."""


def describe_error(exc: BaseException) -> dict[str, str]:
    """Return the mapping exposed to scripts as ``{{error.*}}``."""
    if isinstance(exc, ParseError):
        kind = "parse"
    elif isinstance(exc, PatternError):
        kind = "pattern"
    elif isinstance(exc, ActionError):
        kind = "action"
    else:
        kind = "internal"
    return {"message": str(exc), "name": type(exc).__name__, "kind": kind}
