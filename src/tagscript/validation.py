from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from jsonschema import Draft7Validator

from .config import build_settings


@dataclass(slots=True)
class ValidationIssue:
    """Represents a single validation problem."""

    severity: str
    path: str
    message: str
    code: str


@dataclass(slots=True)
class ValidationReport:
    """Aggregates validation warnings and errors."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


_TARGET_TYPES = ["log", "webhook", "discord"]

SETTINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "document_root": {"type": "string"},
        "scripts_file": {"type": "string"},
        "indent_unit": {"type": "string", "pattern": r"^[ \t]+$"},
        "http": {
            "type": "object",
            "properties": {
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "user_agent": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
        "shell": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "max_output": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
        "notifications": {
            "type": "object",
            "properties": {
                "default_duration_ms": {"type": "integer", "minimum": 0},
                "targets": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": {"type": "string", "enum": _TARGET_TYPES},
                            "url": {"type": "string"},
                            "webhook_url": {"type": "string"},
                            "method": {"type": "string"},
                            "headers": {"type": "object", "additionalProperties": {"type": "string"}},
                            "template": {},
                            "enabled": {"type": "boolean"},
                        },
                        "required": ["type"],
                        "additionalProperties": True,
                    },
                },
            },
            "additionalProperties": False,
        },
        "connector": {
            "type": "object",
            "properties": {
                "error_format": {"type": "string"},
                "timestamps": {"type": "boolean"},
                "clear_errors_on_success": {"type": "boolean"},
                "clear_errors_on_reset": {"type": "boolean"},
                "retry": {"type": "integer", "minimum": 0},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def _format_jsonschema_path(path: Sequence[Any]) -> str:
    if not path:
        return "<root>"
    tokens: List[str] = []
    for part in path:
        if isinstance(part, int):
            if tokens:
                tokens[-1] = f"{tokens[-1]}[{part}]"
            else:
                tokens.append(f"[{part}]")
        else:
            tokens.append(str(part))
    return ".".join(tokens) if tokens else "<root>"


def validate_settings_data(data: Dict[str, Any]) -> ValidationReport:
    """Validate settings data against the schema, then through the settings builders.

    Builder errors are only reported when the schema passes, so a single
    mistake is not listed twice.
    """
    report = ValidationReport()
    settings_data = data.get("settings", data) if isinstance(data, dict) else data

    validator = Draft7Validator(SETTINGS_SCHEMA)
    for error in sorted(validator.iter_errors(settings_data), key=lambda exc: [str(part) for part in exc.path]):
        report.errors.append(
            ValidationIssue(
                severity="error",
                path=_format_jsonschema_path(error.absolute_path),
                message=error.message,
                code="schema",
            )
        )
    if report.errors:
        return report

    try:
        settings = build_settings(settings_data)
    except ValueError as exc:
        report.errors.append(ValidationIssue(severity="error", path="<root>", message=str(exc), code="settings"))
        return report

    if not settings.document_root.exists():
        report.warnings.append(
            ValidationIssue(
                severity="warning",
                path="document_root",
                message=f"Document root {settings.document_root} does not exist",
                code="missing-root",
            )
        )
    if settings.scripts_file is not None and not settings.scripts_file.exists():
        report.warnings.append(
            ValidationIssue(
                severity="warning",
                path="scripts_file",
                message=f"Scripts file {settings.scripts_file} does not exist",
                code="missing-scripts",
            )
        )
    if not settings.shell.enabled:
        report.warnings.append(
            ValidationIssue(
                severity="warning",
                path="shell.enabled",
                message="Shell actions are disabled; scripts using 'shell' will fail",
                code="shell-disabled",
            )
        )
    return report
