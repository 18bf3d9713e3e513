from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_yaml_file, validate_url

DEFAULT_USER_AGENT = "tagscript/1.0"


@dataclass
class HttpSettings:
    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class ShellSettings:
    enabled: bool = True
    timeout: float = 30.0
    max_output: int = 64 * 1024


@dataclass
class NotificationSettings:
    targets: list[dict[str, Any]] = field(default_factory=list)
    default_duration_ms: int = 4000


@dataclass
class ConnectorDefaults:
    """Defaults for status-driven connectors, overridable per tag via ``config:``."""

    error_format: str = "✗ "
    timestamps: bool = False
    clear_errors_on_success: bool = False
    clear_errors_on_reset: bool = False
    retry: int = 0

    def as_options(self) -> dict[str, Any]:
        return {
            "errorFormat": self.error_format,
            "timestamps": self.timestamps,
            "clearErrorsOnSuccess": self.clear_errors_on_success,
            "clearErrorsOnReset": self.clear_errors_on_reset,
            "retry": self.retry,
        }


@dataclass
class EngineSettings:
    document_root: Path = field(default_factory=Path.cwd)
    scripts_file: Path | None = None
    indent_unit: str = "  "
    http: HttpSettings = field(default_factory=HttpSettings)
    shell: ShellSettings = field(default_factory=ShellSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    connector: ConnectorDefaults = field(default_factory=ConnectorDefaults)


def _mapping(data: Any, field_name: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{field_name}' must be provided as a mapping when specified")
    return data


def _positive_number(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if number <= 0:
        raise ValueError(f"'{field_name}' must be greater than 0")
    return number


def _non_negative_int(value: Any, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if number < 0:
        raise ValueError(f"'{field_name}' must be greater than or equal to 0")
    return number


def _build_http_settings(data: Any) -> HttpSettings:
    data = _mapping(data, "http")
    user_agent = data.get("user_agent", DEFAULT_USER_AGENT)
    if not isinstance(user_agent, str) or not user_agent.strip():
        raise ValueError("'http.user_agent' must be a non-empty string")
    return HttpSettings(
        timeout=_positive_number(data.get("timeout", 30.0), "http.timeout"),
        user_agent=user_agent.strip(),
    )


def _build_shell_settings(data: Any) -> ShellSettings:
    data = _mapping(data, "shell")
    max_output = _non_negative_int(data.get("max_output", 64 * 1024), "shell.max_output")
    if max_output == 0:
        raise ValueError("'shell.max_output' must be greater than 0")
    return ShellSettings(
        enabled=bool(data.get("enabled", True)),
        timeout=_positive_number(data.get("timeout", 30.0), "shell.timeout"),
        max_output=max_output,
    )


def _build_notification_settings(data: Any) -> NotificationSettings:
    data = _mapping(data, "notifications")
    targets_raw = data.get("targets", []) or []
    if not isinstance(targets_raw, list):
        raise ValueError("'notifications.targets' must be provided as a list when specified")
    targets: list[dict[str, Any]] = []
    for index, entry in enumerate(targets_raw):
        if not isinstance(entry, dict):
            raise ValueError("Each entry in 'notifications.targets' must be a mapping")
        target_type = entry.get("type")
        if not isinstance(target_type, str):
            raise ValueError("Notification target entries must include a string 'type'")
        normalized: dict[str, Any] = {str(key): value for key, value in entry.items()}
        normalized["type"] = target_type.strip().lower()
        url = normalized.get("url") or normalized.get("webhook_url")
        if url is not None and not validate_url(url):
            raise ValueError(f"'notifications.targets[{index}].url' must be a valid http/https URL, got: {url}")
        targets.append(normalized)
    return NotificationSettings(
        targets=targets,
        default_duration_ms=_non_negative_int(data.get("default_duration_ms", 4000), "notifications.default_duration_ms"),
    )


def _build_connector_defaults(data: Any) -> ConnectorDefaults:
    data = _mapping(data, "connector")
    error_format = data.get("error_format", "✗ ")
    if not isinstance(error_format, str):
        raise ValueError("'connector.error_format' must be a string")
    return ConnectorDefaults(
        error_format=error_format,
        timestamps=bool(data.get("timestamps", False)),
        clear_errors_on_success=bool(data.get("clear_errors_on_success", False)),
        clear_errors_on_reset=bool(data.get("clear_errors_on_reset", False)),
        retry=_non_negative_int(data.get("retry", 0), "connector.retry"),
    )


def build_settings(data: dict[str, Any], *, base_dir: Path | None = None) -> EngineSettings:
    """Build settings from a parsed mapping. Relative paths resolve against ``base_dir``."""
    data = _mapping(data, "settings")
    base = base_dir or Path.cwd()

    root_raw = data.get("document_root", ".")
    if not isinstance(root_raw, str) or not root_raw.strip():
        raise ValueError("'document_root' must be a non-empty string")
    document_root = Path(root_raw).expanduser()
    if not document_root.is_absolute():
        document_root = base / document_root

    scripts_file: Path | None = None
    scripts_raw = data.get("scripts_file")
    if scripts_raw is not None:
        if not isinstance(scripts_raw, str) or not scripts_raw.strip():
            raise ValueError("'scripts_file' must be a non-empty string when specified")
        scripts_file = Path(scripts_raw).expanduser()
        if not scripts_file.is_absolute():
            scripts_file = document_root / scripts_file

    indent_unit = data.get("indent_unit", "  ")
    if not isinstance(indent_unit, str) or not indent_unit or indent_unit.strip():
        raise ValueError("'indent_unit' must be a non-empty whitespace string")

    return EngineSettings(
        document_root=document_root.resolve(),
        scripts_file=scripts_file,
        indent_unit=indent_unit,
        http=_build_http_settings(data.get("http")),
        shell=_build_shell_settings(data.get("shell")),
        notifications=_build_notification_settings(data.get("notifications")),
        connector=_build_connector_defaults(data.get("connector")),
    )


def load_settings(path: Path) -> EngineSettings:
    data = load_yaml_file(path)
    return build_settings(data.get("settings", data), base_dir=path.parent)
