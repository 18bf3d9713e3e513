from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

LEADING_WHITESPACE = re.compile(r"^(\s*)")

# Literal words understood by parse_literal in addition to JSON
_LITERAL_WORDS = {"true": True, "false": False, "null": None}


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(val) for key, val in value.items()}
    return value


def load_yaml_file(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return expand_env(data)


def parse_literal(value: str) -> Any:
    """Best-effort conversion of template output into a structured value.

    Numbers, booleans, ``null`` and JSON arrays/objects are decoded; anything
    else is returned unchanged as a string.
    """
    stripped = value.strip()
    if not stripped:
        return value
    if stripped in _LITERAL_WORDS:
        return _LITERAL_WORDS[stripped]
    if stripped[0] in "[{\"-0123456789":
        try:
            return json.loads(stripped)
        except ValueError:
            return value
    return value


def to_template_text(value: Any) -> str:
    """Render a variable value the way templates print it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def leading_whitespace(line: str) -> str:
    match = LEADING_WHITESPACE.match(line)
    return match.group(1) if match else ""


def validate_url(url: str | None) -> bool:
    """Validate that URL is a valid http/https URL."""
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
