"""Turn nested bullet configuration into trigger action sequences.

A script is a tree of bullets. Each trigger section (``onTrigger:``,
``onDone:`` ...) holds action bullets of the form::

    - fetch: `https://api.example.com/{{id}}` as: `meta`
        - method: POST
        - headers:
            - Accept: application/json
        - onError:
            - notify: Failed: {{error.message}}

Unknown or malformed actions are dropped with a warning; a configuration
with no recognized trigger is a :class:`~tagscript.errors.ParseError`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .errors import ParseError
from .nodes import (
    ACTION_KINDS,
    AUTH_TYPES,
    DATE_FORMATS,
    DATE_MODES,
    IMAGE_FORMATS,
    READ_SOURCES,
    TASK_OPS,
    TRANSFORM_MODES,
    TRIGGER_KINDS,
    ActionNode,
    AppendNode,
    AuthConfig,
    BuildNode,
    DateNode,
    DelayNode,
    ExtractNode,
    FetchNode,
    FileNode,
    FilterNode,
    ForeachNode,
    IfNode,
    LogNode,
    MapNode,
    MatchNode,
    NotifyNode,
    QueryNode,
    ReadNode,
    ReturnNode,
    ScriptConfig,
    SetNode,
    ShellNode,
    TaskNode,
    TransformChild,
    TransformNode,
    Trigger,
    ValidateNode,
)
from .outline import RawItem, from_data, parse_outline
from .patterns import clean_template
from .utils import parse_literal

LOGGER = logging.getLogger(__name__)

_KEY_VALUE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*:\s*(.*)$", re.DOTALL)
_KEY_AT = re.compile(r"\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")
_NEXT_KEY = re.compile(r"\s+([A-Za-z_][A-Za-z0-9_]*)\s*:(?:\s+|$)")
_TRAILING_AS = re.compile(r"\s+as:\s+(?:`([^`]+)`|(\S+))")
_CHILD_BULLET = re.compile(r"^[-+*]\s*")
_TAG_HEAD = re.compile(r"^#([\w/-]+)\s*$")

# Option keys that may follow the main value on the action line itself
INLINE_OPTIONS = frozenset(
    {
        "as",
        "asFile",
        "bullet",
        "bullets",
        "duration",
        "format",
        "from",
        "in",
        "index",
        "indent",
        "itemAs",
        "level",
        "message",
        "method",
        "pattern",
        "source",
        "template",
        "timeout",
        "to",
        "value",
        "where",
    }
)


@dataclass
class ParseResult:
    config: ScriptConfig
    warnings: list[str] = field(default_factory=list)


@dataclass
class _Head:
    kind: str
    value: str
    options: dict[str, Any]
    children: list[RawItem]
    on_error: tuple[ActionNode, ...]
    line: int | None


def parse_key_value(text: str) -> tuple[str, str] | None:
    """Read ``key: value`` (backticks around the value are removed)."""
    match = _KEY_VALUE.match(text.strip())
    if not match:
        return None
    return match.group(1), clean_template(match.group(2))


def _next_key(text: str, position: int, known_keys: Collection[str] | None) -> re.Match[str] | None:
    for match in _NEXT_KEY.finditer(text, position):
        if known_keys is None or match.group(1) in known_keys:
            return match
    return None


def parse_inline_key_values(text: str, known_keys: Collection[str] | None = None) -> dict[str, str]:
    """Read every ``key: value`` pair on one line.

    ``fetch: `https://x?a=1` as: `meta``` gives ``{"fetch": "https://x?a=1", "as": "meta"}``.
    Backticked values may contain anything but a backtick; bare values run
    up to the next `` key:`` occurrence. When ``known_keys`` is given only
    those keys end a bare value, so ``log: Result: ok`` stays one value.
    """
    result: dict[str, str] = {}
    position = 0
    while position < len(text):
        key_match = _KEY_AT.match(text, position)
        if key_match is None:
            break
        key = key_match.group(1)
        position = key_match.end()
        while position < len(text) and text[position].isspace():
            position += 1
        if position < len(text) and text[position] == "`":
            closing = text.find("`", position + 1)
            if closing == -1:
                result[key] = text[position + 1 :]
                break
            result[key] = text[position + 1 : closing]
            position = closing + 1
            continue
        next_key = _next_key(text, position, known_keys)
        if next_key is None:
            result[key] = text[position:].strip()
            break
        result[key] = text[position : next_key.start()].strip()
        position = next_key.start()
    return result


def children_as_record(children: Sequence[RawItem]) -> dict[str, Any]:
    """Collect ``key: value`` children; keys with children nest."""
    record: dict[str, Any] = {}
    for child in children:
        parsed = parse_key_value(child.text)
        if parsed is None:
            continue
        key, value = parsed
        if child.children:
            record[key] = children_as_record(child.children)
        else:
            record[key] = value
    return record


def _as_bool(value: Any, option: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1"):
        return True
    if text in ("false", "no", "0"):
        return False
    raise ParseError(f"'{option}' must be true or false")


def _as_int(value: Any, option: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ParseError(f"'{option}' must be an integer") from exc


def _as_choice(value: Any, option: str, choices: Sequence[str]) -> str:
    text = str(value).strip()
    if text not in choices:
        raise ParseError(f"'{option}' must be one of {', '.join(choices)}")
    return text


def _optional_int(options: Mapping[str, Any], key: str) -> int | None:
    if key not in options or options[key] in ("", None):
        return None
    return _as_int(options[key], key)


def _read_head(item: RawItem, warnings: list[str]) -> _Head | None:
    text = item.text.strip()
    parsed = parse_key_value(text)
    if parsed is None:
        warnings.append(f"Ignoring line without an action: {text}")
        return None
    kind = parsed[0]
    if kind not in ACTION_KINDS:
        message = f"Unknown action type: {kind}"
        if item.line is not None:
            message += f" (line {item.line + 1})"
        warnings.append(message)
        return None

    inline = parse_inline_key_values(text, INLINE_OPTIONS)
    value = clean_template(inline.pop(kind, parsed[1]))

    on_error: tuple[ActionNode, ...] = ()
    regular: list[RawItem] = []
    for child in item.children:
        child_kv = parse_key_value(child.text)
        if child_kv is not None and child_kv[0] == "onError":
            on_error = parse_action_sequence(child.children, warnings)
        else:
            regular.append(child)

    options: dict[str, Any] = children_as_record(regular)
    options.update({key: clean_template(val) for key, val in inline.items()})
    return _Head(kind=kind, value=value, options=options, children=regular, on_error=on_error, line=item.line)


def _common(head: _Head) -> dict[str, Any]:
    return {"on_error": head.on_error, "source_line": head.line}


def _parse_read(head: _Head, warnings: list[str]) -> ReadNode:
    options = head.options
    fields: dict[str, Any] = {"pattern": head.value}
    if "source" in options:
        fields["source"] = _as_choice(options["source"], "source", READ_SOURCES)
    if "from" in options:
        fields["reference"] = options["from"]
    if options.get("as"):
        fields["store_as"] = options["as"]
    if options.get("asFile"):
        fields["file_as"] = options["asFile"]
    if "strip" in options:
        fields["strip"] = _as_bool(options["strip"], "strip")
    if "stripFrontmatter" in options:
        fields["strip_frontmatter"] = _as_bool(options["stripFrontmatter"], "stripFrontmatter")
    if "includeFrontmatter" in options:
        fields["include_frontmatter"] = _as_bool(options["includeFrontmatter"], "includeFrontmatter")
    for option, name in (
        ("frontmatterAs", "frontmatter_as"),
        ("childrenAs", "children_as"),
        ("childrenLinesAs", "children_lines_as"),
    ):
        if options.get(option):
            fields[name] = options[option]
    if "format" in options:
        fields["format"] = _as_choice(options["format"], "format", IMAGE_FORMATS)
    return ReadNode(**fields, **_common(head))


def _parse_file(head: _Head, warnings: list[str]) -> FileNode:
    reference = head.value or head.options.get("from", "")
    if not reference:
        raise ParseError("'file' needs a reference")
    if head.options.get("as"):
        return FileNode(reference=reference, store_as=head.options["as"], **_common(head))
    return FileNode(reference=reference, **_common(head))


def _parse_auth(record: Any) -> AuthConfig | None:
    if not isinstance(record, Mapping) or not record.get("type"):
        return None
    return AuthConfig(
        type=_as_choice(record["type"], "auth.type", AUTH_TYPES),
        username=record.get("username"),
        password=record.get("password"),
        token=record.get("token"),
        api_key=record.get("apiKey"),
        header_name=record.get("headerName") or "X-API-Key",
    )


def _parse_fetch(head: _Head, warnings: list[str]) -> FetchNode:
    options = head.options
    url = head.value
    store_as = options.get("as")
    if not store_as:
        # `fetch: https://x as: meta` written without backticks
        trailing = _TRAILING_AS.search(url)
        if trailing:
            store_as = trailing.group(1) or trailing.group(2)
            url = _TRAILING_AS.sub("", url, count=1).strip()
    if not url:
        raise ParseError("'fetch' needs a url")
    headers = options.get("headers")
    return FetchNode(
        url=clean_template(url),
        method=str(options.get("method") or "GET").upper(),
        headers=tuple((str(key), str(value)) for key, value in headers.items()) if isinstance(headers, Mapping) else (),
        body=options.get("body") or None,
        auth=_parse_auth(options.get("auth")),
        store_as=store_as or None,
        timeout_ms=_optional_int(options, "timeout"),
        **_common(head),
    )


def _parse_shell(head: _Head, warnings: list[str]) -> ShellNode:
    if not head.value:
        raise ParseError("'shell' needs a command")
    return ShellNode(
        command=head.value,
        store_as=head.options.get("as") or None,
        timeout_ms=_optional_int(head.options, "timeout"),
        **_common(head),
    )


def _transform_children(items: Sequence[RawItem], indent: int = 0) -> tuple[TransformChild, ...]:
    return tuple(
        TransformChild(
            template=clean_template(_CHILD_BULLET.sub("", item.text, count=1)),
            indent=indent,
            children=_transform_children(item.children, indent + 1),
        )
        for item in items
    )


def _parse_transform(head: _Head, warnings: list[str]) -> TransformNode:
    children = list(head.children)
    mode = "replace"
    if children:
        first = parse_key_value(children[0].text)
        if first is not None and first[0] == "mode":
            mode = _as_choice(first[1], "mode", TRANSFORM_MODES)
            children = children[1:]
    return TransformNode(
        template=head.value or None,
        mode=mode,
        children=_transform_children(children),
        **_common(head),
    )


def _build_properties(record: Mapping[str, Any]) -> tuple[tuple[str, Any], ...]:
    return tuple(
        (key, _build_properties(value) if isinstance(value, Mapping) else value) for key, value in record.items()
    )


def _parse_build(head: _Head, warnings: list[str]) -> BuildNode:
    if not head.value:
        raise ParseError("'build' needs a variable name")
    return BuildNode(name=head.value, properties=_build_properties(head.options), **_common(head))


def _parse_query(head: _Head, warnings: list[str]) -> QueryNode:
    options = dict(head.options)
    store_as = options.pop("as", None) or "results"
    return QueryNode(
        identifier=head.value,
        store_as=store_as,
        options=tuple((key, parse_literal(value) if isinstance(value, str) else value) for key, value in options.items()),
        **_common(head),
    )


def _parse_set(head: _Head, warnings: list[str]) -> SetNode:
    if not head.value:
        raise ParseError("'set' needs a variable name")
    options = head.options
    return SetNode(
        name=head.value,
        value=str(options.get("value", "")),
        pattern=options.get("pattern") or None,
        source=options.get("in") or "{{line}}",
        **_common(head),
    )


def _parse_match(head: _Head, warnings: list[str]) -> MatchNode:
    return MatchNode(pattern=head.value, source=head.options.get("in") or "{{line}}", **_common(head))


def _parse_extract(head: _Head, warnings: list[str]) -> ExtractNode:
    if not head.value:
        raise ParseError("'extract' needs a regular expression")
    return ExtractNode(
        pattern=head.value,
        source=head.options.get("from") or "{{line}}",
        store_as=head.options.get("as") or "matches",
        **_common(head),
    )


def _parse_if(head: _Head, warnings: list[str]) -> IfNode:
    then: list[ActionNode] = []
    otherwise: list[ActionNode] = []
    in_else = False
    for child in head.children:
        parsed = parse_key_value(child.text)
        if parsed is not None and parsed[0] == "else":
            in_else = True
            otherwise.extend(parse_action_sequence(child.children, warnings))
            continue
        node = parse_action_node(child, warnings)
        if node is not None:
            (otherwise if in_else else then).append(node)
    return IfNode(condition=head.value, then=tuple(then), otherwise=tuple(otherwise), **_common(head))


def _parse_foreach(head: _Head, warnings: list[str]) -> ForeachNode:
    if not head.value:
        raise ParseError("'foreach' needs an items variable")
    body_items = []
    for child in head.children:
        parsed = parse_key_value(child.text)
        if parsed is not None and parsed[0] in ("as", "index") and not child.children:
            continue
        body_items.append(child)
    return ForeachNode(
        items=head.value,
        item_name=head.options.get("as") or "item",
        index_name=head.options.get("index") or None,
        body=parse_action_sequence(body_items, warnings),
        **_common(head),
    )


def _parse_return(head: _Head, warnings: list[str]) -> ReturnNode:
    return ReturnNode(value=head.value or None, **_common(head))


def _parse_append(head: _Head, warnings: list[str]) -> AppendNode:
    indent = _optional_int(head.options, "indent")
    return AppendNode(template=head.value, indent=1 if indent is None else indent, **_common(head))


def _parse_task(head: _Head, warnings: list[str]) -> TaskNode:
    options = head.options
    op = _as_choice(head.value or options.get("op", ""), "op", TASK_OPS)
    fields: dict[str, Any] = {"op": op}
    if options.get("bullets"):
        fields["bullets"] = options["bullets"]
    for key in ("to", "toStatus", "status"):
        if key in options:
            # An empty value means the unchecked status
            fields["to_status"] = options[key] or " "
            break
    if options.get("template"):
        fields["template"] = options["template"]
    indent = _optional_int(options, "indent")
    if indent is not None:
        fields["indent"] = indent
    if options.get("bullet"):
        fields["bullet"] = options["bullet"]
    if op == "status" and "to_status" not in fields:
        raise ParseError("'task: status' needs a 'to' status")
    if op == "append" and "template" not in fields:
        raise ParseError("'task: append' needs a 'template'")
    return TaskNode(**fields, **_common(head))


def _parse_validate(head: _Head, warnings: list[str]) -> ValidateNode:
    if not head.value:
        raise ParseError("'validate' needs a condition")
    return ValidateNode(condition=head.value, message=head.options.get("message") or None, **_common(head))


def _parse_delay(head: _Head, warnings: list[str]) -> DelayNode:
    if not head.value:
        raise ParseError("'delay' needs a duration")
    return DelayNode(duration=head.value, **_common(head))


def _parse_filter(head: _Head, warnings: list[str]) -> FilterNode:
    if not head.options.get("where"):
        raise ParseError("'filter' needs a 'where' condition")
    return FilterNode(
        items=head.value,
        where=head.options["where"],
        store_as=head.options.get("as") or "filtered",
        item_name=head.options.get("itemAs") or "item",
        **_common(head),
    )


def _parse_map(head: _Head, warnings: list[str]) -> MapNode:
    if "template" not in head.options:
        raise ParseError("'map' needs a 'template'")
    return MapNode(
        items=head.value,
        template=head.options["template"],
        store_as=head.options.get("as") or "mapped",
        item_name=head.options.get("itemAs") or "item",
        **_common(head),
    )


def _parse_date(head: _Head, warnings: list[str]) -> DateNode:
    options = head.options
    return DateNode(
        mode=_as_choice(head.value or "now", "mode", DATE_MODES),
        source=options.get("from") or None,
        store_as=options.get("as") or "date",
        format=_as_choice(options.get("format") or "iso", "format", DATE_FORMATS),
        **_common(head),
    )


def _parse_log(head: _Head, warnings: list[str]) -> LogNode:
    level = str(head.options.get("level") or "info").lower()
    return LogNode(message=head.value, level=_as_choice(level, "level", ("debug", "info", "warning", "error")), **_common(head))


def _parse_notify(head: _Head, warnings: list[str]) -> NotifyNode:
    duration = _optional_int(head.options, "duration")
    if duration is None:
        return NotifyNode(message=head.value, **_common(head))
    return NotifyNode(message=head.value, duration_ms=duration, **_common(head))


_BUILDERS: dict[str, Callable[[_Head, list[str]], ActionNode]] = {
    "read": _parse_read,
    "file": _parse_file,
    "fetch": _parse_fetch,
    "shell": _parse_shell,
    "transform": _parse_transform,
    "build": _parse_build,
    "query": _parse_query,
    "set": _parse_set,
    "match": _parse_match,
    "extract": _parse_extract,
    "if": _parse_if,
    "foreach": _parse_foreach,
    "return": _parse_return,
    "append": _parse_append,
    "task": _parse_task,
    "validate": _parse_validate,
    "delay": _parse_delay,
    "filter": _parse_filter,
    "map": _parse_map,
    "date": _parse_date,
    "log": _parse_log,
    "notify": _parse_notify,
}

_missing_builders = set(ACTION_KINDS) ^ set(_BUILDERS)
if _missing_builders:  # pragma: no cover - import-time consistency check
    raise RuntimeError(f"Parser builders out of sync with ACTION_KINDS: {sorted(_missing_builders)}")


def parse_action_node(item: RawItem, warnings: list[str] | None = None) -> ActionNode | None:
    """Parse one action bullet, or return ``None`` (with a warning) when it is unusable."""
    if warnings is None:
        warnings = []
    head = _read_head(item, warnings)
    if head is None:
        return None
    try:
        return _BUILDERS[head.kind](head, warnings)
    except ParseError as exc:
        where = f" (line {item.line + 1})" if item.line is not None else ""
        warnings.append(f"Dropping '{head.kind}' action{where}: {exc}")
        return None


def parse_action_sequence(items: Sequence[RawItem], warnings: list[str] | None = None) -> tuple[ActionNode, ...]:
    if warnings is None:
        warnings = []
    actions: list[ActionNode] = []
    for item in items:
        node = parse_action_node(item, warnings)
        if node is not None:
            actions.append(node)
    return tuple(actions)


def _section_items(value: Any) -> list[RawItem]:
    if isinstance(value, RawItem):
        return list(value.children)
    return from_data(value)


def has_triggers(raw: Mapping[str, Any]) -> bool:
    return any(raw.get(kind) for kind in TRIGGER_KINDS)


def parse_config(raw: Mapping[str, Any], source_tag: str) -> ParseResult:
    """Parse the trigger sections of a tag configuration.

    Every other key of ``raw`` is kept as ``raw_config`` and exposed to
    scripts as ``{{config.*}}``.

    Raises:
        ParseError: when no trigger section yields a trigger
    """
    warnings: list[str] = []
    triggers: list[Trigger] = []
    for kind in TRIGGER_KINDS:
        section = raw.get(kind)
        if not section:
            continue
        if not isinstance(section, (RawItem, list, tuple, Mapping, str)):
            warnings.append(f"Invalid trigger config for {kind}: expected a list of actions")
            continue
        actions = parse_action_sequence(_section_items(section), warnings)
        if not actions:
            warnings.append(f"No actions found for trigger: {kind}")
        triggers.append(Trigger(kind=kind, actions=actions))

    if not triggers:
        raise ParseError(f"No valid triggers found in config for {source_tag}")

    for warning in warnings:
        LOGGER.warning("%s: %s", source_tag, warning)
    raw_config = {key: value for key, value in raw.items() if key not in TRIGGER_KINDS}
    return ParseResult(
        config=ScriptConfig(triggers=tuple(triggers), source_tag=source_tag, raw_config=raw_config),
        warnings=warnings,
    )


def _config_value(text: str) -> Any:
    return parse_literal(clean_template(text))


def _tag_section(item: RawItem) -> dict[str, Any]:
    raw: dict[str, Any] = {}

    def collect(children: Sequence[RawItem]) -> None:
        for child in children:
            parsed = parse_key_value(child.text)
            if parsed is None:
                continue
            key, value = parsed
            if key in TRIGGER_KINDS:
                raw[key] = child
            elif key == "config":
                collect(child.children)
            elif child.children:
                raw[key] = _nested_config(child.children)
            else:
                raw[key] = _config_value(value)

    collect(item.children)
    return raw


def _nested_config(children: Sequence[RawItem]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for child in children:
        parsed = parse_key_value(child.text)
        if parsed is None:
            continue
        key, value = parsed
        record[key] = _nested_config(child.children) if child.children else _config_value(value)
    return record


def load_scripts(document_text: str) -> dict[str, ParseResult]:
    """Parse every ``#tag`` script defined in a tag-list document.

    Top-level bullets naming a tag hold an optional ``config:`` block and
    trigger sections, either directly or inside ``config:``. Tags without
    triggers are skipped with a warning.
    """
    scripts: dict[str, ParseResult] = {}
    for item in parse_outline(document_text):
        match = _TAG_HEAD.match(item.text.strip())
        if match is None:
            continue
        tag = f"#{match.group(1)}"
        raw = _tag_section(item)
        if not has_triggers(raw):
            LOGGER.warning("Skipping %s: no triggers configured", tag)
            continue
        try:
            scripts[tag] = parse_config(raw, tag)
        except ParseError as exc:
            LOGGER.warning("Skipping %s: %s", tag, exc)
    return scripts
