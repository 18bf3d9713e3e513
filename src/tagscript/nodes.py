"""Parsed script structure: action nodes, triggers and configs.

Every node is an immutable dataclass. ``ACTION_KINDS`` maps the authored
keyword (``fetch:``, ``foreach:`` ...) to its node class and is the closed
set the parser accepts and the action registry must cover.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

TRIGGER_KINDS = (
    "onTrigger",
    "onDone",
    "onError",
    "onInProgress",
    "onCancelled",
    "onReset",
    "onEnter",
    "onData",
)

READ_SOURCES = ("line", "document", "file", "selection", "children", "wikilink", "image")
TRANSFORM_MODES = ("replace", "append", "prepend")
TASK_OPS = ("clear", "status", "append")
DATE_MODES = ("now", "parse")
DATE_FORMATS = ("epoch", "unix", "iso", "date")
IMAGE_FORMATS = ("base64", "dataUri", "url")
AUTH_TYPES = ("basic", "bearer", "apiKey")


@dataclass(frozen=True, slots=True, kw_only=True)
class BaseNode:
    on_error: tuple["ActionNode", ...] = ()
    source_line: int | None = None

    @property
    def kind(self) -> str:
        return NODE_KINDS[type(self)]


@dataclass(frozen=True, slots=True)
class AuthConfig:
    type: str
    username: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    header_name: str = "X-API-Key"


@dataclass(frozen=True, slots=True)
class TransformChild:
    template: str
    indent: int = 0
    children: tuple["TransformChild", ...] = ()


@dataclass(frozen=True, slots=True)
class ReadNode(BaseNode):
    pattern: str = ""
    source: str = "line"
    reference: str | None = None
    store_as: str | None = None
    file_as: str = "fromFile"
    strip: bool = True
    strip_frontmatter: bool = False
    include_frontmatter: bool = False
    frontmatter_as: str = "frontmatter"
    children_as: str = "children"
    children_lines_as: str = "childrenLines"
    format: str = "dataUri"


@dataclass(frozen=True, slots=True)
class FileNode(BaseNode):
    reference: str
    store_as: str = "linked"


@dataclass(frozen=True, slots=True)
class FetchNode(BaseNode):
    url: str
    method: str = "GET"
    headers: tuple[tuple[str, str], ...] = ()
    body: str | None = None
    auth: AuthConfig | None = None
    store_as: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True, slots=True)
class ShellNode(BaseNode):
    command: str
    store_as: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True, slots=True)
class TransformNode(BaseNode):
    template: str | None = None
    mode: str = "replace"
    children: tuple[TransformChild, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildNode(BaseNode):
    name: str
    # Values are templates, or nested property tuples for sub-objects
    properties: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class QueryNode(BaseNode):
    identifier: str
    store_as: str = "results"
    options: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class SetNode(BaseNode):
    name: str
    value: str = ""
    pattern: str | None = None
    source: str = "{{line}}"


@dataclass(frozen=True, slots=True)
class MatchNode(BaseNode):
    pattern: str
    source: str = "{{line}}"


@dataclass(frozen=True, slots=True)
class ExtractNode(BaseNode):
    pattern: str
    source: str = "{{line}}"
    store_as: str = "matches"


@dataclass(frozen=True, slots=True)
class IfNode(BaseNode):
    condition: str
    then: tuple["ActionNode", ...] = ()
    otherwise: tuple["ActionNode", ...] = ()


@dataclass(frozen=True, slots=True)
class ForeachNode(BaseNode):
    items: str
    item_name: str = "item"
    index_name: str | None = None
    body: tuple["ActionNode", ...] = ()

    @property
    def index_variable(self) -> str:
        return self.index_name or f"{self.item_name}_index"


@dataclass(frozen=True, slots=True)
class ReturnNode(BaseNode):
    value: str | None = None


@dataclass(frozen=True, slots=True)
class AppendNode(BaseNode):
    template: str
    indent: int = 1


@dataclass(frozen=True, slots=True)
class TaskNode(BaseNode):
    op: str
    bullets: str = "*"
    to_status: str | None = None
    template: str | None = None
    indent: int = 1
    bullet: str = "+"


@dataclass(frozen=True, slots=True)
class ValidateNode(BaseNode):
    condition: str
    message: str | None = None


@dataclass(frozen=True, slots=True)
class DelayNode(BaseNode):
    duration: str


@dataclass(frozen=True, slots=True)
class FilterNode(BaseNode):
    items: str
    where: str
    store_as: str = "filtered"
    item_name: str = "item"


@dataclass(frozen=True, slots=True)
class MapNode(BaseNode):
    items: str
    template: str
    store_as: str = "mapped"
    item_name: str = "item"


@dataclass(frozen=True, slots=True)
class DateNode(BaseNode):
    mode: str = "now"
    source: str | None = None
    store_as: str = "date"
    format: str = "iso"


@dataclass(frozen=True, slots=True)
class LogNode(BaseNode):
    message: str
    level: str = "info"


@dataclass(frozen=True, slots=True)
class NotifyNode(BaseNode):
    message: str
    duration_ms: int = 4000


ActionNode = (
    ReadNode
    | FileNode
    | FetchNode
    | ShellNode
    | TransformNode
    | BuildNode
    | QueryNode
    | SetNode
    | MatchNode
    | ExtractNode
    | IfNode
    | ForeachNode
    | ReturnNode
    | AppendNode
    | TaskNode
    | ValidateNode
    | DelayNode
    | FilterNode
    | MapNode
    | DateNode
    | LogNode
    | NotifyNode
)

ACTION_KINDS: dict[str, type[BaseNode]] = {
    "read": ReadNode,
    "file": FileNode,
    "fetch": FetchNode,
    "shell": ShellNode,
    "transform": TransformNode,
    "build": BuildNode,
    "query": QueryNode,
    "set": SetNode,
    "match": MatchNode,
    "extract": ExtractNode,
    "if": IfNode,
    "foreach": ForeachNode,
    "return": ReturnNode,
    "append": AppendNode,
    "task": TaskNode,
    "validate": ValidateNode,
    "delay": DelayNode,
    "filter": FilterNode,
    "map": MapNode,
    "date": DateNode,
    "log": LogNode,
    "notify": NotifyNode,
}

NODE_KINDS: dict[type[BaseNode], str] = {node_type: kind for kind, node_type in ACTION_KINDS.items()}


@dataclass(frozen=True, slots=True)
class Trigger:
    kind: str
    actions: tuple[ActionNode, ...] = ()


@dataclass(frozen=True, slots=True)
class ScriptConfig:
    triggers: tuple[Trigger, ...]
    source_tag: str
    raw_config: Mapping[str, Any] = field(default_factory=dict)

    def trigger(self, kind: str) -> Trigger | None:
        for trigger in self.triggers:
            if trigger.kind == kind:
                return trigger
        return None

    def has_trigger(self, kind: str) -> bool:
        return self.trigger(kind) is not None

    @property
    def trigger_kinds(self) -> tuple[str, ...]:
        return tuple(trigger.kind for trigger in self.triggers)


def iter_nodes(actions: tuple[ActionNode, ...]):
    """Yield every node of a sequence depth-first, including nested and error-handler nodes."""
    for node in actions:
        yield node
        if isinstance(node, IfNode):
            yield from iter_nodes(node.then)
            yield from iter_nodes(node.otherwise)
        elif isinstance(node, ForeachNode):
            yield from iter_nodes(node.body)
        yield from iter_nodes(node.on_error)
