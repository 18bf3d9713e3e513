"""
Action handlers.

Every handler is ``async (node, context, execute_child) -> context``;
``execute_child`` runs a nested action sequence with the executor's full
semantics (error handlers, early return). ``ACTION_HANDLERS`` is keyed by
node class and must cover every kind in :data:`tagscript.nodes.ACTION_KINDS`.
"""

from __future__ import annotations


from ..nodes import (
    ACTION_KINDS,
    AppendNode,
    BaseNode,
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
    SetNode,
    ShellNode,
    TaskNode,
    TransformNode,
    ValidateNode,
)
from .base import ActionHandler, ExecuteChild
from .control import (
    delay_action,
    foreach_action,
    if_action,
    log_action,
    notify_action,
    return_action,
    validate_action,
)
from .editing import append_action, task_action, transform_action
from .network import fetch_action, query_action
from .reading import file_action, read_action
from .shell import shell_action
from .variables import (
    build_action,
    date_action,
    extract_action,
    filter_action,
    map_action,
    match_action,
    set_action,
)

ACTION_HANDLERS: dict[type[BaseNode], ActionHandler] = {
    ReadNode: read_action,
    FileNode: file_action,
    FetchNode: fetch_action,
    ShellNode: shell_action,
    TransformNode: transform_action,
    BuildNode: build_action,
    QueryNode: query_action,
    SetNode: set_action,
    MatchNode: match_action,
    ExtractNode: extract_action,
    IfNode: if_action,
    ForeachNode: foreach_action,
    ReturnNode: return_action,
    AppendNode: append_action,
    TaskNode: task_action,
    ValidateNode: validate_action,
    DelayNode: delay_action,
    FilterNode: filter_action,
    MapNode: map_action,
    DateNode: date_action,
    LogNode: log_action,
    NotifyNode: notify_action,
}

_unhandled = set(ACTION_KINDS.values()) ^ set(ACTION_HANDLERS)
if _unhandled:  # pragma: no cover - import-time consistency check
    raise RuntimeError(f"Action handlers out of sync with ACTION_KINDS: {sorted(t.__name__ for t in _unhandled)}")

__all__ = ["ACTION_HANDLERS", "ActionHandler", "ExecuteChild"]
