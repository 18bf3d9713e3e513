"""Runs trigger action sequences against an execution context."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from .actions import ACTION_HANDLERS
from .config import EngineSettings
from .context import ExecutionContext
from .errors import TagScriptError, describe_error
from .logging_utils import render_fields_block
from .nodes import ActionNode, ScriptConfig
from .notifications import LoggingNotifier
from .services import DocumentRef, Services, TextBuffer, WorkItem

LOGGER = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    state: ExecutionState
    context: ExecutionContext
    value: Any = None
    error: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.state in (ExecutionState.COMPLETED, ExecutionState.IDLE)


class PendingResponses:
    """Single-slot hand-off of a successful response to the done transition, keyed by document path.

    A new stash overwrites the previous one; consuming clears it.
    """

    def __init__(self) -> None:
        self._slots: dict[str, Any] = {}

    def stash(self, path: str, value: Any) -> None:
        self._slots[path] = value

    def consume(self, path: str) -> tuple[bool, Any]:
        if path not in self._slots:
            return False, None
        return True, self._slots.pop(path)

    def discard(self, path: str) -> None:
        self._slots.pop(path, None)

    def __contains__(self, path: object) -> bool:
        return path in self._slots

    def __len__(self) -> int:
        return len(self._slots)


class Engine:
    """Executes parsed scripts.

    One engine owns the collaborators, the settings and the pending-response
    hand-off; every invocation gets a fresh :class:`ExecutionContext`.
    """

    def __init__(self, services: Services | None = None, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        services = services or Services()
        if services.notifier is None:
            services = dataclasses.replace(services, notifier=LoggingNotifier())
        self.services = services
        self.pending = PendingResponses()

    def _document(self, document: DocumentRef | str | Path | None, item: WorkItem | None) -> DocumentRef | None:
        if isinstance(document, DocumentRef):
            return document
        path = Path(document).as_posix() if document is not None else (item.path if item else None)
        if path is None:
            return None
        if self.services.documents is not None:
            return self.services.documents.describe(path)
        return DocumentRef.from_path(path)

    def create_context(
        self,
        *,
        item: WorkItem | None = None,
        line: str | None = None,
        document: DocumentRef | str | Path | None = None,
        buffer: TextBuffer | None = None,
        trigger_kind: str | None = None,
        tag: str | None = None,
        initial_vars: Mapping[str, Any] | None = None,
    ) -> ExecutionContext:
        """Build a context seeded with ``line``, ``file`` and ``task``, then ``initial_vars``."""
        cursor = buffer.get_cursor() if buffer is not None else None
        if line is None:
            if item is not None:
                line = item.text
            elif buffer is not None and cursor is not None:
                line = buffer.get_line(cursor.line)
            else:
                line = ""
        ref = self._document(document, item)

        variables: dict[str, Any] = {"line": line}
        if ref is not None:
            variables["file"] = ref.metadata()
        if item is not None:
            variables["task"] = item.metadata()
        variables.update(initial_vars or {})

        return ExecutionContext(
            variables=variables,
            line=line,
            document=ref,
            item=item,
            buffer=buffer,
            response=variables.get("response"),
            cursor=cursor,
            trigger_kind=trigger_kind,
            tag=tag,
            services=self.services,
            settings=self.settings,
        )

    def has_trigger(self, config: ScriptConfig, kind: str) -> bool:
        return config.has_trigger(kind)

    async def execute_trigger(self, config: ScriptConfig, kind: str, context: ExecutionContext) -> ExecutionResult:
        """Run the ``kind`` trigger of ``config``. A config without that trigger is an IDLE no-op."""
        trigger = config.trigger(kind)
        if trigger is None:
            LOGGER.debug("%s has no %s trigger", config.source_tag, kind)
            return ExecutionResult(state=ExecutionState.IDLE, context=context)

        context.trigger_kind = kind
        context.tag = context.tag or config.source_tag
        context.variables.setdefault("config", dict(config.raw_config))
        LOGGER.debug("Running %s %s (%d action(s))", config.source_tag, kind, len(trigger.actions))
        try:
            context = await self.execute_sequence(trigger.actions, context)
        except Exception as exc:
            context.error = exc
            context.set("error", describe_error(exc))
            self._log_failure(config, kind, context, exc)
            return ExecutionResult(state=ExecutionState.FAILED, context=context, error=exc)
        return ExecutionResult(state=ExecutionState.COMPLETED, context=context, value=context.return_value)

    async def run(self, config: ScriptConfig, kind: str, **options: Any) -> ExecutionResult:
        """Create a context from ``options`` (see :meth:`create_context`) and execute ``kind``."""
        context = self.create_context(trigger_kind=kind, tag=config.source_tag, **options)
        return await self.execute_trigger(config, kind, context)

    async def execute_sequence(self, actions: Sequence[ActionNode], context: ExecutionContext) -> ExecutionContext:
        for node in actions:
            if context.should_return:
                break
            context = await self.execute_node(node, context)
        return context

    async def execute_node(self, node: ActionNode, context: ExecutionContext) -> ExecutionContext:
        handler = ACTION_HANDLERS[type(node)]
        LOGGER.debug("%s: %s action (line %s)", context.tag, node.kind, node.source_line)
        try:
            return await handler(node, context, self.execute_sequence)
        except Exception as exc:
            if not node.on_error:
                raise
            LOGGER.debug("%s: %s action failed (%s); running its onError handler", context.tag, node.kind, exc)
            context.error = exc
            context.set("error", describe_error(exc))
            return await self.execute_sequence(node.on_error, context)

    def _log_failure(self, config: ScriptConfig, kind: str, context: ExecutionContext, exc: Exception) -> None:
        fields = {
            "Trigger": kind,
            "Document": context.document.path if context.document else None,
            "Line": context.line,
            "Error": describe_error(exc)["name"],
            "Message": str(exc),
        }
        block = render_fields_block(f"Script {config.source_tag} failed", fields)
        if isinstance(exc, TagScriptError):
            LOGGER.warning(block)
        else:
            LOGGER.warning(block, exc_info=exc)


async def execute_trigger(
    config: ScriptConfig,
    kind: str,
    context: ExecutionContext,
    *,
    engine: Engine | None = None,
) -> ExecutionResult:
    """Run a trigger with ``engine``, or with a throwaway engine built from the context's services."""
    if engine is None:
        engine = Engine(context.services, context.settings)
        context.services = engine.services
    return await engine.execute_trigger(config, kind, context)


def has_trigger(config: ScriptConfig, kind: str) -> bool:
    return config.has_trigger(kind)
