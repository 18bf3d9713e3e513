"""Status-driven script binding.

A :class:`ScriptConnector` ties one tag's script to the lifecycle of the
work items carrying that tag: it runs ``onTrigger`` when an item is checked,
marks success or failure on the item, hands the response to the later done
transition and dispatches status changes to their triggers.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from .errors import describe_error
from .executor import Engine, ExecutionResult, ExecutionState
from .nodes import ScriptConfig, TransformNode, iter_nodes
from .services import ChildLine, CursorPosition, DocumentRef, TaskUpdate, TextBuffer, WorkItem

LOGGER = logging.getLogger(__name__)

STATUS_TRIGGERS = {
    "x": "onDone",
    "!": "onError",
    "/": "onInProgress",
    "-": "onCancelled",
}

SUCCESS_MARK = "✓"
ERROR_BULLET = "*"
_SUCCESS_SUFFIX = re.compile(r"\s*" + SUCCESS_MARK + r".*$")


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M")


class ScriptConnector:
    """Binds one tag's parsed script to work-item status transitions.

    ``options`` (settings defaults, overlaid by the tag's ``config:`` block and
    then by explicit overrides) are exposed to scripts as ``{{config.*}}``.
    """

    def __init__(
        self,
        tag: str,
        engine: Engine,
        config: ScriptConfig,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.tag = tag
        self.engine = engine
        self.config = config
        self.options: dict[str, Any] = {
            **engine.settings.connector.as_options(),
            **dict(config.raw_config),
            **dict(options or {}),
        }

    def has_trigger(self, kind: str) -> bool:
        return self.engine.has_trigger(self.config, kind)

    def _variables(self, **extra: Any) -> dict[str, Any]:
        variables: dict[str, Any] = {"config": dict(self.options)}
        variables.update({key: value for key, value in extra.items() if value is not None})
        return variables

    def _stamp(self, text: str) -> str:
        if self.options.get("timestamps"):
            return f"{text} ({_timestamp()})"
        return text

    async def _edit(self, item: WorkItem, update: TaskUpdate) -> None:
        tasks = self.engine.services.tasks
        if tasks is None:
            LOGGER.debug("%s: no task editor, skipping marker update", self.tag)
            return
        await tasks.update(item, update)

    async def _attempt(self, item: WorkItem, event: Mapping[str, Any] | None) -> ExecutionResult:
        return await self.engine.run(
            self.config,
            "onTrigger",
            item=item,
            initial_vars=self._variables(event=dict(event) if event else None),
        )

    async def on_trigger(self, item: WorkItem, *, event: Mapping[str, Any] | None = None) -> ExecutionResult:
        """Run ``onTrigger`` for a checked item, then mark it as succeeded or failed."""
        result = await self._attempt(item, event)
        if result.state is ExecutionState.IDLE:
            return result
        if result.success:
            await self.on_success(item, self._response_of(result))
            return result
        return await self.on_error(item, result.error, event=event, first_result=result)

    @staticmethod
    def _response_of(result: ExecutionResult) -> Any:
        return result.value if result.value is not None else result.context.response

    def _rewrites_line(self) -> bool:
        return any(
            isinstance(node, TransformNode) for trigger in self.config.triggers for node in iter_nodes(trigger.actions)
        )

    async def on_success(self, item: WorkItem, response: Any) -> None:
        self.engine.pending.stash(item.path, response)
        update = TaskUpdate()
        if not self._rewrites_line():
            update.append = self._stamp(SUCCESS_MARK)
        if self.options.get("clearErrorsOnSuccess"):
            update.remove_children_by_marker = ERROR_BULLET
        if update.append or update.remove_children_by_marker:
            await self._edit(item, update)

    async def on_error(
        self,
        item: WorkItem,
        error: BaseException | None,
        *,
        event: Mapping[str, Any] | None = None,
        first_result: ExecutionResult | None = None,
    ) -> ExecutionResult:
        """Handle a failed ``onTrigger``: retry, then run ``onError`` or mark the item."""
        self.engine.pending.discard(item.path)
        result = first_result
        for attempt in range(int(self.options.get("retry") or 0)):
            LOGGER.info("%s: retrying %s (attempt %d)", self.tag, item.text, attempt + 1)
            result = await self._attempt(item, event)
            if result.success:
                await self.on_success(item, self._response_of(result))
                return result
            error = result.error

        if self.has_trigger("onError") and error is not None:
            handled = await self.engine.run(
                self.config,
                "onError",
                item=item,
                initial_vars=self._variables(error=describe_error(error)),
            )
            if handled.success:
                return handled

        message = f"{self.options.get('errorFormat', '✗ ')}{error}"
        await self._edit(item, TaskUpdate(prepend_children=[ChildLine(text=self._stamp(message), marker=ERROR_BULLET)]))
        if result is None:
            context = self.engine.create_context(item=item, tag=self.tag)
            result = ExecutionResult(state=ExecutionState.FAILED, context=context, error=error)
        return result

    async def on_reset(self, item: WorkItem) -> ExecutionResult:
        """Unchecking an item runs ``onReset``, or clears the success marker."""
        if self.has_trigger("onReset"):
            result = await self.engine.run(self.config, "onReset", item=item, initial_vars=self._variables())
            if result.success:
                return result
        update = TaskUpdate(replace=lambda text: _SUCCESS_SUFFIX.sub("", text))
        if self.options.get("clearErrorsOnReset"):
            update.remove_children_by_marker = ERROR_BULLET
        await self._edit(item, update)
        context = self.engine.create_context(item=item, tag=self.tag)
        return ExecutionResult(state=ExecutionState.COMPLETED, context=context)

    async def on_status_change(self, item: WorkItem, from_status: str, to_status: str) -> ExecutionResult | None:
        """Dispatch a status change to its trigger; ``x`` receives the stashed response."""
        kind = STATUS_TRIGGERS.get(to_status)
        if kind is None or not self.has_trigger(kind):
            return None
        extra: dict[str, Any] = {"event": {"fromStatus": from_status, "toStatus": to_status}}
        if to_status == "x":
            found, response = self.engine.pending.consume(item.path)
            if found:
                extra["response"] = response
        return await self.engine.run(self.config, kind, item=item, initial_vars=self._variables(**extra))

    async def on_enter(
        self,
        buffer: TextBuffer,
        *,
        document: DocumentRef | str | Path | None = None,
        item: WorkItem | None = None,
    ) -> ExecutionResult | None:
        """Run ``onEnter`` for the buffer's current line; failures leave an error bullet below it."""
        if not self.has_trigger("onEnter"):
            return None
        result = await self.engine.run(
            self.config,
            "onEnter",
            buffer=buffer,
            document=document,
            item=item,
            initial_vars=self._variables(),
        )
        if not result.success and item is None:
            cursor = result.context.cursor or buffer.get_cursor()
            line = buffer.get_line(cursor.line)
            indent = line[: len(line) - len(line.lstrip())]
            unit = self.engine.settings.indent_unit
            buffer.insert_lines(cursor.line, [f"{indent}{unit}{ERROR_BULLET} Error: {result.error}"])
            buffer.set_cursor(CursorPosition(cursor.line, len(line)))
        return result

    async def on_data(
        self,
        data: Any,
        *,
        document: DocumentRef | str | Path | None = None,
        item: WorkItem | None = None,
    ) -> ExecutionResult | None:
        """Run ``onData`` with an external payload exposed as ``{{data}}``."""
        if not self.has_trigger("onData"):
            return None
        return await self.engine.run(
            self.config,
            "onData",
            item=item,
            document=document,
            initial_vars=self._variables(data=data),
        )
