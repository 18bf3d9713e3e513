from __future__ import annotations

import pytest

from tagscript.actions import ACTION_HANDLERS
from tagscript.buffer import MemoryBuffer
from tagscript.errors import HttpActionError, ValidationFailedError
from tagscript.executor import Engine, ExecutionState, PendingResponses, execute_trigger, has_trigger
from tagscript.nodes import LogNode
from tagscript.services import CursorPosition, Services, WorkItem


@pytest.mark.asyncio
async def test_missing_trigger_is_idle(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - set: x value: 1
        """
    )

    result = await Engine().run(config, "onDone")

    assert result.state is ExecutionState.IDLE
    assert result.success
    assert not has_trigger(config, "onDone")


@pytest.mark.asyncio
async def test_context_is_seeded_from_item_and_initial_vars(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - set: seen value: {{task.text}} in {{file.basename}}
        """
    )
    item = WorkItem(text="Buy milk #shop", path="lists/list.md", line=0, tags=("#shop",))

    result = await Engine().run(config, "onTrigger", item=item, initial_vars={"extra": 1})

    variables = result.context.variables
    assert result.state is ExecutionState.COMPLETED
    assert variables["line"] == "Buy milk #shop"
    assert variables["file"] == {"path": "lists/list.md", "name": "list.md", "basename": "list", "extension": "md"}
    assert variables["task"]["tags"] == ["#shop"]
    assert variables["extra"] == 1
    assert variables["seen"] == "Buy milk #shop in list"
    assert result.context.trigger_kind == "onTrigger"
    assert result.context.tag == "#demo"


@pytest.mark.asyncio
async def test_conditions_and_return_value(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - set: n value: {{count + 2}}
            - if: {{n}} > 3
                - set: size value: big
                - else:
                    - set: size value: small
            - return: {{size}}
        """
    )
    engine = Engine()

    big = await engine.run(config, "onTrigger", initial_vars={"count": 3})
    small = await engine.run(config, "onTrigger", initial_vars={"count": 0})

    assert big.value == "big"
    assert big.context.get("n") == 5
    assert small.value == "small"


@pytest.mark.asyncio
async def test_action_error_handler_recovers_and_sequence_continues(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - validate: {{n}} > 10
                - message: n too small: {{n}}
                - onError:
                    - set: handled value: {{error.message}}
            - set: after value: yes
        """
    )

    result = await Engine().run(config, "onTrigger", initial_vars={"n": 5})

    assert result.state is ExecutionState.COMPLETED
    assert result.context.get("handled") == "n too small: 5"
    assert result.context.get("error")["name"] == "ValidationFailedError"
    assert result.context.get("after") == "yes"


@pytest.mark.asyncio
async def test_nearest_enclosing_handler_catches_nested_failure(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - if: true
                - validate: false
                - set: skipped value: yes
                - onError:
                    - set: caught value: outer
        """
    )

    result = await Engine().run(config, "onTrigger")

    assert result.state is ExecutionState.COMPLETED
    assert result.context.get("caught") == "outer"
    assert "skipped" not in result.context.variables


@pytest.mark.asyncio
async def test_unhandled_failure_stops_the_trigger(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - validate: {{ready}}
            - set: after value: yes
        """
    )

    result = await Engine().run(config, "onTrigger", initial_vars={"ready": False})

    assert result.state is ExecutionState.FAILED
    assert not result.success
    assert isinstance(result.error, ValidationFailedError)
    assert str(result.error) == "Validation failed: {{ready}}"
    assert result.context.get("error")["kind"] == "action"
    assert "after" not in result.context.variables


@pytest.mark.asyncio
async def test_unexpected_exception_is_reported_as_failure(load_script, monkeypatch) -> None:
    async def boom(node, context, execute_child):
        raise RuntimeError("handler exploded")

    monkeypatch.setitem(ACTION_HANDLERS, LogNode, boom)
    config = load_script(
        """
        - onTrigger:
            - log: hello
        """
    )

    result = await Engine().run(config, "onTrigger")

    assert result.state is ExecutionState.FAILED
    assert result.context.get("error") == {"message": "handler exploded", "name": "RuntimeError", "kind": "internal"}


@pytest.mark.asyncio
async def test_http_error_carries_status_and_body(load_script, engine, http) -> None:
    http.add(500, "quota exceeded")
    config = load_script(
        """
        - onTrigger:
            - fetch: `https://api.example.com/items` as: `data`
        """
    )

    result = await engine.run(config, "onTrigger")

    assert result.state is ExecutionState.FAILED
    assert isinstance(result.error, HttpActionError)
    assert result.error.status == 500
    assert "500" in str(result.error)
    assert "quota exceeded" in str(result.error)


@pytest.mark.asyncio
async def test_http_error_handled_by_notify(load_script, engine, http, notifier) -> None:
    http.add(500, "quota exceeded")
    config = load_script(
        """
        - onTrigger:
            - fetch: `https://api.example.com/items` as: `data`
                - onError:
                    - notify: Fetch failed: {{error.message}}
        """
    )

    result = await engine.run(config, "onTrigger")

    assert result.state is ExecutionState.COMPLETED
    assert notifier.messages == ["Fetch failed: HTTP 500: quota exceeded"]
    assert notifier.sent[0]["context"]["tag"] == "#demo"


@pytest.mark.asyncio
async def test_return_inside_loop_halts_everything(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - set: items value: [1, 2, 3]
            - foreach: items as: n
                - set: last value: {{n}}
                - if: {{n}} == 2
                    - return: done
            - set: after value: yes
        """
    )

    result = await Engine().run(config, "onTrigger")

    assert result.state is ExecutionState.COMPLETED
    assert result.value == "done"
    assert result.context.get("last") == 2
    assert "after" not in result.context.variables
    assert "n" not in result.context.variables


@pytest.mark.asyncio
async def test_foreach_over_non_list_fails(load_script) -> None:
    config = load_script(
        """
        - onTrigger:
            - foreach: {{title}}
                - log: {{item}}
        """
    )

    result = await Engine().run(config, "onTrigger", initial_vars={"title": "abc"})

    assert result.state is ExecutionState.FAILED
    assert "is not an array" in str(result.error)


@pytest.mark.asyncio
async def test_foreach_append_in_buffer_keeps_siblings_in_order(load_script, engine) -> None:
    config = load_script(
        """
        - onEnter:
            - set: items value: ["milk", "eggs"]
            - foreach: items
                - append: {{item}}
        """
    )
    buffer = MemoryBuffer("- Groceries #list", cursor=CursorPosition(0, 17))

    result = await engine.run(config, "onEnter", buffer=buffer)

    assert result.state is ExecutionState.COMPLETED
    assert buffer.lines == ["- Groceries #list", "  - milk", "  - eggs"]
    assert buffer.get_cursor() == CursorPosition(2, 8)


@pytest.mark.asyncio
async def test_foreach_append_on_work_item(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("list.md", "- [ ] Groceries #list\n")
    config = load_script(
        """
        - onTrigger:
            - set: items value: ["milk", "eggs"]
            - foreach: items
                - append: {{item}}
        """
    )

    result = await engine.run(config, "onTrigger", item=item_at("list.md"))

    assert result.state is ExecutionState.COMPLETED
    assert (tmp_path / "list.md").read_text() == "- [ ] Groceries #list\n  - milk\n  - eggs\n"


@pytest.mark.asyncio
async def test_module_level_execute_trigger_uses_context_services(load_script, notifier) -> None:
    config = load_script(
        """
        - onTrigger:
            - notify: hi {{name}}
        """
    )
    context = Engine(Services(notifier=notifier)).create_context(initial_vars={"name": "there"})

    result = await execute_trigger(config, "onTrigger", context)

    assert result.success
    assert notifier.messages == ["hi there"]


@pytest.mark.asyncio
async def test_default_engine_logs_notifications(load_script, caplog) -> None:
    config = load_script(
        """
        - onTrigger:
            - notify: logged only
        """
    )

    with caplog.at_level("INFO", logger="tagscript"):
        result = await Engine().run(config, "onTrigger")

    assert result.success
    assert "[#demo] logged only" in caplog.text


def test_pending_responses_are_single_use() -> None:
    pending = PendingResponses()
    pending.stash("a.md", {"id": 1})
    pending.stash("a.md", {"id": 2})

    assert "a.md" in pending
    assert pending.consume("a.md") == (True, {"id": 2})
    assert pending.consume("a.md") == (False, None)

    pending.stash("b.md", None)
    pending.discard("b.md")
    assert len(pending) == 0
