from __future__ import annotations

import pytest

from tagscript.buffer import MemoryBuffer
from tagscript.connector import ScriptConnector
from tagscript.executor import ExecutionState
from tagscript.services import CursorPosition

SUCCESS_SCRIPT = """
- onTrigger:
    - set: version value: 1.2
    - return: {{version}}
- onDone:
    - set: got value: {{response}}
    - set: moved value: {{event.fromStatus}}->{{event.toStatus}}
"""


@pytest.mark.asyncio
async def test_success_marks_item_and_hands_response_to_done(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] Ship release #deploy\n")
    connector = ScriptConnector("#deploy", engine, load_script(SUCCESS_SCRIPT, tag="#deploy"))
    item = item_at("inbox.md")

    result = await connector.on_trigger(item)

    assert result.success
    assert (tmp_path / "inbox.md").read_text() == "- [x] Ship release #deploy ✓\n"
    assert item.text == "Ship release #deploy ✓"

    done = await connector.on_status_change(item, " ", "x")

    assert done.context.get("got") == 1.2
    assert done.context.get("moved") == " ->x"
    assert len(engine.pending) == 0


@pytest.mark.asyncio
async def test_done_without_stash_has_no_response(load_script, engine, write_doc, item_at) -> None:
    write_doc("inbox.md", "- [x] Ship release #deploy\n")
    config = load_script(
        """
        - onTrigger:
            - log: run
        - onDone:
            - set: got value: {{response?}}
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    done = await connector.on_status_change(item_at("inbox.md"), " ", "x")

    assert done.success
    assert "response" not in done.context.variables
    assert done.context.get("got") == ""


@pytest.mark.asyncio
async def test_status_without_trigger_is_ignored(load_script, engine, write_doc, item_at) -> None:
    write_doc("inbox.md", "- [/] Ship release #deploy\n")
    connector = ScriptConnector("#deploy", engine, load_script(SUCCESS_SCRIPT))

    assert await connector.on_status_change(item_at("inbox.md"), " ", "/") is None
    assert await connector.on_status_change(item_at("inbox.md"), " ", "?") is None


@pytest.mark.asyncio
async def test_failure_prepends_error_child(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] Ship release #deploy\n  - notes\n")
    config = load_script(
        """
        - onTrigger:
            - validate: false
                - message: Nope
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    result = await connector.on_trigger(item_at("inbox.md"))

    assert result.state is ExecutionState.FAILED
    assert (tmp_path / "inbox.md").read_text() == "- [x] Ship release #deploy\n  * ✗ Nope\n  - notes\n"


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure(load_script, engine, http, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] Sync #deploy\n")
    http.add(500, "busy")
    http.add(200, '{"ok": true}', {"Content-Type": "application/json"})
    config = load_script(
        """
        - config:
            - retry: 1
        - onTrigger:
            - fetch: `https://api.example.com/sync` as: `data`
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    result = await connector.on_trigger(item_at("inbox.md"))

    assert result.success
    assert len(http.requests) == 2
    assert (tmp_path / "inbox.md").read_text() == "- [x] Sync #deploy ✓\n"


@pytest.mark.asyncio
async def test_on_error_trigger_replaces_error_marker(load_script, engine, notifier, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] Sync #deploy\n")
    config = load_script(
        """
        - onTrigger:
            - validate: false
        - onError:
            - notify: Sync failed: {{error.message}}
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    result = await connector.on_trigger(item_at("inbox.md"))

    assert result.success
    assert result.context.trigger_kind == "onError"
    assert notifier.messages == ["Sync failed: Validation failed: false"]
    assert (tmp_path / "inbox.md").read_text() == "- [x] Sync #deploy\n"


@pytest.mark.asyncio
async def test_success_clears_old_errors_when_configured(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] Sync #deploy\n  * ✗ old failure\n  - keep\n")
    config = load_script(
        """
        - config:
            - clearErrorsOnSuccess: true
        - onTrigger:
            - log: ok
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    await connector.on_trigger(item_at("inbox.md"))

    assert (tmp_path / "inbox.md").read_text() == "- [x] Sync #deploy ✓\n  - keep\n"


@pytest.mark.asyncio
async def test_transforming_scripts_get_no_success_marker(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [x] draft #deploy\n")
    config = load_script(
        """
        - onTrigger:
            - transform: `final #deploy`
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    await connector.on_trigger(item_at("inbox.md"))

    assert (tmp_path / "inbox.md").read_text() == "- [x] final #deploy\n"


@pytest.mark.asyncio
async def test_reset_strips_marker_and_errors(load_script, engine, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [ ] Ship #deploy ✓ (2024-01-01 10:00)\n  * ✗ old\n  - keep\n")
    config = load_script(
        """
        - config:
            - clearErrorsOnReset: true
        - onTrigger:
            - log: run
        """
    )
    connector = ScriptConnector("#deploy", engine, config)

    result = await connector.on_reset(item_at("inbox.md"))

    assert result.success
    assert (tmp_path / "inbox.md").read_text() == "- [ ] Ship #deploy\n  - keep\n"


@pytest.mark.asyncio
async def test_options_overlay_settings_config_and_overrides(load_script, engine) -> None:
    config = load_script(
        """
        - config:
            - retry: 2
            - label: nightly
        - onTrigger:
            - log: {{config.label}}
        """
    )

    connector = ScriptConnector("#demo", engine, config, options={"retry": 0})

    assert connector.options["errorFormat"] == "✗ "
    assert connector.options["label"] == "nightly"
    assert connector.options["retry"] == 0


@pytest.mark.asyncio
async def test_on_enter_failure_inserts_error_line(load_script, engine) -> None:
    config = load_script(
        """
        - onEnter:
            - validate: false
        """
    )
    buffer = MemoryBuffer("- Fetch #deploy\n- next", cursor=CursorPosition(0, 15))
    connector = ScriptConnector("#deploy", engine, config)

    result = await connector.on_enter(buffer)

    assert not result.success
    assert buffer.lines == ["- Fetch #deploy", "  * Error: Validation failed: false", "- next"]
    assert buffer.get_cursor() == CursorPosition(0, 15)


@pytest.mark.asyncio
async def test_on_data_exposes_payload(load_script, engine) -> None:
    config = load_script(
        """
        - onData:
            - set: title value: {{data.title}}
        """
    )
    connector = ScriptConnector("#demo", engine, config)

    result = await connector.on_data({"title": "Dune"})

    assert result.context.get("title") == "Dune"
    assert await connector.on_enter(MemoryBuffer("x")) is None
