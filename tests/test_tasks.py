from __future__ import annotations

import asyncio

import pytest

from tagscript.errors import ActionError
from tagscript.services import ChildLine, TaskUpdate
from tagscript.tasks import DocumentQueryService, DocumentTaskEditor, find_tags, work_item_from_line

INBOX = """\
# Inbox
- [ ] Write report #work
  - first
    - deep
  - second
- [ ] Other
"""


def test_work_item_from_line() -> None:
    item = work_item_from_line("  - [x] Ship #deploy #ops", "a.md", 3)

    assert (item.text, item.status, item.indent, item.line) == ("Ship #deploy #ops", "x", "  ", 3)
    assert item.tags == ("#deploy", "#ops")
    assert item.completed
    assert work_item_from_line("- plain bullet", "a.md", 0) is None


def test_find_tags_ignores_embedded_hashes() -> None:
    assert find_tags("email a#b and #c/d, ##e") == ("#c/d",)


@pytest.fixture
def editor(store) -> DocumentTaskEditor:
    return DocumentTaskEditor(store)


@pytest.mark.asyncio
async def test_update_line_and_children(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", INBOX)
    item = item_at("inbox.md", 1)

    await editor.update(
        item,
        TaskUpdate(append="✓", prepend="→", remove_children_by_offset=[3], append_children=[ChildLine("third")]),
    )

    assert (tmp_path / "inbox.md").read_text() == (
        "# Inbox\n- [ ] → Write report #work ✓\n  - first\n    - deep\n  - third\n- [ ] Other\n"
    )
    assert item.text == "→ Write report #work ✓"


@pytest.mark.asyncio
async def test_replace_with_callable_and_inject(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", INBOX)
    item = item_at("inbox.md", 1)

    await editor.update(
        item,
        TaskUpdate(
            replace=str.upper,
            inject_children_at_offset=(3, [ChildLine("between", indent=1, marker="+")]),
        ),
    )

    assert (tmp_path / "inbox.md").read_text() == (
        "# Inbox\n- [ ] WRITE REPORT #WORK\n  - first\n    - deep\n    + between\n  - second\n- [ ] Other\n"
    )
    assert item.tags == ("#WORK",)


@pytest.mark.asyncio
async def test_replace_and_remove_all_children(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", INBOX)

    await editor.update(item_at("inbox.md", 1), TaskUpdate(replace_children=[ChildLine("only", marker="*")]))

    assert (tmp_path / "inbox.md").read_text() == "# Inbox\n- [ ] Write report #work\n  * only\n- [ ] Other\n"

    await editor.update(item_at("inbox.md", 1), TaskUpdate(remove_all_children=True))

    assert (tmp_path / "inbox.md").read_text() == "# Inbox\n- [ ] Write report #work\n- [ ] Other\n"


@pytest.mark.asyncio
async def test_moved_item_is_found_by_text(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", INBOX)
    item = item_at("inbox.md", 1)
    (tmp_path / "inbox.md").write_text("new first line\n" + INBOX)

    await editor.set_status(item, "x")

    assert item.line == 2
    assert item.status == "x"
    assert (tmp_path / "inbox.md").read_text().splitlines()[2] == "- [x] Write report #work"


@pytest.mark.asyncio
async def test_missing_item_and_bad_status(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", INBOX)
    item = item_at("inbox.md", 5)

    with pytest.raises(ActionError, match="Unknown status marker"):
        await editor.set_status(item, "?")

    (tmp_path / "inbox.md").write_text("# Inbox\n")
    with pytest.raises(ActionError, match="Work item not found"):
        await editor.update(item, TaskUpdate(append="x"))


@pytest.mark.asyncio
async def test_children_report_relative_depth(editor, write_doc, item_at) -> None:
    write_doc("inbox.md", INBOX)

    children = await editor.children(item_at("inbox.md", 1))

    assert children == [
        ChildLine("first", indent=0, marker="-"),
        ChildLine("deep", indent=1, marker="-"),
        ChildLine("second", indent=0, marker="-"),
    ]


@pytest.mark.asyncio
async def test_concurrent_edits_to_one_document_are_serialized(editor, write_doc, item_at, tmp_path) -> None:
    write_doc("inbox.md", "- [ ] A #x\n- [ ] B #x\n")
    first, second = item_at("inbox.md", 0), item_at("inbox.md", 1)

    await asyncio.gather(
        editor.update(first, TaskUpdate(append_children=[ChildLine("a1")])),
        editor.update(second, TaskUpdate(append_children=[ChildLine("b1")])),
    )

    assert (tmp_path / "inbox.md").read_text() == "- [ ] A #x\n  - a1\n- [ ] B #x\n  - b1\n"


class TestQuery:
    @pytest.fixture
    def docs(self, write_doc) -> None:
        write_doc(
            "a.md",
            "- [ ] Read Dune #book\n  - author: Herbert\n- [x] Read Emma #book\n- [ ] Save #bookmark link\n",
        )
        write_doc("b/c.md", "- [ ] Read Ulysses #book\n")

    @pytest.mark.asyncio
    async def test_matches_whole_tags_across_documents(self, store, docs) -> None:
        results = await DocumentQueryService(store).query("book", {})

        assert [(entry["path"], entry["text"]) for entry in results] == [
            ("a.md", "Read Dune #book"),
            ("a.md", "Read Emma #book"),
            ("b/c.md", "Read Ulysses #book"),
        ]
        assert results[0]["children"] == ["author: Herbert"]
        assert results[0]["status"] == " "

    @pytest.mark.asyncio
    async def test_filters(self, store, docs) -> None:
        service = DocumentQueryService(store)

        assert len(await service.query("#book", {"status": "x"})) == 1
        assert len(await service.query("#book", {"status": [" ", "x"], "path": "b/*"})) == 1
        assert len(await service.query("#book", {"limit": 2})) == 2
        assert "children" not in (await service.query("#book", {"children": False}))[0]

    @pytest.mark.asyncio
    async def test_empty_identifier_fails(self, store) -> None:
        with pytest.raises(ActionError):
            await DocumentQueryService(store).query("  ", {})
