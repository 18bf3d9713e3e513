"""Actions that bring text into the context: ``read`` and ``file``."""

from __future__ import annotations

import base64
import logging
import mimetypes
import re
from typing import Any

import yaml

from ..context import ExecutionContext
from ..errors import ActionError, PatternError
from ..nodes import FileNode, ReadNode
from ..outline import strip_list_prefix
from ..parser import parse_key_value
from ..patterns import clean_template, extract_values
from ..services import DocumentRef, DocumentStore
from ..utils import parse_literal, validate_url
from .base import ExecuteChild, render, require

LOGGER = logging.getLogger(__name__)

WIKILINK = re.compile(r"(?<!!)\[\[([^\]]+)\]\]")
EMBED = re.compile(r"!\[\[([^\]]+)\]\]|!\[[^\]]*\]\(([^)\s]+)\)")
FRONTMATTER = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return the YAML frontmatter mapping and the remaining body."""
    match = FRONTMATTER.match(text)
    if match is None:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ActionError(f"Invalid frontmatter: {exc}") from exc
    if not isinstance(data, dict):
        data = {}
    return data, text[match.end() :]


def _reference(node: ReadNode, context: ExecutionContext, pattern: re.Pattern[str]) -> str:
    if node.reference:
        return clean_template(render(node.reference, context))
    match = pattern.search(context.line)
    if match is None:
        raise ActionError(f"No {node.source} reference found in line: {context.line}")
    return next(group for group in match.groups() if group)


def _resolve(documents: DocumentStore, reference: str, context: ExecutionContext) -> DocumentRef:
    source = context.document.path if context.document else None
    resolved = documents.resolve(reference, source)
    if resolved is None:
        raise ActionError(f"Could not resolve '{reference}'")
    return resolved


async def _read_wikilink(node: ReadNode, context: ExecutionContext) -> str:
    documents = require(context.services.documents, "document store")
    target = _resolve(documents, _reference(node, context, WIKILINK), context)
    text = await documents.read(target.path)
    context.set(node.file_as, target.metadata())
    if node.strip_frontmatter or node.include_frontmatter:
        frontmatter, body = split_frontmatter(text)
        if node.include_frontmatter:
            context.set(node.frontmatter_as, frontmatter)
        if node.strip_frontmatter:
            text = body.lstrip("\n")
    return text


async def _read_image(node: ReadNode, context: ExecutionContext) -> str:
    reference = _reference(node, context, EMBED)
    if validate_url(reference):
        # Remote images are passed through; only local files are encoded
        return reference
    documents = require(context.services.documents, "document store")
    target = _resolve(documents, reference.split("|", 1)[0], context)
    context.set(node.file_as, target.metadata())
    if node.format == "url":
        return (documents.root / target.path).as_uri()
    encoded = base64.b64encode(await documents.read_bytes(target.path)).decode("ascii")
    if node.format == "base64":
        return encoded
    mime_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
    return f"data:{mime_type};base64,{encoded}"


async def _read_children(node: ReadNode, context: ExecutionContext) -> str:
    if context.item is None:
        context.set(node.children_as, {})
        context.set(node.children_lines_as, [])
        return ""
    tasks = require(context.services.tasks, "task editor")
    children = await tasks.children(context.item)
    record: dict[str, Any] = {}
    for child in children:
        parsed = parse_key_value(child.text)
        if parsed is not None:
            record[parsed[0]] = parse_literal(clean_template(parsed[1]))
    lines = [child.text for child in children]
    context.set(node.children_as, record)
    context.set(node.children_lines_as, lines)
    return "\n".join(lines)


async def read_action(node: ReadNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    undecorated: str | None = None
    if node.source == "line":
        text = context.line
        undecorated = strip_list_prefix(text).content if node.strip else text
    elif node.source in ("document", "file"):
        documents = require(context.services.documents, "document store")
        if context.document is None:
            raise ActionError("No document available in context")
        text = await documents.read(context.document.path)
    elif node.source == "selection":
        text = context.buffer.get_selection() if context.buffer is not None else ""
        text = text or context.line
    elif node.source == "children":
        text = await _read_children(node, context)
    elif node.source == "wikilink":
        text = await _read_wikilink(node, context)
    elif node.source == "image":
        text = await _read_image(node, context)
    else:
        raise ActionError(f"Unknown read source '{node.source}'")

    if node.pattern:
        result = extract_values(undecorated if undecorated is not None else text, node.pattern)
        if not result.success:
            raise PatternError(result.error or "Pattern did not match")
        context.update(result.values)

    context.set("text", text)
    if undecorated is not None:
        context.set("textContent", undecorated)
    if node.store_as:
        context.set(node.store_as, text)
    return context


async def file_action(node: FileNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    documents = require(context.services.documents, "document store")
    reference = clean_template(render(node.reference, context))
    context.set(node.store_as, _resolve(documents, reference, context).metadata())
    return context
