"""The ``shell`` action.

Commands run through the system shell in the document root. Substituted
values are quoted with :func:`shlex.quote`; after substitution the command
must not reference absolute paths, home-relative paths or ``..`` segments.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from pathlib import Path

from ..context import ExecutionContext
from ..errors import ActionError, SandboxViolationError, ShellActionError
from ..nodes import ShellNode
from ..services import ChildLine, TaskUpdate
from .base import ExecuteChild, insert_below, render

LOGGER = logging.getLogger(__name__)

TRUNCATION_NOTICE = " [output truncated]"
_READ_CHUNK = 4096

_BOUNDARY = r"""(?:^|[\s=<>|;&('"`\\])"""
ABSOLUTE_PATH = re.compile(_BOUNDARY + r"/")
HOME_PATH = re.compile(_BOUNDARY + r"~|\$\{?HOME\b")
PARENT_SEGMENT = re.compile(r"""(?:^|[\s=<>|;&('"`/\\])\.\.(?:$|[\s/;|&)'"`\\])""")
# A bare ``cd`` changes to the home directory
BARE_CD = re.compile(r"(?:^|[;&|(\n])\s*cd\s*(?:$|[;&|)\n])")

_VIOLATIONS = (
    (ABSOLUTE_PATH, "absolute paths"),
    (HOME_PATH, "home-relative paths"),
    (PARENT_SEGMENT, "'..' path segments"),
    (BARE_CD, "the home directory"),
)


def check_sandbox(command: str) -> None:
    """Raise SandboxViolationError when ``command`` can reach outside the document root."""
    for pattern, description in _VIOLATIONS:
        if pattern.search(command):
            raise SandboxViolationError(f"Shell command may not reference {description}: {command}")


class _Output:
    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self.limit - len(self.data)
        if len(chunk) > room:
            self.truncated = True
        if room > 0:
            self.data.extend(chunk[:room])

    def text(self) -> str:
        text = self.data.decode("utf-8", errors="replace").rstrip()
        return text + TRUNCATION_NOTICE if self.truncated else text


async def _run(process: asyncio.subprocess.Process, output: _Output) -> int:
    assert process.stdout is not None
    while True:
        chunk = await process.stdout.read(_READ_CHUNK)
        if not chunk:
            break
        output.feed(chunk)
    return await process.wait()


async def run_command(command: str, *, cwd: Path, timeout: float, max_output: int) -> str:
    """Run ``command`` and return its combined output; non-zero exit or timeout raise ShellActionError."""
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    output = _Output(max_output)
    try:
        exit_code = await asyncio.wait_for(_run(process, output), timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise ShellActionError(f"Command timed out after {timeout:g}s", output=output.text()) from exc
    text = output.text()
    if exit_code != 0:
        raise ShellActionError(f"Command exited with code {exit_code}: {text}", exit_code=exit_code, output=text)
    return text


async def shell_action(node: ShellNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    settings = context.settings.shell
    if not settings.enabled:
        raise ActionError("Shell actions are disabled")
    command = render(node.command, context, escape=shlex.quote)
    check_sandbox(command)

    documents = context.services.documents
    cwd = documents.root if documents is not None else context.settings.document_root
    timeout = node.timeout_ms / 1000 if node.timeout_ms else settings.timeout
    LOGGER.debug("Running shell command in %s: %s", cwd, command)
    output = await run_command(command, cwd=cwd, timeout=timeout, max_output=settings.max_output)

    context.set("output", output)
    if node.store_as:
        context.set(node.store_as, output)

    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return context
    if context.item is not None and context.services.tasks is not None:
        children = [ChildLine(text=line, marker="+") for line in lines]
        await context.services.tasks.update(context.item, TaskUpdate(append_children=children))
    elif context.buffer is not None:
        insert_below(context, [(1, line) for line in lines], bullet="+")
    return context
