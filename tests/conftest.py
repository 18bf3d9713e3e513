from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pytest

from tagscript.config import EngineSettings
from tagscript.documents import FileDocumentStore
from tagscript.executor import Engine
from tagscript.nodes import ScriptConfig
from tagscript.parser import load_scripts
from tagscript.services import HttpResponse, Services, WorkItem
from tagscript.tasks import DocumentQueryService, DocumentTaskEditor, work_item_from_line


class FakeHttp:
    """Records requests and answers from a queue; an empty queue answers ``200 {}``."""

    def __init__(self) -> None:
        self.responses: List[Any] = []
        self.requests: List[Dict[str, Any]] = []

    def add(self, status: int, text: str = "", headers: Optional[Dict[str, str]] = None) -> None:
        self.responses.append(HttpResponse(status=status, headers=headers or {}, text=text))

    def fail_with(self, exc: Exception) -> None:
        self.responses.append(exc)

    async def request(self, method, url, *, headers, body, timeout) -> HttpResponse:
        self.requests.append({"method": method, "url": url, "headers": dict(headers), "body": body, "timeout": timeout})
        if not self.responses:
            return HttpResponse(status=200, headers={"Content-Type": "application/json"}, text="{}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    @property
    def messages(self) -> List[str]:
        return [entry["message"] for entry in self.sent]

    async def notify(self, message: str, *, duration_ms: int = 4000, context: Optional[Mapping[str, Any]] = None) -> None:
        self.sent.append({"message": message, "duration_ms": duration_ms, "context": dict(context or {})})


@pytest.fixture(autouse=True)
def _reset_tagscript_logger():
    yield
    logger = logging.getLogger("tagscript")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def load_script():
    """Parse an indented script body as the configuration of one tag."""

    def _load(body: str, tag: str = "#demo") -> ScriptConfig:
        text = f"- {tag}\n" + textwrap.indent(textwrap.dedent(body).strip("\n"), "    ")
        return load_scripts(text)[tag].config

    return _load


@pytest.fixture
def store(tmp_path: Path) -> FileDocumentStore:
    return FileDocumentStore(tmp_path)


@pytest.fixture
def write_doc(tmp_path: Path):
    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def item_at(tmp_path: Path):
    """Build the WorkItem on a 0-based line of a document below ``tmp_path``."""

    def _item(name: str, index: int = 0) -> WorkItem:
        lines = (tmp_path / name).read_text(encoding="utf-8").split("\n")
        item = work_item_from_line(lines[index], name, index)
        assert item is not None, f"line {index} of {name} is not a task"
        return item

    return _item


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    return EngineSettings(document_root=tmp_path)


@pytest.fixture
def engine(store, http, notifier, settings) -> Engine:
    services = Services(
        documents=store,
        tasks=DocumentTaskEditor(store),
        query=DocumentQueryService(store),
        http=http,
        notifier=notifier,
    )
    return Engine(services, settings)
