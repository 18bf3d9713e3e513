"""Filesystem document store and httpx-backed HTTP capability."""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
from collections.abc import Mapping
from pathlib import Path

import httpx
from rapidfuzz import fuzz, process

from .errors import ActionError, HttpActionError
from .services import DocumentRef, HttpResponse
from .utils import validate_url

LOGGER = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".md"
FUZZY_SCORE_CUTOFF = 85.0

_LINK_WRAPPER = re.compile(r"^!?\[\[(?P<target>[^\]|#]*)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]$")


def link_target(reference: str) -> str:
    """``[[Note#Heading|alias]]`` -> ``Note``; plain references are returned stripped."""
    text = reference.strip()
    match = _LINK_WRAPPER.match(text)
    if match:
        return match.group("target").strip()
    return text


class FileDocumentStore:
    """Documents are files below ``root``, addressed by root-relative posix paths."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def _path(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ActionError(f"Path '{path}' is outside the document root")
        return candidate

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.root).as_posix()

    async def read(self, path: str) -> str:
        target = self._path(path)
        try:
            return await asyncio.to_thread(target.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise ActionError(f"Document not found: {path}") from exc

    async def read_bytes(self, path: str) -> bytes:
        target = self._path(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise ActionError(f"File not found: {path}") from exc

    async def write(self, path: str, text: str) -> None:
        target = self._path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, text, encoding="utf-8")

    def describe(self, path: str) -> DocumentRef:
        return DocumentRef.from_path(path)

    def files(self) -> list[str]:
        """Every non-hidden file below the root, as relative paths."""
        found: list[str] = []
        for candidate in sorted(self.root.rglob("*")):
            if not candidate.is_file():
                continue
            relative = candidate.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            found.append(relative.as_posix())
        return found

    def documents(self) -> list[str]:
        return [path for path in self.files() if path.endswith(DOCUMENT_SUFFIX)]

    def resolve(self, reference: str, source: str | None = None) -> DocumentRef | None:
        """Resolve a link or path to a document.

        Tries, in order: the path relative to the linking document, the path
        relative to the root, an exact (case-insensitive) file name or stem
        match, then a fuzzy name match.
        """
        target = link_target(reference)
        if not target or validate_url(target):
            return None

        files = self.files()
        known = set(files)
        candidates: list[str] = []
        if source:
            parent = Path(source).parent
            candidates.append((parent / target).as_posix())
            candidates.append((parent / f"{target}{DOCUMENT_SUFFIX}").as_posix())
        candidates.extend([target, f"{target}{DOCUMENT_SUFFIX}"])
        for candidate in candidates:
            normalized = posixpath.normpath(candidate)
            if normalized in known:
                return self.describe(normalized)

        wanted = target.rsplit("/", 1)[-1].lower()
        by_name: dict[str, str] = {}
        for path in files:
            name = path.rsplit("/", 1)[-1]
            by_name.setdefault(name.lower(), path)
            if path.endswith(DOCUMENT_SUFFIX):
                by_name.setdefault(name[: -len(DOCUMENT_SUFFIX)].lower(), path)
        if wanted in by_name:
            return self.describe(by_name[wanted])

        best = process.extractOne(wanted, list(by_name), scorer=fuzz.WRatio, score_cutoff=FUZZY_SCORE_CUTOFF)
        if best is None:
            LOGGER.debug("No document matches link '%s'", reference)
            return None
        choice, score, _ = best
        LOGGER.debug("Resolved link '%s' to %s by fuzzy match (score %.1f)", reference, by_name[choice], score)
        return self.describe(by_name[choice])


class HttpxClient:
    """HTTP capability over ``httpx.AsyncClient``. One attempt per call, no retries."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport, follow_redirects=True)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: str | None,
        timeout: float,
    ) -> HttpResponse:
        content = body.encode("utf-8") if body is not None else None
        try:
            response = await self._client.request(
                method.upper(),
                url,
                headers=dict(headers),
                content=content,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise HttpActionError(f"Request to {url} timed out after {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise HttpActionError(f"Request to {url} failed: {exc}") from exc
        return HttpResponse(status=response.status_code, headers=dict(response.headers), text=response.text)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpxClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
