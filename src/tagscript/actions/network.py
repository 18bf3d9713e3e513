"""Actions that talk to collaborators outside the document: ``fetch`` and ``query``."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

from ..context import ExecutionContext
from ..errors import HttpActionError
from ..nodes import AuthConfig, FetchNode, QueryNode
from ..services import HttpResponse
from .base import ExecuteChild, render, require

LOGGER = logging.getLogger(__name__)

# Response text kept in error messages
ERROR_BODY_LIMIT = 500


def _apply_auth(auth: AuthConfig, headers: dict[str, str], context: ExecutionContext) -> None:
    if auth.type == "basic":
        credentials = f"{render(auth.username, context)}:{render(auth.password, context)}"
        headers["Authorization"] = "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    elif auth.type == "bearer":
        headers["Authorization"] = f"Bearer {render(auth.token, context)}"
    elif auth.type == "apiKey":
        headers[auth.header_name or "X-API-Key"] = render(auth.api_key, context)


def _request_body(node: FetchNode, context: ExecutionContext) -> str | None:
    if not node.body or node.method.upper() == "GET":
        return None
    rendered = render(node.body, context)
    if rendered.lstrip().startswith(("{", "[")):
        return rendered
    named = context.variables.get(node.body.strip())
    if isinstance(named, (dict, list)):
        return json.dumps(named)
    return rendered


def _response_data(response: HttpResponse) -> Any:
    looks_like_json = "json" in response.content_type.lower() or response.text.lstrip().startswith(("{", "["))
    if not looks_like_json:
        return response.text
    try:
        return response.json()
    except ValueError:
        return response.text


async def fetch_action(node: FetchNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    http = require(context.services.http, "HTTP client")
    url = render(node.url, context)
    headers = {"Content-Type": "application/json", "User-Agent": context.settings.http.user_agent}
    for name, value in node.headers:
        headers[name] = render(value, context)
    if node.auth is not None:
        _apply_auth(node.auth, headers, context)
    body = _request_body(node, context)
    timeout = node.timeout_ms / 1000 if node.timeout_ms else context.settings.http.timeout

    LOGGER.debug("%s %s (timeout %gs)", node.method, url, timeout)
    response = await http.request(node.method.upper(), url, headers=headers, body=body, timeout=timeout)
    if not response.ok:
        detail = response.text[:ERROR_BODY_LIMIT] if response.text else "Request failed"
        raise HttpActionError(f"HTTP {response.status}: {detail}", status=response.status, body=response.text)

    data = _response_data(response)
    context.response = data
    context.set("response", data)
    if node.store_as:
        context.set(node.store_as, data)
    return context


async def query_action(node: QueryNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    service = require(context.services.query, "query service")
    identifier = render(node.identifier, context)
    options = {key: render(value, context) if isinstance(value, str) else value for key, value in node.options}
    results = await service.query(identifier, options)
    context.set(node.store_as, results)
    return context
