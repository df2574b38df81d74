"""HTTP Request node: templated URL, query rows, JSON headers, auth, and JMESPath extraction."""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import TYPE_CHECKING, Any, Optional

import httpx
import jmespath
from jmespath.exceptions import JMESPathError

from canvasflow.exceptions import HttpRequestError, NodeConfigurationError
from canvasflow.executors.base import ExecutionServices, configuration_failure, require_text
from canvasflow.expressions import resolve_template, resolve_value
from canvasflow.types import NodeConfig, NodeExecutionResult

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD", "OPTIONS"}


def _extract_jmespath(data: Any, path: str) -> Any:
    """Extract data using a JMESPath expression."""
    if not path:
        return data
    return jmespath.search(path, data)


def _parse_response_body(content: bytes, content_type: str, encoding: str = "utf-8") -> Any:
    """JSON when the server says so and the bytes agree, text otherwise."""
    if re.search(r"json", content_type, re.IGNORECASE):
        try:
            return json.loads(content)
        except (json.JSONDecodeError, ValueError):
            pass
    return content.decode(encoding, errors="replace")


def build_url(raw_url: str, query_rows: list, context: "ExecutionContext") -> tuple[httpx.URL, list[dict]]:
    """Validate the absolute URL and append resolved query rows; blank keys are skipped."""
    try:
        url = httpx.URL(raw_url)
    except httpx.InvalidURL:
        url = None
    if url is None or not url.scheme or not url.host:
        raise NodeConfigurationError(
            "HTTP Request: Invalid URL. Provide a valid absolute URL starting with http(s)://",
            title="HTTP Request Invalid URL",
        )
    if url.scheme.lower() not in ("http", "https"):
        raise NodeConfigurationError(
            "HTTP Request: Only http(s) URLs are supported.",
            title="HTTP Request Unsupported Protocol",
        )

    resolved_rows = []
    for row in query_rows:
        row = row if isinstance(row, dict) else {}
        name = resolve_template(str(row.get("key") or ""), context).strip()
        value = resolve_template(str(row.get("value") or ""), context)
        resolved_rows.append({"key": name, "value": value})
        if name:
            url = url.copy_add_param(name, value)
    return url, resolved_rows


def parse_headers(raw: Any, context: "ExecutionContext") -> dict[str, str]:
    """Headers are configured as JSON object text; values are stringified."""
    if raw is None or not str(raw).strip():
        return {}
    if isinstance(raw, dict):
        parsed = raw
    else:
        try:
            parsed = json.loads(resolve_template(str(raw), context) or "{}")
        except (json.JSONDecodeError, ValueError):
            parsed = None
    if not isinstance(parsed, dict):
        raise NodeConfigurationError(
            "HTTP Request: Headers must be valid JSON.", title="HTTP Request Invalid Headers"
        )
    return {str(k): "" if v is None else str(v) for k, v in parsed.items()}


def auth_headers(auth_config: dict, context: "ExecutionContext") -> dict[str, str]:
    """Authorization headers for basic, bearer, and api_key schemes."""
    auth_type = str(auth_config.get("type") or "").lower()

    def _resolved(key: str, default: str = "") -> str:
        return resolve_template(str(auth_config.get(key) or default), context)

    if auth_type == "basic":
        creds = f"{_resolved('username')}:{_resolved('password')}".encode()
        return {"Authorization": f"Basic {base64.b64encode(creds).decode()}"}
    if auth_type == "bearer":
        return {"Authorization": f"Bearer {_resolved('token')}"}
    if auth_type == "api_key":
        return {_resolved("header", "X-API-Key"): _resolved("key")}
    return {}


def _request_body(raw: Any, context: "ExecutionContext") -> dict[str, Any]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    body = resolve_value(raw, context)
    if isinstance(body, str):
        try:
            return {"json": json.loads(body)}
        except (json.JSONDecodeError, ValueError):
            return {"content": body.encode()}
    return {"json": body}


async def _execute_single(
    method: str,
    url: httpx.URL,
    client_kwargs: dict,
    request_kwargs: dict,
    size_limit_bytes: int,
) -> tuple:
    """Execute a single HTTP request with streaming size limit enforcement."""
    start = time.monotonic()
    async with httpx.AsyncClient(**client_kwargs) as client:
        async with client.stream(method, url, **request_kwargs) as response:
            content = b""
            async for chunk in response.aiter_bytes(8192):
                content += chunk
                if len(content) > size_limit_bytes:
                    raise HttpRequestError(
                        f"Response exceeds size limit of {size_limit_bytes} bytes", url=str(url)
                    )
    elapsed_ms = int((time.monotonic() - start) * 1000)
    return response, content, elapsed_ms


async def execute_http_request(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    settings = services.settings
    method = str(general.get("method") or "GET").strip().upper()

    try:
        raw_url = require_text(
            resolve_template(str(general.get("url") or ""), context),
            "HTTP Request: Please provide a URL.",
            "HTTP Request Missing URL",
        )
        query_rows = general.get("queryParams") if isinstance(general.get("queryParams"), list) else []
        url, resolved_rows = build_url(raw_url, query_rows, context)
        headers = parse_headers(general.get("headers"), context)
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "HTTP Request Failed")

    sent_headers = {**headers, **auth_headers(node.settings.authentication, context)}
    request_kwargs: dict[str, Any] = {"headers": sent_headers}
    if method not in _BODYLESS_METHODS:
        request_kwargs.update(_request_body(general.get("body"), context))

    client_kwargs = {
        "timeout": settings.http_timeout_seconds,
        "verify": settings.http_verify_ssl,
        "headers": {"User-Agent": settings.http_user_agent},
    }

    try:
        response, content, elapsed_ms = await _execute_single(
            method, url, client_kwargs, request_kwargs, settings.http_response_size_limit_kb * 1024
        )
        content_type = response.headers.get("content-type", "")
        body = _parse_response_body(content, content_type)
        response_path = str(general.get("responsePath") or "").strip()
        if response_path:
            body = _extract_jmespath(body, response_path)
    except (httpx.HTTPError, HttpRequestError, JMESPathError) as exc:
        message = str(exc) or exc.__class__.__name__
        logger.warning(f"[HttpRequest] {method} {url} failed: {message}")
        services.notify("HTTP Request Failed", message)
        return NodeExecutionResult.fail(message)

    payload = {
        "url": str(url),
        "method": method,
        "ok": response.is_success,
        "status": response.status_code,
        "statusText": response.reason_phrase,
        "elapsedMs": elapsed_ms,
        "request": {"queryParams": resolved_rows, "headers": headers},
        "response": {"headers": dict(response.headers), "contentType": content_type},
        "body": body,
    }
    logger.info(f"[HttpRequest] {method} {url} -> {response.status_code} in {elapsed_ms}ms")

    if not response.is_success:
        return NodeExecutionResult.fail(f"HTTP {response.status_code} {response.reason_phrase}", data=payload)
    return NodeExecutionResult.ok(payload)


def status_error(response: httpx.Response) -> Optional[str]:
    """``None`` for 2xx, otherwise the body text or a status line."""
    if response.is_success:
        return None
    return response.text.strip() or f"HTTP {response.status_code} {response.reason_phrase}"
