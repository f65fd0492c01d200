"""
HTTP request/response logging for debugging model provider and MCP traffic.

Captures request metadata and payloads using httpx event hooks.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from utils.logger import logger

#: Header names whose values are masked before logging
SENSITIVE_HEADERS = frozenset({"authorization", "api-key", "x-api-key", "cookie"})


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._request_data: dict[int, dict[str, Any]] = {}

    async def log_request(self, request: httpx.Request) -> None:
        """Log outgoing HTTP request."""
        if not self.enabled:
            return

        try:
            body_str = request.content.decode("utf-8") if request.content else ""
            body_json = json.loads(body_str) if body_str else {}
        except (httpx.RequestNotRead, UnicodeDecodeError, json.JSONDecodeError):
            body_json = {"_note": "body not captured"}

        self._request_data[id(request)] = {"method": request.method, "url": str(request.url)}

        logger.info(
            f"HTTP Request: {request.method} {request.url}",
            http_request=True,
            headers=sanitize_headers(dict(request.headers)),
            payload=body_json,
        )
        if body_json:
            logger.debug(f"Request Payload:\n{json.dumps(body_json, indent=2)}")

    async def log_response(self, response: httpx.Response) -> None:
        """Log HTTP response status. Streaming bodies are never consumed here."""
        if not self.enabled:
            return

        request_data = self._request_data.pop(id(response.request), {})
        logger.info(
            f"HTTP Response: {response.status_code} "
            f"{request_data.get('method', 'UNKNOWN')} {request_data.get('url', 'UNKNOWN')}",
            http_response=True,
            status_code=response.status_code,
        )


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Mask sensitive header values, keeping the last 4 characters."""
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"
        else:
            sanitized[key] = value
    return sanitized


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging event hooks."""
    http_logger = HTTPLogger(enabled=enabled)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }
    return httpx.AsyncClient(event_hooks=event_hooks, timeout=timeout)
