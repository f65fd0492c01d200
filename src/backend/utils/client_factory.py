"""
HTTP clients used by toolchat.

Two kinds of traffic with very different timing: model streams, where a
reasoning model may stay silent for minutes, and MCP readiness probes, which
should give up within seconds.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from core.constants import MCP_READY_REQUEST_TIMEOUT
from utils.http_logger import create_logging_client

DEFAULT_CONNECT_TIMEOUT = 30.0
#: Read timeout for model streams (seconds)
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


def model_stream_timeout(read_timeout: float | None = None) -> httpx.Timeout:
    return httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=DEFAULT_READ_TIMEOUT if read_timeout is None else read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )


def create_http_client(enable_logging: bool = False, read_timeout: float | None = None) -> httpx.AsyncClient:
    """Client for the model provider; ``enable_logging`` adds request/response hooks."""
    timeout = model_stream_timeout(read_timeout)
    if enable_logging:
        return create_logging_client(timeout=timeout)
    return httpx.AsyncClient(timeout=timeout)


def create_probe_client(timeout: float = MCP_READY_REQUEST_TIMEOUT) -> httpx.AsyncClient:
    """Short-lived client for MCP readiness probes (follows redirects)."""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """``AsyncOpenAI`` for OpenAI itself or, with ``base_url``, any compatible gateway."""
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
