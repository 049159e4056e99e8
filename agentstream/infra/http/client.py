"""HTTP infra: async client factory for the chat stream and HIL control plane."""

from __future__ import annotations

from dataclasses import dataclass

import httpx


@dataclass(frozen=True)
class HttpClientConfig:
    """Connection settings for one backend base URL."""

    base_url: str
    api_key: str = ""
    timeout_seconds: float = 30.0


def build_headers(api_key: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key.strip():
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def build_async_client(
    config: HttpClientConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient bound to one base URL with auth headers applied."""
    return httpx.AsyncClient(
        base_url=config.base_url.rstrip("/"),
        headers=build_headers(config.api_key),
        # Streams stay open as long as the agent keeps producing frames.
        timeout=httpx.Timeout(config.timeout_seconds, read=None),
        transport=transport,
    )
