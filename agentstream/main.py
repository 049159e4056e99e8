"""Client entrypoint: wires config, logging, container, and lifecycle hooks."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from agentstream.core.config import Settings
from agentstream.core.container import ClientContainer, build_container
from agentstream.core.lifecycle import on_shutdown, on_startup
from agentstream.infra.observability.logger import setup_logging
from agentstream.protocol.callbacks import HILCallbacks


@asynccontextmanager
async def open_client(
    settings: Settings | None = None,
    *,
    default_hil_callbacks: HILCallbacks | None = None,
    chat_transport: httpx.AsyncBaseTransport | None = None,
    hil_transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[ClientContainer]:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    container = build_container(
        settings,
        default_hil_callbacks=default_hil_callbacks,
        chat_transport=chat_transport,
        hil_transport=hil_transport,
    )
    on_startup(container)
    try:
        yield container
    finally:
        await on_shutdown(container)
