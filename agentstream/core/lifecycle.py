"""Lifecycle hooks for startup diagnostics and orderly shutdown."""

from __future__ import annotations

from agentstream.core.container import ClientContainer
from agentstream.infra.observability.logger import get_logger

logger = get_logger(__name__)


def on_startup(container: ClientContainer) -> None:
    """Start background housekeeping; must run inside the event loop."""
    container.execution_control.start_cache_sweeper()
    container.processor.start_cleanup_sweeper(container.settings.cache_sweep_interval_seconds)
    logger.info(
        "lifecycle.startup hil_base_url=%s chat_base_url=%s",
        container.settings.hil_base_url,
        container.settings.chat_base_url,
    )


async def on_shutdown(container: ClientContainer) -> None:
    await container.execution_control.aclose()
    await container.processor.aclose()
    await container.chat_http.aclose()
    await container.hil_http.aclose()
    logger.info("%s shutdown complete.", container.settings.app_name)
