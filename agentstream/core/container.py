"""Composition layer: build and hold long-lived client objects."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from agentstream.agui.processor import AGUIEventProcessor, ProcessorOptions
from agentstream.core.config import Settings
from agentstream.events.sse_parser import SSEParser
from agentstream.events.status_labels import StatusLabelCatalog
from agentstream.execution.control_service import ExecutionControlService
from agentstream.infra.http.client import HttpClientConfig, build_async_client
from agentstream.protocol.callbacks import HILCallbacks
from agentstream.stream.chat_stream import ChatStreamClient


@dataclass
class ClientContainer:
    """Everything one application needs to stream chats and control HIL execution."""

    settings: Settings
    chat_http: httpx.AsyncClient
    hil_http: httpx.AsyncClient
    parser: SSEParser
    processor: AGUIEventProcessor
    execution_control: ExecutionControlService
    chat_stream: ChatStreamClient


def build_container(
    settings: Settings,
    *,
    default_hil_callbacks: HILCallbacks | None = None,
    chat_transport: httpx.AsyncBaseTransport | None = None,
    hil_transport: httpx.AsyncBaseTransport | None = None,
) -> ClientContainer:
    """Construct runtime dependencies in one place."""
    chat_http = build_async_client(
        HttpClientConfig(base_url=settings.chat_base_url, timeout_seconds=settings.http_timeout_seconds),
        transport=chat_transport,
    )
    hil_http = build_async_client(
        HttpClientConfig(
            base_url=settings.hil_base_url,
            api_key=settings.hil_api_key,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        transport=hil_transport,
    )
    parser = SSEParser(
        labels=StatusLabelCatalog.from_file(settings.status_labels_file),
        default_hil_callbacks=default_hil_callbacks,
    )
    processor = AGUIEventProcessor(
        ProcessorOptions(
            enable_legacy_compatibility=settings.enable_legacy_compatibility,
            enable_event_logging=settings.enable_event_logging,
        ),
        retention_seconds=settings.run_retention_seconds,
    )
    execution_control = ExecutionControlService(hil_http, settings)
    chat_stream = ChatStreamClient(
        chat_http,
        parser,
        stream_path=settings.chat_stream_path,
        processor=processor,
        on_open=execution_control.primary_stream_opened,
        on_close=execution_control.primary_stream_closed,
    )
    return ClientContainer(
        settings=settings,
        chat_http=chat_http,
        hil_http=hil_http,
        parser=parser,
        processor=processor,
        execution_control=execution_control,
        chat_stream=chat_stream,
    )
