"""Interrupt detection: prioritized matchers over the known HIL encodings.

Each matcher returns an ``HILInterrupt`` or ``None``; the first hit wins.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from agentstream.events.content_extractor import LegacyContentExtractor
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import HILInterrupt
from agentstream.protocol.events import RawEvent

logger = get_logger(__name__)

InterruptMatcher = Callable[[RawEvent, LegacyContentExtractor], HILInterrupt | None]

ASK_HUMAN_TOOL = "ask_human"
_DEFAULT_QUESTION = "The agent needs your input to continue."


def _ask_human_interrupt(question: str, *, interrupt_id: str | None, data: Any) -> HILInterrupt:
    interrupt = HILInterrupt(
        interrupt_type=ASK_HUMAN_TOOL,
        title="Agent Question",
        message=question or _DEFAULT_QUESTION,
        priority="high",
        data=data,
    )
    if interrupt_id:
        interrupt.id = str(interrupt_id)
    return interrupt


def match_structured_interrupt(event: RawEvent, _: LegacyContentExtractor) -> HILInterrupt | None:
    """Authoritative encoding: ``data.__interrupt__`` (dict or LangGraph-style list)."""
    data = event.data if isinstance(event.data, dict) else {}
    raw = data.get("__interrupt__")
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    if not isinstance(raw, dict):
        return None
    value = raw.get("value") if isinstance(raw.get("value"), dict) else raw
    interrupt_type = str(value.get("type") or "approval")
    interrupt_id = value.get("id") or raw.get("id")

    if interrupt_type == ASK_HUMAN_TOOL:
        return _ask_human_interrupt(
            str(value.get("question") or ""),
            interrupt_id=interrupt_id,
            data=value,
        )
    if interrupt_type == "authorization":
        tool_name = value.get("tool_name") or "a tool"
        title = "Authorization Required"
        message = value.get("message") or f"Authorization required to run {tool_name}."
        priority = "high"
    else:
        title = "Human Input Required"
        message = value.get("message") or value.get("question") or "Human intervention required"
        priority = "medium"
    interrupt = HILInterrupt(
        interrupt_type=interrupt_type,
        title=title,
        message=str(message),
        priority=priority,
        data=value,
    )
    if interrupt_id:
        interrupt.id = str(interrupt_id)
    return interrupt


def match_graph_tool_call(event: RawEvent, _: LegacyContentExtractor) -> HILInterrupt | None:
    """Fallback: an ``ask_human`` call inside any node's ``messages[].tool_calls[]``."""
    data = event.data if isinstance(event.data, dict) else {}
    for node_name, node in data.items():
        if not isinstance(node, dict):
            continue
        messages = node.get("messages")
        if not isinstance(messages, list):
            continue
        for message in messages:
            tool_calls = message.get("tool_calls") if isinstance(message, dict) else None
            if not isinstance(tool_calls, list):
                continue
            for call in tool_calls:
                if not isinstance(call, dict) or call.get("name") != ASK_HUMAN_TOOL:
                    continue
                args = call.get("args") if isinstance(call.get("args"), dict) else {}
                logger.debug("interrupts.graph_tool_call node=%s call_id=%s", node_name, call.get("id"))
                return _ask_human_interrupt(
                    str(args.get("question") or ""),
                    interrupt_id=call.get("id"),
                    data={"node": node_name, "tool_call": call},
                )
    return None


def match_message_stream_tool_call(event: RawEvent, extractor: LegacyContentExtractor) -> HILInterrupt | None:
    """Fallback: an ``ask_human`` call serialized into ``content.raw_message``."""
    content = event.content if isinstance(event.content, dict) else {}
    raw_message = content.get("raw_message")
    if not isinstance(raw_message, str):
        return None
    call = extractor.find_ask_human_call(raw_message)
    if call is None:
        return None
    return _ask_human_interrupt(
        call.question,
        interrupt_id=call.call_id,
        data={"raw_message": raw_message},
    )


GRAPH_UPDATE_MATCHERS: tuple[InterruptMatcher, ...] = (
    match_structured_interrupt,
    match_graph_tool_call,
)
MESSAGE_STREAM_MATCHERS: tuple[InterruptMatcher, ...] = (match_message_stream_tool_call,)


def match_first(
    matchers: Sequence[InterruptMatcher],
    event: RawEvent,
    extractor: LegacyContentExtractor,
) -> HILInterrupt | None:
    for matcher in matchers:
        interrupt = matcher(event, extractor)
        if interrupt is not None:
            return interrupt
    return None
