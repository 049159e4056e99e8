"""Best-effort adapter for debug-formatted message strings.

The backend still emits some payloads as the repr of an internal message
object, e.g. ``AIMessage(content='...', tool_calls=[...])``. Everything that
pattern-matches those strings lives here so the router never depends on it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from agentstream.infra.observability.logger import get_logger

logger = get_logger(__name__)

_DOUBLE_QUOTED_CONTENT = re.compile(r'content="((?:[^"\\]|\\.)*)"', re.DOTALL)
_SINGLE_QUOTED_CONTENT = re.compile(r"content='((?:[^'\\]|\\.)*)'", re.DOTALL)
_MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\((https?://[^)\s]+)\)")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_QUESTION_ARG = re.compile(r"""['"]question['"]\s*:\s*(['"])((?:(?!\1)[^\\]|\\.)*)\1""", re.DOTALL)
_TOOL_CALL_ID = re.compile(r"""['"]id['"]\s*:\s*['"]([^'"]+)['"]""")


def _unescape_quotes(text: str) -> str:
    return text.replace('\\"', '"').replace("\\'", "'")


@dataclass(frozen=True)
class AskHumanCall:
    question: str
    call_id: str | None = None


class LegacyContentExtractor:
    """Pull structured bits out of serialized message reprs."""

    def extract_content(self, raw_message: str) -> str | None:
        match = _DOUBLE_QUOTED_CONTENT.search(raw_message) or _SINGLE_QUOTED_CONTENT.search(raw_message)
        if match is None:
            logger.debug("content_extractor.miss raw=%s", raw_message[:120])
            return None
        return _unescape_quotes(match.group(1))

    def find_image_urls(self, text: str) -> list[str]:
        return _MARKDOWN_IMAGE.findall(text)

    def find_json_object(self, text: str) -> dict[str, Any] | None:
        if "{" not in text or "}" not in text:
            return None
        match = _JSON_OBJECT.search(text)
        if match is None:
            return None
        try:
            decoded = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.debug("content_extractor.json_miss")
            return None
        return decoded if isinstance(decoded, dict) and decoded else None

    def find_ask_human_call(self, raw_message: str) -> AskHumanCall | None:
        """Detect an `ask_human` tool call inside a serialized message."""
        if "ask_human" not in raw_message or "tool_calls" not in raw_message:
            return None
        match = _QUESTION_ARG.search(raw_message)
        question = _unescape_quotes(match.group(2)) if match else "The agent needs your input to continue."
        id_match = _TOOL_CALL_ID.search(raw_message)
        return AskHumanCall(question=question, call_id=id_match.group(1) if id_match else None)
