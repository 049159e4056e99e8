"""Status label catalog: map workflow/node/action keys to display strings."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from agentstream.infra.observability.logger import get_logger

DEFAULT_LABELS_FILE = Path(__file__).resolve().parent / "profiles" / "status_labels.yaml"

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusLabelCatalog:
    workflow_steps: dict[str, str] = field(default_factory=dict)
    graph_nodes: dict[str, str] = field(default_factory=dict)
    next_actions: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_file(cls, labels_file: Path | None = None) -> "StatusLabelCatalog":
        path = labels_file or DEFAULT_LABELS_FILE
        if not path.exists():
            logger.warning("status_labels.missing path=%s", path)
            return cls()
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError:
            logger.warning("status_labels.invalid_yaml path=%s", path)
            return cls()
        if not isinstance(raw, dict):
            return cls()
        return cls(
            workflow_steps=_string_table(raw.get("workflow_steps")),
            graph_nodes=_string_table(raw.get("graph_nodes")),
            next_actions=_string_table(raw.get("next_actions")),
        )

    def workflow_label(self, step: str) -> str:
        return self.workflow_steps.get(step) or f"Processing {step}..."

    def node_label(self, node: str | None) -> str:
        return self.graph_nodes.get(node or "") or f"Processing {node}..."

    def next_action_label(self, action: str) -> str:
        return self.next_actions.get(action) or f"🔄 Processing: {action}"


def _string_table(raw: object) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {
        str(key): value
        for key, value in raw.items()
        if isinstance(value, str)
    }
