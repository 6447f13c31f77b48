from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STATUS = "status"
    MODE_CHANGED = "mode_changed"
    ANALYSIS_STARTED = "analysis_started"
    GRAPH_UPDATED = "graph_updated"
    CLARIFICATIONS_UPDATED = "clarifications_updated"
    ANALYSIS_COMPLETED = "analysis_completed"
    CONTENT_STARTED = "content_started"
    CONTENT_READY = "content_ready"
    PROMPT_REFINED = "prompt_refined"
    ERROR = "error"


@dataclass
class SessionEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
