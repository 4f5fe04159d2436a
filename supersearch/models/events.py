from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    PLAN = "plan"
    PROGRESS = "progress"
    ENTITY_DISCOVERED = "entity_discovered"
    RESULT = "result"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.COMPLETE, EventType.CANCELLED, EventType.ERROR)


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    def to_sse(self) -> dict[str, str]:
        """Shape expected by sse_starlette's EventSourceResponse."""
        payload = {
            "event": self.event.value,
            "data": json.dumps(self.data, default=str),
        }
        if self.id is not None:
            payload["id"] = str(self.id)
        return payload
