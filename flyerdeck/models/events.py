from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Tags carried on the `event:` line of the stream."""
    START = "start"
    PLAN_START = "plan:start"
    PLAN_END = "plan:end"
    SLIDE_START = "slide:start"
    SLIDE_GENERATING = "slide:generating"
    SLIDE_END = "slide:end"
    HEARTBEAT = "heartbeat"
    END = "end"
    ERROR = "error"


SLIDE_EVENT_TYPES = (EventType.SLIDE_START, EventType.SLIDE_GENERATING, EventType.SLIDE_END)


class PipelineEvent(BaseModel):
    """Tagged event emitted by the generator; `data` shape depends on `type`."""
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_slide_event(self) -> bool:
        return self.type in {t.value for t in SLIDE_EVENT_TYPES}
