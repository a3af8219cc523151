"""
Event factories for the generation stream.

Every event the generator emits is built here so the tag names and payload
keys stay consistent with what the frontend renders.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flyerdeck.models.events import EventType, PipelineEvent


def _event(event_type: EventType, **data) -> PipelineEvent:
    return PipelineEvent(type=event_type.value, data=data)


class SlideProgress:
    """
    Builds pipeline events for one generation run.

    Tracks how many slides have finished so ``slide:end`` events can carry
    a completion count alongside the slide payload.
    """

    def __init__(self):
        self.total_slides = 0
        self.completed_slides = 0
        self.started_at = datetime.now(timezone.utc)

    def start(self, **extra_data) -> PipelineEvent:
        return _event(EventType.START, startedAt=self.started_at.isoformat(), **extra_data)

    def plan_start(self) -> PipelineEvent:
        return _event(EventType.PLAN_START)

    def plan_end(self, plan: List[Dict[str, Any]], **extra_data) -> PipelineEvent:
        """
        Emit the fixed slide plan.

        Args:
            plan: One ``{index, kind, title}`` entry per slide
            **extra_data: Additional run metadata (model, parallel)

        Returns:
            ``plan:end`` event
        """
        self.total_slides = len(plan)
        return _event(EventType.PLAN_END, plan=plan, totalSlides=self.total_slides, **extra_data)

    def slide_start(self, index: int, title: str) -> PipelineEvent:
        return _event(EventType.SLIDE_START, index=index, title=title)

    def slide_generating(self, index: int, title: str, html: str) -> PipelineEvent:
        return _event(EventType.SLIDE_GENERATING, index=index, title=title, html=html)

    def slide_end(
        self,
        index: int,
        title: str,
        html: str,
        assets: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> PipelineEvent:
        self.completed_slides += 1
        return _event(
            EventType.SLIDE_END,
            index=index,
            title=title,
            html=html,
            assets=assets or {},
            error=error,
            completedSlides=self.completed_slides,
            totalSlides=self.total_slides,
        )

    def end(self, slides: List[Dict[str, Any]]) -> PipelineEvent:
        elapsed = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        return _event(EventType.END, slides=slides, elapsedSeconds=round(elapsed, 2))

    def error(self, message: str, **extra_data) -> PipelineEvent:
        return _event(EventType.ERROR, message=message, **extra_data)


def heartbeat_event(timestamp: Optional[int] = None) -> PipelineEvent:
    """Liveness event; ``timestamp`` is epoch milliseconds."""
    if timestamp is None:
        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return _event(EventType.HEARTBEAT, timestamp=timestamp)
