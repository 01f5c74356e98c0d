"""Domain events for the transcode-and-publish pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the orchestrator from whatever is watching it (CLI output, tests).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from .models import PipelineState, SourceObject


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class InvocationEvent(Event):
    """Base class for events related to a single triggered object."""

    source: SourceObject


class InvocationStarted(InvocationEvent):
    pass


class StageChanged(InvocationEvent):
    """Emitted on every orchestrator state transition."""

    state: PipelineState


class InvocationSkipped(InvocationEvent):
    """Emitted when the object is rejected (not a video or filtered out)."""

    reason: str


class InvocationFailed(InvocationEvent):
    error_message: str
    failed_state: PipelineState


class InvocationFinished(InvocationEvent):
    """Emitted after cleanup, whatever the outcome."""

    state: PipelineState
    published: List[str] = Field(default_factory=list)


class OutputPublished(InvocationEvent):
    cloud_path: str
    content_type: str


class TranscodeProgress(Event):
    """Emitted periodically as FFmpeg reports progress."""

    input_path: Path
    progress_percent: float


class CleanupFailed(Event):
    path: Path
    error_message: str
    source: Optional[SourceObject] = None
