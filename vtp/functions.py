"""Background-function entry point for object-finalize events.

Deploy `process_videos` as the function target. The orchestrator (storage
client, adapters, config) is built on the first event and reused for every
later invocation in the same process.
"""

import functools
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from vtp.config.loader import load_config
from vtp.config.models import PipelineConfig
from vtp.domain.models import SourceObject
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.ffmpeg import FFmpegAdapter
from vtp.infrastructure.ffprobe import FFprobeAdapter
from vtp.infrastructure.logging import setup_logging
from vtp.infrastructure.storage import CloudStorageAdapter, ObjectStore
from vtp.pipeline.orchestrator import Orchestrator


def build_orchestrator(
    config: PipelineConfig,
    storage: Optional[ObjectStore] = None,
    event_bus: Optional[EventBus] = None,
) -> Orchestrator:
    event_bus = event_bus or EventBus()
    return Orchestrator(
        config=config,
        storage=storage or CloudStorageAdapter(),
        ffprobe_adapter=FFprobeAdapter(timeout_s=config.ffmpeg_timeout_s),
        ffmpeg_adapter=FFmpegAdapter(event_bus=event_bus, debug=config.debug, timeout_s=config.ffmpeg_timeout_s),
        event_bus=event_bus,
    )


@functools.lru_cache(maxsize=None)
def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator. Raises ConfigurationError on bad environment."""
    config = load_config()
    setup_logging(debug=config.debug, log_path=Path(config.log_path) if config.log_path else None)
    return build_orchestrator(config)


def event_payload(event: Any) -> Mapping[str, Any]:
    """Extracts the object resource from a legacy event dict or a CloudEvent."""
    data = getattr(event, "data", None)
    if isinstance(data, Mapping):
        return data
    if isinstance(event, Mapping):
        inner = event.get("data")
        if isinstance(inner, Mapping) and "name" in inner:
            return inner
        return event
    return {}


def process_videos(event: Any, context: Any = None) -> None:
    """Handles one finalized object. Always completes normally for stage errors."""
    orchestrator = get_orchestrator()
    source = SourceObject.from_event(event_payload(event))
    result = orchestrator.handle(source)
    logging.getLogger(__name__).debug(f"Invocation for {source.name} ended in {result.state.value}")
    return None
