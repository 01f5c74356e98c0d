"""Error taxonomy for the transcode-and-publish pipeline.

Every stage raises a subclass of `PipelineError`; the orchestrator catches
them at its boundary, logs them with the source path, and completes normally.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(PipelineError):
    """Raised at startup when mandatory configuration is missing or invalid."""


class ValidationSkip(PipelineError):
    """Not an error: the object is not a video or is filtered out."""


class DownloadError(PipelineError):
    pass


class ExtractionError(PipelineError):
    """ffmpeg failed to produce the still frame."""


class TranscodeError(PipelineError):
    """ffmpeg failed to re-encode the source."""


class VerificationError(PipelineError):
    """An expected local artifact is missing after processing."""

    def __init__(self, artifact: str, path: Optional[object] = None):
        self.artifact = artifact
        self.path = path
        detail = f" ({path})" if path is not None else ""
        super().__init__(f"Failed to locate generated {artifact} file{detail}")


class UploadError(PipelineError):
    pass


class FinalizeError(PipelineError):
    """Deleting or relocating the source object failed."""


class CleanupWarning(UserWarning):
    """A scratch file could not be removed. Logged, never raised."""

    def __init__(self, message: str, path: Optional[object] = None):
        super().__init__(message)
        self.path = path
