import posixpath
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field


class PipelineState(str, Enum):
    RECEIVED = "RECEIVED"
    DOWNLOADED = "DOWNLOADED"
    PROCESSED = "PROCESSED"
    VERIFIED = "VERIFIED"
    UPLOADED = "UPLOADED"
    FINALIZED = "FINALIZED"
    SKIPPED = "SKIPPED"  # Rejected before any side effect
    FAILED = "FAILED"
    CLEANED_UP = "CLEANED_UP"


class AspectRatio(BaseModel):
    """Width:height ratio of a video frame (pixel dimensions or declared DAR)."""

    model_config = ConfigDict(frozen=True)

    width: float = Field(gt=0)
    height: float = Field(gt=0)

    @classmethod
    def parse(cls, value: Any) -> Optional["AspectRatio"]:
        """Parse 'W:H', 'W/H' or a decimal ratio. Returns None when unusable."""
        if value is None:
            return None
        if isinstance(value, AspectRatio):
            return value
        text = str(value).strip()
        if not text:
            return None
        for sep in (":", "/"):
            if sep in text:
                left, _, right = text.partition(sep)
                try:
                    width = float(left)
                    height = float(right)
                except ValueError:
                    return None
                if width <= 0 or height <= 0:
                    return None
                return cls(width=width, height=height)
        try:
            ratio = float(text)
        except ValueError:
            return None
        if ratio <= 0:
            return None
        return cls(width=ratio, height=1.0)

    @property
    def ratio(self) -> float:
        return self.width / self.height

    def __str__(self) -> str:
        def _fmt(n: float) -> str:
            return str(int(n)) if float(n).is_integer() else f"{n:g}"
        return f"{_fmt(self.width)}:{_fmt(self.height)}"


class SourceObject(BaseModel):
    """The finalized blob that triggered an invocation."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    name: str
    content_type: str = ""

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> "SourceObject":
        content_type = data.get("contentType")
        if content_type is None:
            content_type = data.get("content_type")
        return cls(
            bucket=str(data.get("bucket") or ""),
            name=str(data.get("name") or ""),
            content_type=str(content_type or ""),
        )

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.name)

    @property
    def directory(self) -> str:
        # Root-level objects report "." like POSIX dirname in the trigger runtime
        return posixpath.dirname(self.name) or "."

    @property
    def base_name(self) -> str:
        stem, _ = posixpath.splitext(self.file_name)
        return stem if stem else self.file_name

    @property
    def extension(self) -> str:
        """Lowercased extension without the dot ('' when absent)."""
        _, ext = posixpath.splitext(self.file_name)
        return ext[1:].lower()

    @property
    def is_video(self) -> bool:
        return "video/" in self.content_type


class DerivedPaths(BaseModel):
    model_config = ConfigDict(frozen=True)

    thumbnail_file_name: str
    thumbnail_cloud_path: str
    video_output_file_name: str
    video_cloud_path: str
    already_target_format: bool = False


class WorkItem(BaseModel):
    """Per-invocation state threaded through the orchestrator.

    Every local path assigned through `allocate()` is recorded once in
    `allocated_paths`; cleanup walks that list, so a path is never removed twice.
    """

    source: SourceObject
    paths: Optional[DerivedPaths] = None
    state: PipelineState = PipelineState.RECEIVED
    scratch_dir: Optional[Path] = None
    local_source: Optional[Path] = None
    local_thumbnail: Optional[Path] = None
    local_video: Optional[Path] = None
    allocated_paths: List[Path] = Field(default_factory=list)

    def allocate(self, path: Path) -> Path:
        if path not in self.allocated_paths:
            self.allocated_paths.append(path)
        return path

    @property
    def transcode_required(self) -> bool:
        return self.local_video is not None


class InvocationResult(BaseModel):
    source_path: str
    state: PipelineState
    error_message: Optional[str] = None
    published: List[str] = Field(default_factory=list)
    cleaned_paths: List[Path] = Field(default_factory=list)
    cleanup_warnings: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error_message is None
