import re
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from vtp.domain.models import AspectRatio

# Sentinels understood by the path settings
ALONGSIDE_SOURCE = "~"
MATCH_ANY_DIRECTORY = "~"

DEFAULT_CACHE_CONTROL = "public, max-age=31536000"

_SIZE_PATTERN = re.compile(r"^(\d+|\?)x(\d+|\?)$|^\d+(\.\d+)?%$")
_BITRATE_PATTERN = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


class PipelineConfig(BaseModel):
    """Process-wide configuration, resolved once and shared read-only."""

    model_config = ConfigDict(frozen=True)

    # Thumbnail
    image_type: str
    timestamp: float = Field(ge=0)
    aspect_ratio: Optional[str] = None
    thumbnail_prefix: str = ""
    thumbnail_suffix: str = ""
    thumbnail_path: str = ""

    # Video encoding overrides (None = codec default)
    video_size: Optional[str] = None
    video_bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None
    video_crf: Optional[int] = Field(default=None, ge=0, le=51)
    video_preset: Optional[str] = None
    faststart: bool = True
    target_extension: str = "mp4"
    force_transcode: bool = False

    # Storage layout and filters
    video_output_path: str = ALONGSIDE_SOURCE
    video_path: Optional[str] = None
    intake_prefix: Optional[str] = None

    # Publishing policy
    visibility: Literal["public", "private"] = "private"
    cache_control: Optional[str] = DEFAULT_CACHE_CONTROL
    delete_source_after_relocate: bool = True
    stream_download: bool = False

    # Runtime
    scratch_dir: Optional[str] = None
    ffmpeg_timeout_s: Optional[float] = Field(default=None, gt=0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("image_type", "target_extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        v = v.strip().lstrip(".").lower()
        if not v or "/" in v:
            raise ValueError("extension must be a non-empty name such as 'webp'")
        return v

    @field_validator("aspect_ratio", mode="before")
    @classmethod
    def validate_aspect_ratio(cls, v) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        parsed = AspectRatio.parse(v)
        if parsed is None:
            raise ValueError(f"Invalid aspect ratio {v!r}. Use 'W:H' or a decimal ratio.")
        return str(parsed)

    @field_validator("video_size", mode="before")
    @classmethod
    def validate_size(cls, v) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        v = str(v).strip()
        if not _SIZE_PATTERN.match(v) or v == "?x?":
            raise ValueError(f"Invalid video size {v!r}. Use WxH, Wx?, ?xH or N%.")
        return v

    @field_validator("video_bitrate", "audio_bitrate", mode="before")
    @classmethod
    def validate_bitrate(cls, v) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        v = str(v).strip()
        if not _BITRATE_PATTERN.match(v):
            raise ValueError(f"Invalid bitrate {v!r}. Use e.g. 1000, 1000k or 2M.")
        return v

    @property
    def explicit_aspect_ratio(self) -> Optional[AspectRatio]:
        return AspectRatio.parse(self.aspect_ratio)

    @property
    def public(self) -> bool:
        return self.visibility == "public"

    @property
    def image_content_type(self) -> str:
        if self.image_type in ("jpg", "jpeg"):
            return "image/jpeg"
        return f"image/{self.image_type}"

    @property
    def video_content_type(self) -> str:
        return f"video/{self.target_extension}"
