import os
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from pydantic import ValidationError
from vtp.domain.errors import ConfigurationError
from .models import PipelineConfig

# Environment variable -> PipelineConfig field
ENV_FIELDS: Dict[str, str] = {
    "IMAGE_TYPE": "image_type",
    "TIMESTAMP": "timestamp",
    "ASPECT_RATIO": "aspect_ratio",
    "VIDEO_SIZE": "video_size",
    "VIDEO_BITRATE": "video_bitrate",
    "AUDIO_BITRATE": "audio_bitrate",
    "VIDEO_CRF": "video_crf",
    "VIDEO_PRESET": "video_preset",
    "FASTSTART": "faststart",
    "TARGET_EXTENSION": "target_extension",
    "FORCE_TRANSCODE": "force_transcode",
    "THUMBNAIL_PREFIX": "thumbnail_prefix",
    "THUMBNAIL_SUFFIX": "thumbnail_suffix",
    "THUMBNAIL_PATH": "thumbnail_path",
    "VIDEO_OUTPUT_PATH": "video_output_path",
    "VIDEO_PATH": "video_path",
    "INTAKE_PREFIX": "intake_prefix",
    "OUTPUT_VISIBILITY": "visibility",
    "CACHE_CONTROL": "cache_control",
    "DELETE_SOURCE_AFTER_RELOCATE": "delete_source_after_relocate",
    "STREAM_DOWNLOAD": "stream_download",
    "SCRATCH_DIR": "scratch_dir",
    "FFMPEG_TIMEOUT": "ffmpeg_timeout_s",
    "VTP_DEBUG": "debug",
    "VTP_LOG_PATH": "log_path",
}

# An empty value is meaningful for these (e.g. VIDEO_PATH="" matches the bucket root)
_EMPTY_ALLOWED = {"thumbnail_prefix", "thumbnail_suffix", "thumbnail_path", "video_path"}

REQUIRED_FIELDS = ("image_type", "timestamp")


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    # Accept a nested 'pipeline:' section as well as flat keys
    if isinstance(data.get("pipeline"), dict):
        data = data["pipeline"]
    return data


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Maps recognized environment variables to config fields."""
    values: Dict[str, Any] = {}
    for env_name, field in ENV_FIELDS.items():
        if env_name not in environ:
            continue
        raw = environ[env_name]
        if raw is None:
            continue
        raw = str(raw)
        if not raw.strip() and field not in _EMPTY_ALLOWED:
            continue
        values[field] = raw
    return values


def load_config(environ: Optional[Mapping[str, str]] = None, config_path: Optional[Path] = None) -> PipelineConfig:
    """Builds the PipelineConfig from an optional YAML file overlaid with the environment.

    Fails fast with ConfigurationError when IMAGE_TYPE or TIMESTAMP is missing
    or any value is invalid.
    """
    environ = os.environ if environ is None else environ

    data: Dict[str, Any] = {}
    if config_path is not None:
        data.update(_read_yaml(Path(config_path)))
    data.update(env_overrides(environ))

    missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, "")]
    if missing:
        env_names = [name for name, field in ENV_FIELDS.items() if field in missing]
        raise ConfigurationError(f"Missing mandatory configuration: {', '.join(env_names)}")

    try:
        return PipelineConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
