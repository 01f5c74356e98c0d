"""Pure path derivation for triggered objects.

Maps an object's file name and directory plus the PipelineConfig to output
names and cloud destinations. Nothing here touches the network or disk, and
nothing raises: malformed input degrades to a safe default (the bucket root,
an empty name) instead.
"""

from typing import Optional
from vtp.config.models import ALONGSIDE_SOURCE, MATCH_ANY_DIRECTORY, PipelineConfig
from vtp.domain.models import DerivedPaths

_ROOT_DIRS = ("", ".", "/")


def strip_extension(file_name: Optional[str]) -> str:
    """Removes the last extension only: 'a.b.mov' -> 'a.b'."""
    file_name = file_name or ""
    dot = file_name.rfind(".")
    return file_name if dot == -1 else file_name[:dot]


def file_extension(file_name: Optional[str]) -> str:
    """Lowercased extension after the last dot, '' when there is none."""
    file_name = file_name or ""
    dot = file_name.rfind(".")
    return "" if dot == -1 else file_name[dot + 1:].lower()


def is_target_format(file_name: Optional[str], target_extension: str = "mp4") -> bool:
    target = (target_extension or "mp4").lstrip(".").lower()
    return file_extension(file_name) == target


def _trim_slashes(value: Optional[str]) -> str:
    return (value or "").strip("/")


def join_cloud_path(directory: Optional[str], file_name: Optional[str]) -> str:
    """Joins a bucket directory and a file name with single slashes.

    '.', '' and '/' all denote the bucket root.
    """
    parts = [p for p in _trim_slashes(directory).split("/") if p and p != "."]
    if file_name:
        parts.append(file_name.strip("/"))
    return "/".join(parts)


def thumbnail_directory(thumbnail_path: Optional[str], source_dir: Optional[str]) -> str:
    if not thumbnail_path or thumbnail_path == "/":
        return ""
    if thumbnail_path == ALONGSIDE_SOURCE:
        return source_dir or ""
    return thumbnail_path


def video_directory(video_output_path: Optional[str], source_dir: Optional[str]) -> str:
    if not video_output_path or video_output_path == ALONGSIDE_SOURCE:
        return source_dir or ""
    if video_output_path == "/":
        return ""
    return video_output_path


def thumbnail_file_name(file_name: Optional[str], config: PipelineConfig) -> str:
    return (
        f"{config.thumbnail_prefix or ''}{strip_extension(file_name)}"
        f"{config.thumbnail_suffix or ''}.{config.image_type}"
    )


def derive_paths(file_name: Optional[str], source_dir: Optional[str], config: PipelineConfig) -> DerivedPaths:
    """Computes every output name and destination for one source object."""
    file_name = file_name or ""
    already_target = is_target_format(file_name, config.target_extension)

    thumb_name = thumbnail_file_name(file_name, config)

    if already_target and not config.force_transcode:
        video_name = file_name
    else:
        video_name = f"{strip_extension(file_name)}.{config.target_extension}"

    return DerivedPaths(
        thumbnail_file_name=thumb_name,
        thumbnail_cloud_path=join_cloud_path(thumbnail_directory(config.thumbnail_path, source_dir), thumb_name),
        video_output_file_name=video_name,
        video_cloud_path=join_cloud_path(video_directory(config.video_output_path, source_dir), video_name),
        already_target_format=already_target,
    )


def matches_video_directory(directory: Optional[str], video_path: Optional[str]) -> bool:
    """True when an object's directory passes the VIDEO_PATH filter.

    '~' matches anything; a root-like filter ('', '.', '/') matches the bucket
    root; otherwise the slash-trimmed forms must be equal. No filter (None)
    matches nothing.
    """
    if video_path is None:
        return False
    if video_path == MATCH_ANY_DIRECTORY:
        return True
    if video_path in _ROOT_DIRS and (directory or ".") in (".", ""):
        return True
    if directory is None:
        return False
    return _trim_slashes(video_path) == _trim_slashes(directory)


def matches_intake_prefix(object_name: Optional[str], intake_prefix: Optional[str]) -> bool:
    """An unset prefix admits every object; otherwise the name must sit under it."""
    if not intake_prefix or intake_prefix == "/":
        return True
    prefix = _trim_slashes(intake_prefix) + "/"
    return _trim_slashes(object_name).startswith(prefix)


def requires_transcode(object_name: Optional[str], paths: DerivedPaths, force_transcode: bool = False) -> bool:
    """Whether the source must be re-encoded before publishing.

    A forced re-encode is dropped when its output would land on the source's
    own path: that upload is a new finalize event for the same object, which
    would be re-encoded again without end.
    """
    if not paths.already_target_format:
        return True
    if not force_transcode:
        return False
    return paths.video_cloud_path != _trim_slashes(object_name)
