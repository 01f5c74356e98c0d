import pytest
from vtp.config.models import PipelineConfig
from vtp.pipeline.paths import (
    derive_paths,
    file_extension,
    is_target_format,
    join_cloud_path,
    matches_intake_prefix,
    matches_video_directory,
    requires_transcode,
    strip_extension,
    thumbnail_directory,
    video_directory,
)


@pytest.mark.parametrize("file_name,expected", [
    ("clip.mov", "clip"),
    ("holiday.final.MOV", "holiday.final"),
    ("a.b.c.d", "a.b.c"),
    ("noext", "noext"),
    (".hidden", ""),
    ("", ""),
    (None, ""),
])
def test_strip_extension_removes_last_extension_only(file_name, expected):
    assert strip_extension(file_name) == expected


@pytest.mark.parametrize("file_name,expected", [
    ("clip.MP4", "mp4"),
    ("archive.tar.gz", "gz"),
    ("noext", ""),
])
def test_file_extension(file_name, expected):
    assert file_extension(file_name) == expected


@pytest.mark.parametrize("file_name", ["clip.mp4", "clip.MP4", "clip.Mp4", "a.b.mp4"])
def test_is_target_format_case_insensitive(file_name):
    assert is_target_format(file_name) is True


@pytest.mark.parametrize("file_name", ["clip.mov", "clip.mp4.mov", "mp4", "clip.m4v"])
def test_is_target_format_rejects_other_extensions(file_name):
    assert is_target_format(file_name) is False


def test_is_target_format_custom_extension():
    assert is_target_format("clip.WEBM", ".webm") is True
    assert is_target_format("clip.mp4", "webm") is False


@pytest.mark.parametrize("file_name", ["clip.mov", "holiday.final.MOV", "a.b.c.d.avi", "x"])
@pytest.mark.parametrize("image_type", ["webp", "jpg", "png"])
def test_thumbnail_name_strips_exactly_the_original_extension(file_name, image_type):
    config = PipelineConfig(image_type=image_type, timestamp=0)
    paths = derive_paths(file_name, ".", config)
    assert paths.thumbnail_file_name == f"{strip_extension(file_name)}.{image_type}"


def test_thumbnail_prefix_and_suffix():
    config = PipelineConfig(image_type="webp", timestamp=0, thumbnail_prefix="thumb_", thumbnail_suffix="_small")
    paths = derive_paths("clip.mov", "uploads", config)
    assert paths.thumbnail_file_name == "thumb_clip_small.webp"


@pytest.mark.parametrize("directory,file_name,expected", [
    (".", "clip.mp4", "clip.mp4"),
    ("", "clip.mp4", "clip.mp4"),
    ("/", "clip.mp4", "clip.mp4"),
    ("videos", "clip.mp4", "videos/clip.mp4"),
    ("videos/", "clip.mp4", "videos/clip.mp4"),
    ("/a/b/", "clip.mp4", "a/b/clip.mp4"),
])
def test_join_cloud_path(directory, file_name, expected):
    assert join_cloud_path(directory, file_name) == expected


@pytest.mark.parametrize("thumbnail_path,expected", [
    ("", ""),
    ("/", ""),
    ("~", "uploads/2024"),
    ("thumbnails", "thumbnails"),
])
def test_thumbnail_directory(thumbnail_path, expected):
    assert thumbnail_directory(thumbnail_path, "uploads/2024") == expected


@pytest.mark.parametrize("video_output_path,expected", [
    ("", "uploads/2024"),
    ("~", "uploads/2024"),
    ("/", ""),
    ("media/videos", "media/videos"),
])
def test_video_directory(video_output_path, expected):
    assert video_directory(video_output_path, "uploads/2024") == expected


def test_derive_paths_for_non_target_source():
    config = PipelineConfig(image_type="webp", timestamp=1, thumbnail_path="thumbnails", video_output_path="videos")
    paths = derive_paths("clip.mov", ".", config)

    assert paths.thumbnail_cloud_path == "thumbnails/clip.webp"
    assert paths.video_output_file_name == "clip.mp4"
    assert paths.video_cloud_path == "videos/clip.mp4"
    assert paths.already_target_format is False


def test_derive_paths_keeps_original_name_for_target_source():
    config = PipelineConfig(image_type="webp", timestamp=1, video_output_path="media/videos")
    paths = derive_paths("Clip.MP4", "uploads", config)

    assert paths.already_target_format is True
    assert paths.video_output_file_name == "Clip.MP4"
    assert paths.video_cloud_path == "media/videos/Clip.MP4"


def test_derive_paths_forced_transcode_normalizes_name():
    config = PipelineConfig(image_type="webp", timestamp=1, force_transcode=True)
    paths = derive_paths("Clip.MP4", "uploads", config)

    assert paths.already_target_format is True
    assert paths.video_output_file_name == "Clip.mp4"
    assert paths.video_cloud_path == "uploads/Clip.mp4"


def test_derive_paths_in_place_by_default():
    config = PipelineConfig(image_type="webp", timestamp=1)
    paths = derive_paths("clip.mp4", "uploads", config)

    assert paths.video_cloud_path == "uploads/clip.mp4"
    # Thumbnails default to the bucket root
    assert paths.thumbnail_cloud_path == "clip.webp"


def test_derive_paths_is_deterministic():
    config = PipelineConfig(image_type="jpg", timestamp=3, thumbnail_path="~", video_output_path="out")
    first = derive_paths("a.b.mov", "in/x", config)
    second = derive_paths("a.b.mov", "in/x", config)
    assert first == second


def test_derive_paths_tolerates_empty_name():
    config = PipelineConfig(image_type="webp", timestamp=1)
    paths = derive_paths(None, None, config)
    assert paths.thumbnail_file_name == ".webp"
    assert paths.already_target_format is False


@pytest.mark.parametrize("directory", [".", "", "a", "a/b", "uploads/2024/06"])
def test_tilde_filter_matches_every_directory(directory):
    assert matches_video_directory(directory, "~") is True


@pytest.mark.parametrize("directory,video_path,expected", [
    (".", "", True),
    (".", ".", True),
    (".", "/", True),
    ("a/b/", "a/b", True),
    ("a/b", "/a/b/", True),
    ("a/b", "c/d", False),
    ("a", "", False),
    ("a/b", "a", False),
])
def test_directory_filter_truth_table(directory, video_path, expected):
    assert matches_video_directory(directory, video_path) is expected


def test_unset_directory_filter_matches_nothing():
    assert matches_video_directory("a", None) is False


@pytest.mark.parametrize("name,prefix,expected", [
    ("uploads/clip.mov", None, True),
    ("uploads/clip.mov", "", True),
    ("uploads/clip.mov", "uploads", True),
    ("uploads/clip.mov", "/uploads/", True),
    ("uploads-old/clip.mov", "uploads", False),
    ("clip.mov", "uploads", False),
])
def test_intake_prefix(name, prefix, expected):
    assert matches_intake_prefix(name, prefix) is expected


def _decide(name, **overrides):
    config = PipelineConfig(image_type="webp", timestamp=1, **overrides)
    directory, _, file_name = name.rpartition("/")
    return requires_transcode(name, derive_paths(file_name, directory, config), config.force_transcode)


@pytest.mark.parametrize("name,overrides,expected", [
    ("clip.mov", {}, True),
    ("clip.mp4", {}, False),
    ("clip.mov", {"force_transcode": True}, True),
    # Forced output written back onto the source would fire another finalize
    ("clip.mp4", {"force_transcode": True}, False),
    ("videos/clip.mp4", {"force_transcode": True, "video_output_path": "videos"}, False),
    ("uploads/clip.mp4", {"force_transcode": True, "video_output_path": "videos"}, True),
    ("Clip.MP4", {"force_transcode": True}, True),
    ("Clip.mp4", {"force_transcode": True}, False),
])
def test_requires_transcode(name, overrides, expected):
    assert _decide(name, **overrides) is expected
