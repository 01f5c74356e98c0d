import io
import pytest
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from vtp.config.models import PipelineConfig
from vtp.domain.models import AspectRatio
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.ffmpeg import FFmpegAdapter
from vtp.pipeline.orchestrator import Orchestrator

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns the minimal PipelineConfig: webp thumbnails taken at 1s."""
    return PipelineConfig(image_type="webp", timestamp=1)


@pytest.fixture
def make_config(tmp_path):
    """Factory for PipelineConfig with a per-test scratch root."""
    scratch_root = tmp_path / "scratch"

    def _make(**overrides):
        values = {
            "image_type": "webp",
            "timestamp": 1,
            "scratch_dir": str(scratch_root),
        }
        values.update(overrides)
        return PipelineConfig(**values)

    return _make


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vtp.yaml"

    content = {
        'pipeline': {
            'image_type': 'jpg',
            'timestamp': 2.5,
            'aspect_ratio': '16:9',
            'thumbnail_path': 'thumbnails',
            'video_output_path': 'videos',
            'video_bitrate': 1000,
            'visibility': 'public',
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Object Store Fakes
# ============================================================================

class FakeBucket:
    """In-memory Bucket that records every call.

    `fail_on` maps an operation name ('download', 'upload', 'copy', 'delete',
    ...) to the exception that operation should raise.
    """

    def __init__(self, name: str, objects: Optional[Dict[str, bytes]] = None):
        self.name = name
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.calls: List[Tuple[str, str]] = []
        self.uploads: Dict[str, dict] = {}
        self.copies: Dict[str, dict] = {}
        self.metadata_updates: Dict[str, dict] = {}
        self.public: List[str] = []
        self.fail_on: Dict[str, Exception] = {}

    def _record(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        if op in self.fail_on:
            raise self.fail_on[op]

    def ops(self, op: str) -> List[str]:
        return [path for name, path in self.calls if name == op]

    def download(self, path, destination):
        self._record("download", path)
        if path not in self.objects:
            raise FileNotFoundError(f"No such object: {path}")
        Path(destination).write_bytes(self.objects[path])

    def open_read(self, path):
        self._record("open_read", path)
        if path not in self.objects:
            raise FileNotFoundError(f"No such object: {path}")
        return io.BytesIO(self.objects[path])

    def upload(self, local_path, destination, content_type, cache_control=None, public=False, metadata=None):
        self._record("upload", destination)
        self.objects[destination] = Path(local_path).read_bytes()
        self.uploads[destination] = {
            "content_type": content_type,
            "cache_control": cache_control,
            "public": public,
            "metadata": metadata,
        }

    def copy(self, source, destination, content_type, cache_control=None, metadata=None):
        self._record("copy", destination)
        self.objects[destination] = self.objects[source]
        self.copies[destination] = {
            "source": source,
            "content_type": content_type,
            "cache_control": cache_control,
            "metadata": metadata,
        }

    def update_metadata(self, path, content_type=None, cache_control=None, metadata=None):
        self._record("update_metadata", path)
        self.metadata_updates[path] = {
            "content_type": content_type,
            "cache_control": cache_control,
            "metadata": metadata,
        }

    def make_public(self, path):
        self._record("make_public", path)
        self.public.append(path)

    def delete(self, path):
        self._record("delete", path)
        self.objects.pop(path, None)


class FakeStorage:
    def __init__(self):
        self.buckets: Dict[str, FakeBucket] = {}

    def bucket(self, name: str) -> FakeBucket:
        if name not in self.buckets:
            self.buckets[name] = FakeBucket(name)
        return self.buckets[name]


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def media_bucket(fake_storage):
    """Bucket 'media' holding a few uploads."""
    bucket = fake_storage.bucket("media")
    bucket.objects.update({
        "clip.mov": b"quicktime bytes",
        "clip.mp4": b"mp4 bytes",
        "uploads/2024/holiday.final.MOV": b"quicktime bytes",
        "photo.png": b"png bytes",
    })
    return bucket

# ============================================================================
# Media Tool Fakes
# ============================================================================

class FakeFFprobeAdapter:
    def __init__(self, aspect_ratio: Optional[AspectRatio] = None, duration: float = 10.0):
        self.aspect_ratio = aspect_ratio
        self.duration = duration
        self.probed: List[Path] = []

    def probe_aspect_ratio(self, file_path):
        self.probed.append(file_path)
        return self.aspect_ratio

    def probe_duration(self, file_path):
        return self.duration


class FakeFFmpegAdapter:
    """Writes placeholder outputs instead of running ffmpeg."""

    resolve_output_path = staticmethod(FFmpegAdapter.resolve_output_path)

    def __init__(self, thumbnail_error: Optional[Exception] = None, transcode_error: Optional[Exception] = None, write_outputs: bool = True):
        self.thumbnail_error = thumbnail_error
        self.transcode_error = transcode_error
        self.write_outputs = write_outputs
        self.thumbnail_calls: List[dict] = []
        self.transcode_calls: List[dict] = []

    def extract_thumbnail(self, video_path, output_dir, output_file_name, timestamp, aspect_ratio=None):
        self.thumbnail_calls.append({
            "video_path": video_path,
            "output_file_name": output_file_name,
            "timestamp": timestamp,
            "aspect_ratio": aspect_ratio,
        })
        if self.thumbnail_error is not None:
            raise self.thumbnail_error
        output_path = output_dir / output_file_name
        if self.write_outputs:
            output_path.write_bytes(b"thumbnail")
        return output_path

    def transcode(self, input_path, output_path, options=None, total_duration=0.0):
        self.transcode_calls.append({
            "input_path": input_path,
            "output_path": output_path,
            "options": options,
            "total_duration": total_duration,
        })
        if self.transcode_error is not None:
            raise self.transcode_error
        if self.write_outputs:
            output_path.write_bytes(b"h264 mp4")
        return output_path


@pytest.fixture
def fake_ffprobe():
    return FakeFFprobeAdapter()


@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpegAdapter()


@pytest.fixture
def make_orchestrator(make_config, fake_storage, fake_ffprobe, fake_ffmpeg, event_bus):
    """Factory wiring an Orchestrator to the in-memory fakes."""

    def _make(config=None, ffmpeg=None, ffprobe=None, housekeeping=None, **overrides):
        return Orchestrator(
            config=config or make_config(**overrides),
            storage=fake_storage,
            ffprobe_adapter=ffprobe or fake_ffprobe,
            ffmpeg_adapter=ffmpeg or fake_ffmpeg,
            event_bus=event_bus,
            housekeeping=housekeeping,
        )

    return _make

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (real ffmpeg encodes)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (real ffmpeg)"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
