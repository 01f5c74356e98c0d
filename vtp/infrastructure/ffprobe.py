import subprocess
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from vtp.domain.models import AspectRatio


class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream geometry and duration."""

    def __init__(self, binary: str = "ffprobe", timeout_s: Optional[float] = None):
        self.binary = binary
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _to_int(value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and parses JSON output. Raises on any failure."""
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        # TimeoutExpired propagates like any other probe failure
        result = subprocess.run(cmd, capture_output=True, encoding="utf-8", errors="replace", timeout=self.timeout_s)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr}")

        data = json.loads(result.stdout)

        # Find video stream
        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ValueError(f"No video stream found in {file_path}")

        # Duration fallback order: format.duration, stream.duration
        fmt = data.get("format", {}) or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))

        return {
            "width": self._to_int(video_stream.get("width")),
            "height": self._to_int(video_stream.get("height")),
            "codec": video_stream.get("codec_name", "unknown"),
            "display_aspect_ratio": video_stream.get("display_aspect_ratio"),
            "duration": duration,
        }

    def probe_aspect_ratio(self, file_path: Path) -> Optional[AspectRatio]:
        """Returns width:height of the first video stream, else its declared DAR, else None.

        Never raises: a corrupt file, an unsupported container or a missing
        ffprobe binary all mean "apply no aspect-ratio override".
        """
        try:
            info = self.get_stream_info(file_path)
        except Exception as e:
            self.logger.warning(f"Could not get video metadata for {file_path}: {e}")
            return None

        if info["width"] > 0 and info["height"] > 0:
            return AspectRatio(width=info["width"], height=info["height"])
        # ffprobe reports "0:1" when the container declares nothing useful
        return AspectRatio.parse(info.get("display_aspect_ratio"))

    def probe_duration(self, file_path: Path) -> float:
        """Duration in seconds, 0.0 when unknown. Never raises."""
        try:
            return float(self.get_stream_info(file_path).get("duration") or 0.0)
        except Exception as e:
            self.logger.debug(f"Duration probe failed for {file_path}: {e}")
            return 0.0
