import subprocess
import re
import logging
import time
from collections import deque
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from vtp.config.models import PipelineConfig
from vtp.domain.errors import ExtractionError, TranscodeError
from vtp.domain.events import TranscodeProgress
from vtp.domain.models import AspectRatio
from vtp.infrastructure.event_bus import EventBus

VIDEO_CODEC = "libx264"
AUDIO_CODEC = "aac"

# Regex to parse 'time=00:00:00.00' from ffmpeg output
_TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+\.\d+)")


class TranscodeOptions(BaseModel):
    """Encoder overrides; None leaves the codec default in place."""

    size: Optional[str] = None
    video_bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None
    crf: Optional[int] = None
    preset: Optional[str] = None
    faststart: bool = True

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "TranscodeOptions":
        return cls(
            size=config.video_size,
            video_bitrate=config.video_bitrate,
            audio_bitrate=config.audio_bitrate,
            crf=config.video_crf,
            preset=config.video_preset,
            faststart=config.faststart,
        )


def format_bitrate(value: str) -> str:
    """Bare numbers are kbit/s: '1000' -> '1000k'."""
    value = value.strip()
    if value[-1:].isdigit():
        return f"{value}k"
    return value


def size_filter(size: str) -> str:
    """Translates WxH, Wx?, ?xH and N% into a scale filter keeping even dimensions."""
    size = size.strip()
    if size.endswith("%"):
        factor = float(size[:-1]) / 100.0
        return f"scale=trunc(iw*{factor:g}/2)*2:trunc(ih*{factor:g}/2)*2"
    width, _, height = size.partition("x")
    w = "-2" if width == "?" else width
    h = "-2" if height == "?" else height
    return f"scale={w}:{h}"


def aspect_filter(aspect_ratio: AspectRatio) -> str:
    """Rescales the frame to square pixels at the requested display ratio."""
    return f"scale=trunc(ih*{aspect_ratio.ratio:.6f}/2)*2:ih,setsar=1"


def _same_file(a: Path, b: Path) -> bool:
    try:
        if a.exists() and b.exists():
            return a.samefile(b)
    except OSError:
        pass
    return a.resolve() == b.resolve()


class FFmpegAdapter:
    """Wrapper around ffmpeg for still-frame extraction and MP4 re-encoding."""

    def __init__(self, event_bus: Optional[EventBus] = None, binary: str = "ffmpeg", debug: bool = False, timeout_s: Optional[float] = None):
        self.event_bus = event_bus
        self.binary = binary
        self.debug = debug
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(__name__)

    # -- Thumbnail -------------------------------------------------------

    def _build_thumbnail_command(self, video_path: Path, output_path: Path, timestamp: float, aspect_ratio: Optional[AspectRatio] = None) -> List[str]:
        cmd = [
            self.binary,
            "-y",  # Overwrite output files
            "-hide_banner",
            "-loglevel", "error",
            "-ss", f"{timestamp:g}",
            "-i", str(video_path),
            "-frames:v", "1",
        ]
        if aspect_ratio is not None:
            cmd.extend(["-vf", aspect_filter(aspect_ratio)])
        cmd.append(str(output_path))
        return cmd

    def extract_thumbnail(
        self,
        video_path: Path,
        output_dir: Path,
        output_file_name: str,
        timestamp: float,
        aspect_ratio: Optional[AspectRatio] = None,
    ) -> Path:
        """Writes exactly one frame taken at `timestamp` to output_dir/output_file_name."""
        output_path = output_dir / output_file_name
        cmd = self._build_thumbnail_command(video_path, output_path, timestamp, aspect_ratio)
        start_time = time.monotonic()

        if self.debug:
            self.logger.info(f"FFMPEG_THUMB_START: {video_path.name} (t={timestamp:g}s, aspect={aspect_ratio or 'native'})")
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, encoding="utf-8", errors="replace", timeout=self.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise ExtractionError(f"Timeout while extracting thumbnail from {video_path.name}") from e
        except OSError as e:
            raise ExtractionError(f"Could not run {self.binary}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else "no output"
            raise ExtractionError(f"ffmpeg exited with code {result.returncode} while extracting thumbnail: {detail}")

        if self.debug:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"FFMPEG_THUMB_END: {output_file_name} elapsed={elapsed:.2f}s")
        return output_path

    # -- Transcode -------------------------------------------------------

    @staticmethod
    def resolve_output_path(input_path: Path, output_path: Path) -> Path:
        """Returns an output path guaranteed not to alias the input (or its .tmp)."""
        candidate = output_path
        counter = 0
        while _same_file(candidate, input_path) or _same_file(candidate.with_suffix(".tmp"), input_path):
            counter += 1
            tag = "_transcoded" if counter == 1 else f"_transcoded{counter}"
            candidate = output_path.with_name(f"{output_path.stem}{tag}{output_path.suffix}")
        return candidate

    def _build_transcode_command(self, input_path: Path, output_path: Path, options: TranscodeOptions) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.binary,
            "-y",  # Overwrite output files
            "-hide_banner",
            "-i", str(input_path),
            "-c:v", VIDEO_CODEC,
            "-c:a", AUDIO_CODEC,
        ]
        if options.preset:
            cmd.extend(["-preset", options.preset])
        if options.crf is not None:
            cmd.extend(["-crf", str(options.crf)])
        if options.video_bitrate:
            cmd.extend(["-b:v", format_bitrate(options.video_bitrate)])
        if options.audio_bitrate:
            cmd.extend(["-b:a", format_bitrate(options.audio_bitrate)])
        if options.size:
            cmd.extend(["-vf", size_filter(options.size)])
        if options.faststart:
            cmd.extend(["-movflags", "+faststart"])

        # Write to .tmp file during encoding (renamed on success)
        # Force mp4 format since .tmp extension doesn't indicate format
        tmp_path = output_path.with_suffix('.tmp')
        cmd.extend(["-f", "mp4", str(tmp_path)])
        return cmd

    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: Optional[TranscodeOptions] = None,
        total_duration: float = 0.0,
    ) -> Path:
        """Re-encodes input_path to H.264/AAC MP4. Returns the path actually written."""
        options = options or TranscodeOptions()
        output_path = self.resolve_output_path(input_path, output_path)
        tmp_path = output_path.with_suffix('.tmp')
        filename = input_path.name
        start_time = time.monotonic()

        cmd = self._build_transcode_command(input_path, output_path, options)
        if self.debug:
            self.logger.info(f"FFMPEG_START: {filename} -> {output_path.name}")
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                # Container tags are echoed verbatim and need not be UTF-8
                encoding="utf-8",
                errors="replace",
                bufsize=1
            )
        except OSError as e:
            raise TranscodeError(f"Could not run {self.binary}: {e}") from e

        tail: "deque[str]" = deque(maxlen=20)
        finished = False
        try:
            if process.stdout:
                for line in process.stdout:
                    tail.append(line.rstrip())
                    match = _TIME_REGEX.search(line)
                    if match and total_duration > 0 and self.event_bus is not None:
                        h, m, s = map(float, match.groups())
                        current_seconds = h * 3600 + m * 60 + s
                        progress_percent = min(100.0, (current_seconds / total_duration) * 100.0)
                        self.event_bus.publish(TranscodeProgress(input_path=input_path, progress_percent=progress_percent))
            process.wait()
            finished = True
        finally:
            if not finished:
                # Stop the encoder before its scratch dir goes away
                process.kill()
                process.wait()
                if tmp_path.exists():
                    tmp_path.unlink()

        if process.returncode != 0:
            # Cleanup tmp file on error
            if tmp_path.exists():
                tmp_path.unlink()
            detail = next((line for line in reversed(tail) if line.strip()), "")
            if self.debug:
                elapsed = time.monotonic() - start_time
                self.logger.info(f"FFMPEG_END: {filename} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise TranscodeError(f"ffmpeg exited with code {process.returncode}: {detail}".rstrip(": "))

        # Success - rename .tmp to final .mp4
        if not tmp_path.exists():
            raise TranscodeError(f"ffmpeg reported success but {tmp_path.name} is missing")
        tmp_path.replace(output_path)

        if self.debug:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"FFMPEG_END: {filename} status=completed elapsed={elapsed:.2f}s")
        return output_path
