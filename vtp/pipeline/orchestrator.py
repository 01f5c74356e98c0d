"""Per-event orchestrator for the transcode-and-publish pipeline.

Drives one finalized object through:

    RECEIVED → DOWNLOADED → PROCESSED → VERIFIED → UPLOADED → FINALIZED

with FAILED reachable from any stage and SKIPPED for rejected objects. Cleanup
of the invocation's scratch files runs after every outcome.

Key responsibilities:
- Reject objects that are not videos or fall outside the configured filters
- Download the source into a private scratch directory
- Run thumbnail extraction and transcoding concurrently (join both, then react)
- Verify local outputs before anything is uploaded
- Upload (or server-side copy) outputs concurrently with content type,
  cache-control and visibility metadata
- Delete the source once every output is durably published
- Catch and log every stage error; the trigger runtime always sees success
"""

import concurrent.futures
import logging
import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from vtp.config.models import PipelineConfig
from vtp.domain.errors import (
    DownloadError,
    FinalizeError,
    PipelineError,
    UploadError,
    ValidationSkip,
    VerificationError,
)
from vtp.domain.events import (
    CleanupFailed,
    InvocationFailed,
    InvocationFinished,
    InvocationSkipped,
    InvocationStarted,
    OutputPublished,
    StageChanged,
)
from vtp.domain.models import InvocationResult, PipelineState, SourceObject, WorkItem
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.ffmpeg import FFmpegAdapter, TranscodeOptions
from vtp.infrastructure.ffprobe import FFprobeAdapter
from vtp.infrastructure.housekeeping import HousekeepingService
from vtp.infrastructure.storage import Bucket, ObjectStore
from vtp.pipeline.paths import derive_paths, matches_intake_prefix, matches_video_directory, requires_transcode

DOWNLOAD_TOKEN_KEY = "firebaseStorageDownloadTokens"


class Orchestrator:
    """Transcode-and-publish driver for a single triggered object.

    Built once per process and shared by every invocation; it holds no
    per-invocation state, which lives in a WorkItem owned by `handle()`.

    Args:
        config: Validated PipelineConfig.
        storage: ObjectStore handle (created once per process).
        ffprobe_adapter: FFprobeAdapter for aspect ratio and duration probing.
        ffmpeg_adapter: FFmpegAdapter for thumbnail extraction and transcoding.
        event_bus: EventBus for publishing lifecycle events.
        housekeeping: HousekeepingService for scratch cleanup.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: ObjectStore,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        event_bus: Optional[EventBus] = None,
        housekeeping: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.storage = storage
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.event_bus = event_bus or EventBus()
        self.housekeeping = housekeeping or HousekeepingService()
        self.logger = logging.getLogger(__name__)

    # -- Entry point -----------------------------------------------------

    def handle(self, source: SourceObject) -> InvocationResult:
        """Runs the whole pipeline for one object. Never raises."""
        work = WorkItem(source=source)
        start_time = time.monotonic()
        error_message: Optional[str] = None
        published: List[str] = []

        self.event_bus.publish(InvocationStarted(source=source))
        if self.config.debug:
            self.logger.info(f"PROCESS_START: gs://{source.bucket}/{source.name} ({source.content_type or 'no content type'})")

        try:
            self._validate(source)
            bucket = self.storage.bucket(source.bucket)
            work.paths = derive_paths(source.file_name, source.directory, self.config)
            self._download(work, bucket)
            self._process(work)
            self._verify(work)
            published = self._publish(work, bucket)
            self._finalize(work, bucket)
        except ValidationSkip as e:
            self.logger.info(f"Skipping {source.name}: {e}")
            self._transition(work, PipelineState.SKIPPED)
            self.event_bus.publish(InvocationSkipped(source=source, reason=str(e)))
        except PipelineError as e:
            error_message = f"{type(e).__name__}: {e}"
            self._fail(work, error_message, exc=None)
        except Exception as e:
            error_message = f"{type(e).__name__}: {e}"
            self._fail(work, error_message, exc=e)
        outcome = work.state

        cleaned, warnings = self._cleanup(work)

        if self.config.debug:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"PROCESS_END: {source.name} state={outcome.value} elapsed={elapsed:.2f}s")
        self.event_bus.publish(InvocationFinished(source=source, state=outcome, published=published))

        return InvocationResult(
            source_path=source.name,
            state=outcome,
            error_message=error_message,
            published=published,
            cleaned_paths=cleaned,
            cleanup_warnings=[str(w) for w in warnings],
        )

    def _transition(self, work: WorkItem, state: PipelineState) -> None:
        work.state = state
        if self.config.debug:
            self.logger.debug(f"STAGE: {work.source.name} -> {state.value}")
        self.event_bus.publish(StageChanged(source=work.source, state=state))

    def _fail(self, work: WorkItem, error_message: str, exc: Optional[BaseException]) -> None:
        failed_state = work.state
        self.logger.error(
            f"Error processing video gs://{work.source.bucket}/{work.source.name} "
            f"(after {failed_state.value}): {error_message}",
            exc_info=exc,
        )
        self._transition(work, PipelineState.FAILED)
        self.event_bus.publish(InvocationFailed(source=work.source, error_message=error_message, failed_state=failed_state))

    # -- Stages ----------------------------------------------------------

    def _validate(self, source: SourceObject) -> None:
        if not source.is_video:
            raise ValidationSkip(f"content type '{source.content_type}' is not a video")
        if not source.file_name:
            raise ValidationSkip("object has no file name")
        if not matches_intake_prefix(source.name, self.config.intake_prefix):
            raise ValidationSkip(f"outside intake prefix '{self.config.intake_prefix}'")
        if self.config.video_path is not None and not matches_video_directory(source.directory, self.config.video_path):
            raise ValidationSkip(f"directory '{source.directory}' does not match VIDEO_PATH '{self.config.video_path}'")

    def _download(self, work: WorkItem, bucket: Bucket) -> None:
        source = work.source
        scratch_root = Path(self.config.scratch_dir) if self.config.scratch_dir else None
        if scratch_root is not None:
            scratch_root.mkdir(parents=True, exist_ok=True)
        try:
            work.scratch_dir = Path(tempfile.mkdtemp(prefix="vtp-", dir=scratch_root))
            # Source lives in its own sub-directory so no output name can collide with it
            source_dir = work.scratch_dir / "source"
            source_dir.mkdir()
        except OSError as e:
            raise DownloadError(f"Could not create scratch directory: {e}") from e

        local_source = work.allocate(source_dir / source.file_name)
        work.local_source = local_source

        try:
            if self.config.stream_download:
                with bucket.open_read(source.name) as reader, open(local_source, "wb") as writer:
                    shutil.copyfileobj(reader, writer)
            else:
                bucket.download(source.name, local_source)
        except Exception as e:
            raise DownloadError(f"Failed to download gs://{source.bucket}/{source.name}: {e}") from e

        if not local_source.exists():
            raise DownloadError("Could not locate downloaded file")
        self._transition(work, PipelineState.DOWNLOADED)

    def _process(self, work: WorkItem) -> None:
        paths = work.paths
        work.local_thumbnail = work.allocate(work.scratch_dir / paths.thumbnail_file_name)

        tasks: List[Tuple[str, Callable[[], Any]]] = [("thumbnail", lambda: self._extract_thumbnail(work))]

        if requires_transcode(work.source.name, paths, self.config.force_transcode):
            target = self.ffmpeg_adapter.resolve_output_path(
                work.local_source, work.scratch_dir / paths.video_output_file_name
            )
            work.local_video = work.allocate(target)
            tasks.append(("transcode", lambda: self._transcode(work)))
        elif self.config.force_transcode:
            self.logger.info(f"Not re-encoding {work.source.name}: output would overwrite the source and re-trigger itself")
        elif self.config.debug:
            self.logger.info(f"TRANSCODE_SKIP: {work.source.file_name} is already {self.config.target_extension}")

        self._run_joined(tasks)
        self._transition(work, PipelineState.PROCESSED)

    def _extract_thumbnail(self, work: WorkItem) -> Path:
        # Explicit configuration wins over the probed geometry
        aspect_ratio = self.config.explicit_aspect_ratio
        if aspect_ratio is None:
            aspect_ratio = self.ffprobe_adapter.probe_aspect_ratio(work.local_source)
        return self.ffmpeg_adapter.extract_thumbnail(
            work.local_source,
            work.scratch_dir,
            work.paths.thumbnail_file_name,
            self.config.timestamp,
            aspect_ratio,
        )

    def _transcode(self, work: WorkItem) -> Path:
        duration = self.ffprobe_adapter.probe_duration(work.local_source)
        return self.ffmpeg_adapter.transcode(
            work.local_source,
            work.local_video,
            TranscodeOptions.from_config(self.config),
            total_duration=duration,
        )

    def _verify(self, work: WorkItem) -> None:
        if work.local_thumbnail is None or not work.local_thumbnail.exists():
            raise VerificationError("thumbnail", work.local_thumbnail)
        if work.transcode_required and not work.local_video.exists():
            raise VerificationError("converted video", work.local_video)
        self._transition(work, PipelineState.VERIFIED)

    def _publish(self, work: WorkItem, bucket: Bucket) -> List[str]:
        paths = work.paths
        tasks: List[Tuple[str, Callable[[], Any]]] = [
            ("thumbnail upload", lambda: self._upload(bucket, work.local_thumbnail, paths.thumbnail_cloud_path, self.config.image_content_type)),
        ]
        if work.transcode_required:
            tasks.append(("video upload", lambda: self._upload(bucket, work.local_video, paths.video_cloud_path, self.config.video_content_type)))
        else:
            tasks.append(("video relocation", lambda: self._relocate(bucket, work)))

        self._run_joined(tasks)

        published = [paths.thumbnail_cloud_path, paths.video_cloud_path]
        self.event_bus.publish(OutputPublished(source=work.source, cloud_path=paths.thumbnail_cloud_path, content_type=self.config.image_content_type))
        self.event_bus.publish(OutputPublished(source=work.source, cloud_path=paths.video_cloud_path, content_type=self.config.video_content_type))
        self.logger.info(f"Published {', '.join(published)} for {work.source.name}")
        self._transition(work, PipelineState.UPLOADED)
        return published

    def _access_metadata(self) -> Optional[Dict[str, str]]:
        """Private outputs get a fresh download token; public ones need none."""
        if self.config.public:
            return None
        return {DOWNLOAD_TOKEN_KEY: str(uuid.uuid4())}

    def _upload(self, bucket: Bucket, local_path: Path, destination: str, content_type: str) -> str:
        if not local_path.exists():
            raise UploadError(f"Refusing to upload missing file {local_path}")
        try:
            bucket.upload(
                local_path,
                destination,
                content_type=content_type,
                cache_control=self.config.cache_control,
                public=self.config.public,
                metadata=self._access_metadata(),
            )
        except Exception as e:
            raise UploadError(f"Failed to upload {local_path.name} to {destination}: {e}") from e
        return destination

    def _relocate(self, bucket: Bucket, work: WorkItem) -> str:
        """Publishes an already-target source by server-side copy (no re-encode)."""
        source_path = work.source.name
        destination = work.paths.video_cloud_path
        content_type = self.config.video_content_type
        try:
            if destination == source_path:
                bucket.update_metadata(
                    source_path,
                    content_type=content_type,
                    cache_control=self.config.cache_control,
                    metadata=self._access_metadata(),
                )
            else:
                bucket.copy(
                    source_path,
                    destination,
                    content_type=content_type,
                    cache_control=self.config.cache_control,
                    metadata=self._access_metadata(),
                )
            if self.config.public:
                bucket.make_public(destination)
        except Exception as e:
            raise FinalizeError(f"Failed to relocate {source_path} to {destination}: {e}") from e
        return destination

    def _finalize(self, work: WorkItem, bucket: Bucket) -> None:
        source_path = work.source.name
        if work.paths.video_cloud_path == source_path:
            self.logger.info(f"Source {source_path} is its own destination; leaving it in place")
        elif not work.transcode_required and not self.config.delete_source_after_relocate:
            self.logger.info(f"Keeping source {source_path} after relocation to {work.paths.video_cloud_path}")
        else:
            try:
                bucket.delete(source_path)
            except Exception as e:
                raise FinalizeError(f"Failed to delete source {source_path}: {e}") from e
            if self.config.debug:
                self.logger.info(f"SOURCE_DELETED: {source_path}")
        self._transition(work, PipelineState.FINALIZED)

    def _cleanup(self, work: WorkItem):
        cleaned, warnings = self.housekeeping.remove_files(work.allocated_paths)
        dir_warning = self.housekeeping.remove_scratch_dir(work.scratch_dir)
        if dir_warning is not None:
            warnings.append(dir_warning)
        for warning in warnings:
            self.event_bus.publish(CleanupFailed(path=warning.path or work.scratch_dir, error_message=str(warning), source=work.source))
        self._transition(work, PipelineState.CLEANED_UP)
        return cleaned, warnings

    # -- Concurrency -----------------------------------------------------

    def _run_joined(self, tasks: List[Tuple[str, Callable[[], Any]]]) -> Dict[str, Any]:
        """Runs tasks concurrently and waits for all of them before reacting.

        A failure never cancels a sibling. The first error (in submission
        order) is raised once every task has finished; the rest are logged.
        """
        results: Dict[str, Any] = {}
        errors: List[Tuple[str, BaseException]] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="vtp") as executor:
            futures = [(name, executor.submit(fn)) for name, fn in tasks]
            concurrent.futures.wait([f for _, f in futures], return_when=concurrent.futures.ALL_COMPLETED)

        for name, future in futures:
            exc = future.exception()
            if exc is None:
                results[name] = future.result()
            else:
                errors.append((name, exc))

        for name, exc in errors[1:]:
            self.logger.error(f"Concurrent {name} also failed: {exc}")
        if errors:
            raise errors[0][1]
        return results
