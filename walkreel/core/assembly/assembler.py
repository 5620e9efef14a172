"""
Media assembly: turn a selected list of segments into one uploaded reel.

Flow for a single job:
1. Download the source video once into a private scratch directory
2. Fetch each segment's narration (missing narration means a silent segment)
3. Cut, label and mux every segment
4. Concatenate in the original segment order
5. Probe the result, then upload it to the output location

The scratch directory is removed on every exit path.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from walkreel.config import ASSEMBLY_MAX_WORKERS, S3_BUCKET_NAME, SCRATCH_DIR
from walkreel.core.assembly.models import AssemblyJob, AssemblyResult, SegmentRender
from walkreel.core.assembly.overlay import find_intro_index
from walkreel.core.assembly.processor import VideoProcessor
from walkreel.core.exceptions import (
    NoSegmentsError,
    NotFoundError,
    ProcessingFailed,
)
from walkreel.core.retry import call_with_retries
from walkreel.core.storage import S3Storage, build_location

logger = logging.getLogger(__name__)


def default_output_location(video_id: str, bucket: Optional[str] = None) -> str:
    """Where a reel goes when the caller does not name a location."""
    bucket = bucket or S3_BUCKET_NAME
    if not bucket:
        raise ValueError("S3_BUCKET_NAME is not configured and no output location was given")
    return build_location(bucket, f"{video_id}/output/final.mp4")


class MediaAssembler:
    """
    Builds one highlight reel per call.

    Args:
        storage: Object storage used for the source, narration and output.
        processor: ffmpeg wrapper doing the per-segment work.
        scratch_root: Parent directory for per-job scratch directories.
        max_workers: Concurrent segment transforms for ``assemble_async``.
    """

    def __init__(
        self,
        storage: Optional[S3Storage] = None,
        processor: Optional[VideoProcessor] = None,
        scratch_root: Path = SCRATCH_DIR,
        max_workers: int = ASSEMBLY_MAX_WORKERS,
    ):
        self.storage = storage or S3Storage()
        self.processor = processor or VideoProcessor()
        self.scratch_root = Path(scratch_root)
        self.max_workers = max(1, max_workers)

    def assemble(self, job: AssemblyJob) -> AssemblyResult:
        """Assemble sequentially. Any failure aborts the job with nothing uploaded."""
        if not job.segments:
            raise NoSegmentsError("No segments to process")

        scratch = self._make_scratch()
        try:
            renders = self._prepare(job, scratch)
            outputs = [self._process(render) for render in renders]
            return self._finish(job, outputs, scratch)
        finally:
            self._cleanup(scratch)

    async def assemble_async(self, job: AssemblyJob) -> AssemblyResult:
        """
        Assemble with up to ``max_workers`` segment transforms in flight.

        Outputs are joined in segment order regardless of completion order.
        When a transform fails, the remaining ones still run to completion
        before the scratch directory is removed and the first failure raised.
        On cancellation, transforms not yet started are dropped and the ones
        already running in threads are awaited before cleanup.
        """
        if not job.segments:
            raise NoSegmentsError("No segments to process")

        scratch = self._make_scratch()
        in_flight: List[asyncio.Future] = []

        async def _offload(fn, *args):
            # Shielded so cancelling the caller never abandons a running thread
            future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
            in_flight.append(future)
            return await asyncio.shield(future)

        try:
            renders = await _offload(self._prepare, job, scratch)
            semaphore = asyncio.Semaphore(self.max_workers)

            async def _run(render: SegmentRender) -> Path:
                async with semaphore:
                    return await _offload(self._process, render)

            results = await asyncio.gather(
                *[_run(render) for render in renders],
                return_exceptions=True,
            )
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                logger.error(f"{len(failures)} of {len(renders)} segments failed")
                raise failures[0]

            return await _offload(self._finish, job, list(results), scratch)
        except asyncio.CancelledError:
            running = [f for f in in_flight if not f.done()]
            logger.warning(
                f"Assembly of {job.output_location} cancelled, "
                f"waiting for {len(running)} running steps"
            )
            await asyncio.gather(*running, return_exceptions=True)
            raise
        finally:
            self._cleanup(scratch)

    def _make_scratch(self) -> Path:
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix="walkreel-assembly-", dir=self.scratch_root))
        logger.debug(f"Created scratch directory {scratch}")
        return scratch

    def _cleanup(self, scratch: Path) -> None:
        try:
            shutil.rmtree(scratch)
            logger.debug(f"Removed scratch directory {scratch}")
        except OSError as e:
            logger.warning(f"Failed to remove scratch directory {scratch}: {e}")

    def _prepare(self, job: AssemblyJob, scratch: Path) -> List[SegmentRender]:
        source = scratch / "source.mp4"
        logger.info(f"Downloading source video {job.source_video_location}")
        call_with_retries(self.storage.download, job.source_video_location, source)

        intro_index = find_intro_index(job.segments)
        has_narration = any(s.narration_audio_location for s in job.segments)
        logger.info(
            f"Assembling {len(job.segments)} segments, intro at position {intro_index}"
        )

        renders = []
        for index, segment in enumerate(job.segments):
            audio_path = None
            if segment.narration_audio_location:
                audio_path = self._fetch_narration(
                    segment.narration_audio_location, scratch / f"audio_{index}.mp3"
                )
            renders.append(
                SegmentRender(
                    index=index,
                    video_path=source,
                    start_time=segment.start_time,
                    end_time=segment.end_time,
                    title=segment.title,
                    out_path=scratch / f"segment_{index}.mp4",
                    audio_path=audio_path,
                    is_intro=index == intro_index,
                    agency_label=job.intro_label,
                    street_label=job.street_label,
                    pad_audio=has_narration,
                )
            )
        return renders

    def _fetch_narration(self, location: str, path: Path) -> Optional[Path]:
        try:
            return call_with_retries(self.storage.download, location, path)
        except NotFoundError:
            logger.warning(f"Narration {location} not found; segment will be silent")
            return None

    def _process(self, render: SegmentRender) -> Path:
        logger.info(f"Processing segment {render.index}: {render.title!r}")
        try:
            return self.processor.process_segment(render)
        except ProcessingFailed as e:
            raise ProcessingFailed(
                f"Segment {render.index} failed: {e.message}", stderr=e.stderr
            ) from e
        except OSError as e:
            raise ProcessingFailed(f"Segment {render.index} failed: {e}") from e

    def _finish(self, job: AssemblyJob, outputs: Sequence[Path], scratch: Path) -> AssemblyResult:
        final = scratch / "final.mp4"
        self.processor.concatenate(list(outputs), final)
        duration = self.processor.probe_duration(final)

        call_with_retries(
            self.storage.upload, final, job.output_location, content_type="video/mp4"
        )
        logger.info(
            f"Uploaded {job.output_location} ({len(outputs)} segments, {duration:.1f}s)"
        )
        return AssemblyResult(
            final_location=job.output_location,
            total_duration_seconds=duration,
            segment_count=len(outputs),
        )
