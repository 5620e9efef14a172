"""
Per-segment video transforms and concatenation via ffmpeg.
"""

import logging
from pathlib import Path
from typing import List

from walkreel.config import ENABLE_TEXT_OVERLAY, FFMPEG_PATH, FFPROBE_PATH, FONT_PATH
from walkreel.core.assembly.models import SegmentRender
from walkreel.core.assembly.overlay import build_filter
from walkreel.core.exceptions import ProcessingFailed
from walkreel.core.utils.ffmpeg import probe_duration, run_ffmpeg

logger = logging.getLogger(__name__)

VIDEO_CODEC_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-crf", "18"]
AUDIO_CODEC_ARGS = ["-c:a", "aac", "-b:a", "128k"]


def _concat_entry(path: Path) -> str:
    # concat demuxer quoting: close quote, escaped quote, reopen
    escaped = str(path.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


class VideoProcessor:
    """
    Runs the ffmpeg steps of an assembly.

    Args:
        ffmpeg_path: ffmpeg binary.
        ffprobe_path: ffprobe binary.
        font_path: Font file for label overlays.
        enable_text_overlay: When False, segments are only trimmed.
    """

    def __init__(
        self,
        ffmpeg_path: str = FFMPEG_PATH,
        ffprobe_path: str = FFPROBE_PATH,
        font_path: str = FONT_PATH,
        enable_text_overlay: bool = ENABLE_TEXT_OVERLAY,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.font_path = font_path
        self.enable_text_overlay = enable_text_overlay

    def process_segment(self, render: SegmentRender) -> Path:
        """
        Trim, label and (when narration exists) mux one segment.

        The silent clip is cut first; if an audio file is present it is
        muxed with ``-shortest`` so the narration bounds the clip length.
        A missing audio file just leaves the clip silent.
        """
        out_path = render.out_path
        silent_path = out_path.with_name(f"{out_path.stem}_video{out_path.suffix}")

        args = [
            "-ss", f"{render.start_time:.3f}",
            "-to", f"{render.end_time:.3f}",
            "-i", str(render.video_path),
        ]
        if self.enable_text_overlay:
            args.extend([
                "-vf",
                build_filter(
                    render.title,
                    self.font_path,
                    is_intro=render.is_intro,
                    agency_label=render.agency_label,
                    street_label=render.street_label,
                ),
            ])
        args.extend(["-an", *VIDEO_CODEC_ARGS, "-movflags", "+faststart", "-y", str(silent_path)])

        try:
            run_ffmpeg(args, ffmpeg_path=self.ffmpeg_path)

            if render.audio_path is not None and render.audio_path.exists():
                run_ffmpeg(
                    [
                        "-i", str(silent_path),
                        "-i", str(render.audio_path),
                        "-map", "0:v:0",
                        "-map", "1:a:0",
                        "-c:v", "copy",
                        *AUDIO_CODEC_ARGS,
                        "-shortest",
                        "-movflags", "+faststart",
                        "-y", str(out_path),
                    ],
                    ffmpeg_path=self.ffmpeg_path,
                )
                silent_path.unlink(missing_ok=True)
            else:
                if render.audio_path is not None:
                    logger.warning(
                        f"Narration for segment {render.index} is missing; keeping it silent"
                    )
                if render.pad_audio:
                    self._add_silent_track(silent_path, out_path)
                    silent_path.unlink(missing_ok=True)
                else:
                    silent_path.replace(out_path)
        except ProcessingFailed:
            silent_path.unlink(missing_ok=True)
            raise

        return out_path

    def _add_silent_track(self, video_path: Path, out_path: Path) -> None:
        run_ffmpeg(
            [
                "-i", str(video_path),
                "-f", "lavfi",
                "-i", "anullsrc=channel_layout=stereo:sample_rate=44100",
                "-map", "0:v:0",
                "-map", "1:a:0",
                "-c:v", "copy",
                *AUDIO_CODEC_ARGS,
                "-shortest",
                "-movflags", "+faststart",
                "-y", str(out_path),
            ],
            ffmpeg_path=self.ffmpeg_path,
        )

    def concatenate(self, segment_paths: List[Path], out_path: Path) -> Path:
        """
        Join segment files in the given order.

        Segments may differ in whether they carry audio, so the concat step
        re-encodes rather than stream-copying.
        """
        if not segment_paths:
            raise ProcessingFailed("No segments to concatenate")

        list_file = out_path.with_name(f"{out_path.stem}_concat.txt")
        list_file.write_text(
            "\n".join(_concat_entry(p) for p in segment_paths) + "\n",
            encoding="utf-8",
        )
        try:
            run_ffmpeg(
                [
                    "-f", "concat",
                    "-safe", "0",
                    "-i", str(list_file),
                    *VIDEO_CODEC_ARGS,
                    *AUDIO_CODEC_ARGS,
                    "-movflags", "+faststart",
                    "-y", str(out_path),
                ],
                ffmpeg_path=self.ffmpeg_path,
            )
        finally:
            list_file.unlink(missing_ok=True)
        return out_path

    def probe_duration(self, path: Path) -> float:
        return probe_duration(path, ffprobe_path=self.ffprobe_path)
