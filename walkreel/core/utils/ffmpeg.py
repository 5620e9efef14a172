"""
FFmpeg utility functions with error handling and logging.

Every external media call goes through ``run_ffmpeg`` / ``probe_duration``
so that a non-zero exit always surfaces as ``ProcessingFailed`` carrying
the captured stderr.
"""

import json
import logging
import re
import subprocess
from pathlib import Path
from typing import List, Tuple

from walkreel.config import FFMPEG_PATH, FFPROBE_PATH
from walkreel.core.exceptions import ProcessingFailed

logger = logging.getLogger(__name__)

# Patterns for known benign warnings that should be filtered
BENIGN_WARNING_PATTERNS = [
    r"\[av1 @ .*\] Your platform doesn't suppport hardware accelerated AV1 decoding",
    r"\[av1 @ .*\] Failed to get pixel format",
    r"\[.*\] .* does not support hardware acceleration",
    r"\[mp4 @ .*\] Starting second pass: moving the moov atom",
    r"Guessed Channel Layout for Input Stream",
]

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+)\.(\d+)")


def filter_benign_warnings(stderr: str) -> Tuple[str, List[str]]:
    """
    Filter out known benign warnings from FFmpeg stderr.

    Returns:
        Tuple of (filtered_stderr, filtered_warnings_list).
    """
    filtered_lines = []
    filtered_warnings = []

    for line in stderr.split("\n"):
        if any(re.search(pattern, line, re.IGNORECASE) for pattern in BENIGN_WARNING_PATTERNS):
            filtered_warnings.append(line)
        else:
            filtered_lines.append(line)

    return "\n".join(filtered_lines), filtered_warnings


def run_ffmpeg(
    args: List[str],
    ffmpeg_path: str = FFMPEG_PATH,
    log_level: str = "error",
) -> subprocess.CompletedProcess:
    """
    Run ffmpeg with the given arguments.

    ``-nostdin`` and ``-loglevel`` are prepended so ffmpeg never waits on a
    terminal and stderr only carries what matters.

    Args:
        args: FFmpeg arguments, without the binary itself.
        ffmpeg_path: Path to the ffmpeg binary.
        log_level: FFmpeg log level.

    Returns:
        CompletedProcess instance.

    Raises:
        ProcessingFailed: If ffmpeg exits non-zero or cannot be started.
    """
    cmd = [ffmpeg_path, "-nostdin", "-loglevel", log_level, *args]
    logger.debug("Running: %s", " ".join(cmd))

    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        stderr, warnings = filter_benign_warnings(e.stderr or "")
        if warnings:
            logger.debug(f"Filtered {len(warnings)} benign FFmpeg warnings")
        logger.error(f"FFmpeg failed (exit {e.returncode}): {stderr.strip()}")
        raise ProcessingFailed(
            f"ffmpeg exited with code {e.returncode}: {stderr.strip()}",
            stderr=stderr,
        ) from e
    except OSError as e:
        raise ProcessingFailed(f"ffmpeg could not be started: {e}") from e

    if result.stderr:
        result.stderr, warnings = filter_benign_warnings(result.stderr)
        if warnings:
            logger.debug(f"Filtered {len(warnings)} benign FFmpeg warnings")
    return result


def parse_duration(text: str) -> float:
    """Parse an ffmpeg ``Duration: HH:MM:SS.cc`` banner into seconds."""
    match = _DURATION_RE.search(text)
    if not match:
        raise ProcessingFailed("Could not parse duration from ffmpeg output")
    hours, minutes, seconds, fraction = match.groups()
    return (
        int(hours) * 3600
        + int(minutes) * 60
        + int(seconds)
        + int(fraction) / (10 ** len(fraction))
    )


def probe_duration(path: Path, ffprobe_path: str = FFPROBE_PATH) -> float:
    """
    Return the container duration of a media file in seconds.

    Raises:
        ProcessingFailed: If ffprobe fails or reports no duration.
    """
    cmd = [
        ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise ProcessingFailed(
            f"ffprobe exited with code {e.returncode}: {(e.stderr or '').strip()}",
            stderr=e.stderr,
        ) from e
    except OSError as e:
        raise ProcessingFailed(f"ffprobe could not be started: {e}") from e

    try:
        data = json.loads(result.stdout or "{}")
        return float(data["format"]["duration"])
    except (ValueError, KeyError, TypeError) as e:
        # Some containers only expose the banner duration
        logger.debug(f"ffprobe JSON had no duration for {path}: {e}")
        return parse_duration(result.stderr or "")
