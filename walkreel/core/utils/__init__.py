"""
Core utility modules for FFmpeg operations.
"""

from walkreel.core.utils.ffmpeg import (
    filter_benign_warnings,
    parse_duration,
    probe_duration,
    run_ffmpeg,
)

__all__ = ["run_ffmpeg", "filter_benign_warnings", "parse_duration", "probe_duration"]
