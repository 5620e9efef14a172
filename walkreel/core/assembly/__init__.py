"""
Media assembly: selected segments in, one narrated reel out.
"""

from walkreel.core.assembly.assembler import MediaAssembler, default_output_location
from walkreel.core.assembly.models import AssemblyJob, AssemblyResult, Segment, SegmentRender
from walkreel.core.assembly.overlay import build_filter, find_intro_index, sanitize_label
from walkreel.core.assembly.processor import VideoProcessor

__all__ = [
    "AssemblyJob",
    "AssemblyResult",
    "MediaAssembler",
    "Segment",
    "SegmentRender",
    "VideoProcessor",
    "build_filter",
    "default_output_location",
    "find_intro_index",
    "sanitize_label",
]
