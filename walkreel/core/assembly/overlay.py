"""
Label overlays: intro detection, text sanitising and drawtext filters.
"""

import re
from typing import Optional, Sequence

from walkreel.core.assembly.models import Segment

INTRO_PATTERNS = [
    re.compile(r"exterior", re.IGNORECASE),
    re.compile(r"front", re.IGNORECASE),
    re.compile(r"outdoor", re.IGNORECASE),
]


def find_intro_index(segments: Sequence[Segment]) -> int:
    """Index of the first exterior-looking segment, or 0 if there is none."""
    for index, segment in enumerate(segments):
        if any(pattern.search(segment.title) for pattern in INTRO_PATTERNS):
            return index
    return 0


def sanitize_label(text: str) -> str:
    """Drop characters that would terminate or split a drawtext value."""
    return (
        text.replace("'", "")
        .replace('"', "")
        .replace("\\", "")
        .replace(":", "-")
        .strip()
    )


def build_filter(
    title: str,
    font_path: str,
    is_intro: bool = False,
    agency_label: Optional[str] = None,
    street_label: Optional[str] = None,
) -> str:
    """
    Build the ``-vf`` filter chain for a segment.

    Every segment gets its title, uppercased, on a dark band bottom-right.
    The intro segment also gets the agency and street labels centred near
    the top, when both are given.
    """
    room = sanitize_label(title).upper()
    room_filter = (
        "drawbox=x=w-iw:y=h-200:w=iw:h=200:color=black@0.75:t=fill,"
        f"drawtext=fontfile={font_path}:text='{room}'"
        ":x=w-text_w-50:y=h-text_h-50:fontsize=140:fontcolor=white"
        ":bordercolor=black:borderw=8:shadowx=5:shadowy=5"
    )

    if is_intro and agency_label and street_label:
        agency = sanitize_label(agency_label)
        street = sanitize_label(street_label)
        agency_filter = (
            f"drawtext=fontfile={font_path}:text='{agency}'"
            ":x=(w-text_w)/2:y=h*0.15-60:fontsize=64:fontcolor=white"
            ":bordercolor=black:borderw=5:shadowx=3:shadowy=3"
        )
        street_filter = (
            f"drawtext=fontfile={font_path}:text='{street}'"
            ":x=(w-text_w)/2:y=h*0.15:fontsize=48:fontcolor=white"
            ":bordercolor=black:borderw=4:shadowx=3:shadowy=3"
        )
        return f"{agency_filter},{street_filter},{room_filter}"

    return room_filter
