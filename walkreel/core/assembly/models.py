"""
Data structures for media assembly.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Segment(BaseModel):
    """One selected time range of the source video, optionally narrated."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., ge=0)
    title: str = ""
    start_time: float = Field(..., ge=0, alias="startTime")
    end_time: float = Field(..., gt=0, alias="endTime")
    narration_audio_location: Optional[str] = Field(default=None, alias="audioS3Uri")
    voiceover: Optional[Any] = None

    @model_validator(mode="after")
    def check_range(self) -> "Segment":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Segment {self.id}: start_time {self.start_time} must be before end_time {self.end_time}"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class AssemblyJob(BaseModel):
    """Everything needed to build one highlight reel."""

    model_config = ConfigDict(populate_by_name=True)

    source_video_location: str = Field(..., min_length=1, alias="videoS3Uri")
    segments: List[Segment] = Field(default_factory=list)
    output_location: str = Field(..., min_length=1, alias="outputS3Uri")
    intro_label: Optional[str] = Field(default=None, alias="agencyLabel")
    street_label: Optional[str] = Field(default=None, alias="streetLabel")


class AssemblyResult(BaseModel):
    final_location: str
    total_duration_seconds: float
    segment_count: int

    def to_dict(self) -> dict:
        return {
            "finalVideoS3Uri": self.final_location,
            "totalDuration": self.total_duration_seconds,
            "segmentCount": self.segment_count,
        }


@dataclass
class SegmentRender:
    """A single segment transform, resolved to local files."""

    index: int
    video_path: Path
    start_time: float
    end_time: float
    title: str
    out_path: Path
    audio_path: Optional[Path] = None
    is_intro: bool = False
    agency_label: Optional[str] = None
    street_label: Optional[str] = None
    # Give silent clips an empty audio track so they concat with narrated ones
    pad_audio: bool = False
