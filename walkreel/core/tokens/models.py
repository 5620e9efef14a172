"""
Pydantic models for continuation records.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobKind(str, Enum):
    """Kinds of asynchronous external job a workflow step can wait on."""

    EMBEDDING = "embedding"
    ANALYSIS = "analysis"
    VOICEOVER = "voiceover"

    @property
    def error_code(self) -> str:
        return _ERROR_CODES[self]

    @classmethod
    def parse(cls, value: Any) -> "JobKind":
        """Accept enum values plus the model-flavoured names used by the workflow definition."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in _ALIASES:
            return _ALIASES[normalized]
        return cls(normalized)


_ERROR_CODES = {
    JobKind.EMBEDDING: "EmbeddingGenerationFailed",
    JobKind.ANALYSIS: "SegmentAnalysisFailed",
    JobKind.VOICEOVER: "VoiceoverGenerationFailed",
}

_ALIASES = {
    "marengo": JobKind.EMBEDDING,
    "pegasus-analysis": JobKind.ANALYSIS,
    "pegasus-voiceover": JobKind.VOICEOVER,
}


def build_key(output_location: str, job_kind: JobKind) -> str:
    """Storage key for a continuation: ``<KIND>#<output location>``."""
    return f"{JobKind.parse(job_kind).value.upper()}#{output_location}"


class ContinuationRecord(BaseModel):
    """A pending async job and the handle needed to resume the workflow step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_invocation_id: str = Field(..., alias="invocationArn")
    continuation_handle: str = Field(..., min_length=1, alias="taskToken")
    correlation_id: str = Field(..., alias="videoId")
    output_location: str = Field(..., min_length=1, alias="outputS3Uri")
    job_kind: JobKind = Field(..., alias="type")
    expires_at: Optional[int] = Field(default=None, alias="ttl")

    @field_validator("job_kind", mode="before")
    @classmethod
    def parse_job_kind(cls, v: Any) -> JobKind:
        return JobKind.parse(v)

    @field_validator("correlation_id", mode="before")
    @classmethod
    def stringify_correlation_id(cls, v: Any) -> str:
        return str(v)

    @property
    def key(self) -> str:
        return build_key(self.output_location, self.job_kind)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (time.time() if now is None else now)

    def with_expiry(self, ttl_seconds: int, now: Optional[float] = None) -> "ContinuationRecord":
        expires_at = int((time.time() if now is None else now) + ttl_seconds)
        return self.model_copy(update={"expires_at": expires_at})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
