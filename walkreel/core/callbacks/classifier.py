"""
Notification parsing and classification.

Turns raw completion notifications into typed notifications, and maps an
object path onto the job kind and output location a continuation was
registered under. Path rules are fixed:

- ``embeddings/<id>/.../output.json`` -> embedding, keyed by ``embeddings/<id>/``
- ``analysis/....json``              -> analysis, keyed by the exact path
- ``voiceover/....json``             -> voiceover, keyed by the exact path

Anything else is ignorable.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import unquote_plus

from walkreel.core.exceptions import ClassificationMismatch
from walkreel.core.storage import build_location, parse_location
from walkreel.core.tokens.models import JobKind

logger = logging.getLogger(__name__)

EMBEDDINGS_PREFIX = "embeddings/"
EMBEDDING_OUTPUT_FILENAME = "output.json"
ANALYSIS_PREFIX = "analysis/"
VOICEOVER_PREFIX = "voiceover/"
JSON_SUFFIX = ".json"
OBJECT_CREATED_DETAIL_TYPE = "Object Created"

FAILED_STATUSES = {"failed", "failure", "error", "timed_out", "aborted"}


@dataclass(frozen=True)
class ObjectCreatedNotification:
    """An object was written to storage."""

    bucket: str
    key: str

    @property
    def location(self) -> str:
        return build_location(self.bucket, self.key)


@dataclass(frozen=True)
class JobStatusNotification:
    """An async job changed status."""

    output_location: str
    status: str
    job_invocation_id: str = ""
    message: str = ""

    @property
    def is_failure(self) -> bool:
        return self.status.strip().lower() in FAILED_STATUSES


Notification = Union[ObjectCreatedNotification, JobStatusNotification]


@dataclass(frozen=True)
class Classification:
    job_kind: JobKind
    output_location: str


def classify_object_key(bucket: str, key: str) -> Optional[Classification]:
    """
    Classify a written object by its key.

    Returns:
        The classification, or None if the object is not a job output.
    """
    if key.startswith(EMBEDDINGS_PREFIX) and key.endswith("/" + EMBEDDING_OUTPUT_FILENAME):
        return _classify_embedding(bucket, key)

    if key.startswith(ANALYSIS_PREFIX) and key.endswith(JSON_SUFFIX):
        return Classification(JobKind.ANALYSIS, build_location(bucket, key))

    if key.startswith(VOICEOVER_PREFIX) and key.endswith(JSON_SUFFIX):
        return Classification(JobKind.VOICEOVER, build_location(bucket, key))

    return None


def classify_output_location(location: str) -> Optional[Classification]:
    """
    Classify the output location reported by a job status event.

    Embedding jobs report their output directory rather than the output
    file, so the filename requirement is relaxed for them.
    """
    bucket, key = parse_location(location)
    if key.startswith(EMBEDDINGS_PREFIX):
        return _classify_embedding(bucket, key)
    return classify_object_key(bucket, key)


def _classify_embedding(bucket: str, key: str) -> Optional[Classification]:
    # Continuations are keyed by the per-video directory, whatever the
    # job nests beneath it.
    video_dir = key[len(EMBEDDINGS_PREFIX):].split("/", 1)[0]
    if not video_dir:
        return None
    return Classification(
        JobKind.EMBEDDING,
        build_location(bucket, f"{EMBEDDINGS_PREFIX}{video_dir}/"),
    )


def classify(notification: Notification) -> Optional[Classification]:
    if isinstance(notification, ObjectCreatedNotification):
        return classify_object_key(notification.bucket, notification.key)
    return classify_output_location(notification.output_location)


def _decode_key(key: str) -> str:
    # S3 event keys are form-encoded
    return unquote_plus(key)


def parse_notifications(event: Dict[str, Any]) -> List[Notification]:
    """
    Extract notifications from a raw event.

    Supports EventBridge "Object Created" events, classic S3 event
    notifications (``Records``) and job status-change events.

    Raises:
        ClassificationMismatch: If the event has none of these shapes.
    """
    if not isinstance(event, dict):
        raise ClassificationMismatch(f"Unsupported notification payload: {type(event).__name__}")

    records = event.get("Records")
    if isinstance(records, list):
        notifications: List[Notification] = []
        for record in records:
            s3 = record.get("s3") if isinstance(record, dict) else None
            if not s3:
                continue
            event_name = str(record.get("eventName") or "")
            if not event_name.startswith("ObjectCreated"):
                logger.debug(f"Skipping S3 record with event {event_name!r}")
                continue
            bucket = s3.get("bucket", {}).get("name")
            key = s3.get("object", {}).get("key")
            if bucket and key:
                notifications.append(ObjectCreatedNotification(bucket, _decode_key(key)))
        return notifications

    detail = event.get("detail")
    if isinstance(detail, dict):
        bucket = (detail.get("bucket") or {}).get("name")
        key = (detail.get("object") or {}).get("key")
        if bucket and key:
            if event.get("detail-type") != OBJECT_CREATED_DETAIL_TYPE:
                logger.debug(f"Skipping {event.get('detail-type')!r} event for {key}")
                return []
            return [ObjectCreatedNotification(bucket, _decode_key(key))]

        status = detail.get("status")
        output_location = _find_output_location(detail)
        if status and output_location:
            return [
                JobStatusNotification(
                    output_location=output_location,
                    status=str(status),
                    job_invocation_id=str(detail.get("invocationArn", "")),
                    message=str(detail.get("failureMessage") or detail.get("cause") or ""),
                )
            ]

    raise ClassificationMismatch(
        f"Unrecognised notification (detail-type={event.get('detail-type')!r})"
    )


def _find_output_location(detail: Dict[str, Any]) -> Optional[str]:
    output_config = detail.get("outputDataConfig") or {}
    s3_config = output_config.get("s3OutputDataConfig") or {}
    return s3_config.get("s3Uri") or detail.get("outputS3Uri")
