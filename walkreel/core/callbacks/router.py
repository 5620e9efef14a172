"""
Callback routing.

Matches a job completion notification to the workflow step waiting on it
and resumes that step. The flow for every notification is:

1. classify the notification into (job kind, output location)
2. consume the continuation record for that key (exactly once)
3. resolve the job output into a success or failure delivery
4. deliver it to the workflow engine

Delivery is at-least-once upstream, so a missing record just means the
notification was already handled and is not an error.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from walkreel.core.callbacks.classifier import (
    JobStatusNotification,
    Notification,
    classify,
    parse_notifications,
)
from walkreel.core.callbacks.workflow import ContinuationPort
from walkreel.core.exceptions import ClassificationMismatch, JobFailed, WorkflowError
from walkreel.core.retry import call_with_retries
from walkreel.core.storage import S3Storage
from walkreel.core.tokens.models import ContinuationRecord, JobKind
from walkreel.core.tokens.store import TokenStore

logger = logging.getLogger(__name__)


class RouteOutcome(str, Enum):
    IGNORED = "ignored"        # not a job output, or a non-terminal status
    DUPLICATE = "duplicate"    # no continuation left to claim
    SUCCEEDED = "succeeded"    # success delivered
    FAILED = "failed"          # failure delivered


@dataclass(frozen=True)
class Delivery:
    """What to send back to the workflow engine for one continuation."""

    continuation_handle: str
    succeeded: bool
    result: Any = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, record: ContinuationRecord, result: Any) -> "Delivery":
        return cls(record.continuation_handle, True, result=result)

    @classmethod
    def failure(cls, record: ContinuationRecord, message: str) -> "Delivery":
        return cls(
            record.continuation_handle,
            False,
            error_code=record.job_kind.error_code,
            message=message,
        )


def decode_payload(raw: Union[bytes, str]) -> Dict[str, Any]:
    """
    Decode a job output document.

    Jobs write either the business JSON directly or an envelope whose
    ``data`` field holds it, possibly as a JSON string.

    Raises:
        ValueError: If the document or its envelope is not a JSON object.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    parsed = json.loads(raw)
    if isinstance(parsed, dict) and parsed.get("data"):
        data = parsed["data"]
        parsed = json.loads(data) if isinstance(data, str) else data
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def segment_id(record: ContinuationRecord) -> Union[int, str]:
    value = record.correlation_id.strip()
    return int(value) if re.fullmatch(r"-?[0-9]+", value) else value


def build_result(
    record: ContinuationRecord,
    source_location: str,
    payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Shape the success payload handed back to the workflow step."""
    if record.job_kind is JobKind.EMBEDDING:
        return {
            "status": "Completed",
            "videoId": record.correlation_id,
            "outputS3Uri": source_location,
        }
    if payload is None:
        raise ValueError(f"{record.job_kind.value} result requires the job output")
    if record.job_kind is JobKind.ANALYSIS:
        return {**payload, "segmentId": segment_id(record)}
    return {
        "segmentId": segment_id(record),
        "voiceover": payload.get("voiceover", payload),
    }


class CallbackRouter:
    """
    Stateless router; safe to run any number of instances concurrently.

    Args:
        token_store: Where continuations were registered.
        storage: Used to read job outputs that need inspecting.
        continuation_port: Resumes the waiting workflow step.
    """

    def __init__(
        self,
        token_store: TokenStore,
        storage: S3Storage,
        continuation_port: ContinuationPort,
    ):
        self.token_store = token_store
        self.storage = storage
        self.continuation_port = continuation_port

    def route(self, event: Dict[str, Any]) -> List[RouteOutcome]:
        """Route every notification in a raw event."""
        try:
            notifications = parse_notifications(event)
        except ClassificationMismatch as e:
            logger.info(f"Ignoring notification: {e.message}")
            return [RouteOutcome.IGNORED]
        return [self.route_notification(n) for n in notifications]

    def route_notification(self, notification: Notification) -> RouteOutcome:
        classification = classify(notification)
        if classification is None:
            logger.debug(f"Ignoring unroutable notification {notification}")
            return RouteOutcome.IGNORED

        if isinstance(notification, JobStatusNotification) and not notification.is_failure:
            # Completion arrives through the object-write notification
            logger.debug(
                f"Ignoring {notification.status} status for {classification.output_location}"
            )
            return RouteOutcome.IGNORED

        # StorageUnavailable propagates so the notification gets redelivered
        record = self.token_store.consume(
            classification.output_location, classification.job_kind
        )
        if record is None:
            logger.info(
                f"No pending {classification.job_kind.value} continuation for "
                f"{classification.output_location}; already handled or never registered"
            )
            return RouteOutcome.DUPLICATE

        delivery = self.resolve(record, notification)
        return self.deliver(delivery)

    def resolve(self, record: ContinuationRecord, notification: Notification) -> Delivery:
        """Turn a claimed continuation into a delivery. Never raises."""
        try:
            if isinstance(notification, JobStatusNotification):
                raise JobFailed(
                    record.job_kind.value,
                    notification.message or f"Job reported status {notification.status}",
                )
            location = notification.location
            payload = None
            if record.job_kind is not JobKind.EMBEDDING:
                payload = decode_payload(call_with_retries(self.storage.get, location))
            return Delivery.success(record, build_result(record, location, payload))
        except JobFailed as e:
            logger.error(
                f"{record.job_kind.value} job for {record.correlation_id} failed: {e.message}"
            )
            return Delivery.failure(record, e.message)
        except Exception as e:
            logger.error(
                f"Could not read {record.job_kind.value} output for "
                f"{record.correlation_id}: {e}",
                exc_info=True,
            )
            return Delivery.failure(record, str(e) or e.__class__.__name__)

    def deliver(self, delivery: Delivery) -> RouteOutcome:
        """
        Send a delivery to the workflow engine.

        If a success cannot be delivered (for example, an oversized result),
        a failure is sent instead so the step is not left waiting.

        Raises:
            WorkflowError: If not even the failure could be delivered.
        """
        if delivery.succeeded:
            try:
                self.continuation_port.report_success(
                    delivery.continuation_handle, delivery.result
                )
                return RouteOutcome.SUCCEEDED
            except WorkflowError as e:
                logger.error(f"Success delivery rejected, reporting failure: {e.message}")
                self.continuation_port.report_failure(
                    delivery.continuation_handle,
                    "ResultDeliveryFailed",
                    e.message,
                )
                return RouteOutcome.FAILED

        self.continuation_port.report_failure(
            delivery.continuation_handle,
            delivery.error_code or "JobFailed",
            delivery.message or "",
        )
        return RouteOutcome.FAILED
