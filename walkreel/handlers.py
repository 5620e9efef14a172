"""
Function-style entry points.

Each handler takes the raw event dict the workflow engine or the storage
notification channel delivers and returns a JSON-serialisable dict. The
handlers only wire adapters together; all behaviour lives in ``walkreel.core``.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import unquote

from walkreel.config import ASSEMBLY_MAX_WORKERS
from walkreel.core.assembly import AssemblyJob, MediaAssembler, default_output_location
from walkreel.core.callbacks import CallbackRouter, StepFunctionsContinuationPort
from walkreel.core.progress import ProgressReconstructor, StepFunctionsHistory
from walkreel.core.storage import S3Storage
from walkreel.core.tokens import ContinuationRecord, DynamoTokenStore, TokenStore

logger = logging.getLogger(__name__)


def build_router(token_store: Optional[TokenStore] = None) -> CallbackRouter:
    return CallbackRouter(
        token_store=token_store or DynamoTokenStore(),
        storage=S3Storage(),
        continuation_port=StepFunctionsContinuationPort(),
    )


def handle_storage_callback(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Resume the workflow step waiting on a finished external job.

    Duplicate and unroutable notifications succeed without effect. A
    transient token store error is raised so the notification is redelivered.
    """
    router = build_router()
    outcomes = router.route(event)
    logger.info(f"Callback outcomes: {[o.value for o in outcomes]}")
    return {"outcomes": [o.value for o in outcomes]}


def register_continuation(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Record the continuation handle of a step that just started an async job.

    Expects ``invocationArn``, ``taskToken``, ``videoId``, ``outputS3Uri``
    and ``type`` in the event.
    """
    record = ContinuationRecord.model_validate(event)
    stored = DynamoTokenStore().store(record)
    return {"key": stored.key, "expiresAt": stored.expires_at}


def get_pipeline_status(execution_arn: str) -> Dict[str, Any]:
    """
    Current progress of one pipeline execution.

    Pull-based: every call replays the full history. Callers choose their
    own polling interval.
    """
    # ARNs arrive URL-encoded from path parameters
    execution_arn = unquote(execution_arn)
    history = StepFunctionsHistory()
    execution = history.describe(execution_arn)
    events = history.events(execution_arn)
    return ProgressReconstructor().snapshot(events, execution).to_dict()


def process_video(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Assemble the final reel for one video.

    The event carries ``videoId``, ``videoS3Uri`` and ``segments`` plus the
    optional ``outputS3Uri``, ``agencyLabel`` and ``streetLabel``. Without
    an ``outputS3Uri`` the reel is written under the video's output prefix.
    """
    video_id = str(event.get("videoId", ""))
    payload = dict(event)
    if not payload.get("outputS3Uri"):
        payload["outputS3Uri"] = default_output_location(video_id)

    job = AssemblyJob.model_validate(payload)
    logger.info(f"Processing video {video_id}: {len(job.segments)} segments -> {job.output_location}")

    assembler = MediaAssembler()
    if ASSEMBLY_MAX_WORKERS > 1:
        result = asyncio.run(assembler.assemble_async(job))
    else:
        result = assembler.assemble(job)

    return {"videoId": video_id, **result.to_dict()}
