"""
Workflow continuation port.

Resumes a suspended Step Functions task with either a result payload or an
error code. This module never starts or stops executions.
"""

import json
import logging
from typing import Any, Optional, Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from walkreel.config import AWS_REGION
from walkreel.core.exceptions import WorkflowError

logger = logging.getLogger(__name__)

# Step Functions caps task failure cause at 32768 characters
MAX_CAUSE_LENGTH = 32768
MAX_ERROR_LENGTH = 256

_sfn_client: Optional[Any] = None


def get_sfn_client():
    global _sfn_client
    if _sfn_client is None:
        session = boto3.session.Session()
        _sfn_client = session.client(
            "stepfunctions",
            region_name=AWS_REGION,
            config=Config(retries={"mode": "standard"}),
        )
    return _sfn_client


class ContinuationPort(Protocol):
    def report_success(self, continuation_handle: str, result: Any) -> None:
        ...

    def report_failure(self, continuation_handle: str, error_code: str, message: str) -> None:
        ...


class StepFunctionsContinuationPort:
    """ContinuationPort backed by ``SendTaskSuccess`` / ``SendTaskFailure``."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_sfn_client()
        return self._client

    def report_success(self, continuation_handle: str, result: Any) -> None:
        try:
            self.client.send_task_success(
                taskToken=continuation_handle,
                output=json.dumps(result, default=str),
            )
        except (ClientError, BotoCoreError) as exc:
            raise WorkflowError(f"Failed to send task success: {exc}") from exc
        logger.debug("Sent task success")

    def report_failure(self, continuation_handle: str, error_code: str, message: str) -> None:
        try:
            self.client.send_task_failure(
                taskToken=continuation_handle,
                error=error_code[:MAX_ERROR_LENGTH],
                cause=(message or "")[:MAX_CAUSE_LENGTH],
            )
        except (ClientError, BotoCoreError) as exc:
            raise WorkflowError(f"Failed to send task failure: {exc}") from exc
        logger.debug(f"Sent task failure {error_code}")
