"""
Execution history port (Step Functions).
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from walkreel.core.callbacks.workflow import get_sfn_client
from walkreel.core.exceptions import NotFoundError, WorkflowError
from walkreel.core.progress.events import ExecutionEvent, from_history

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

FAILED_STATUSES = {"FAILED", "TIMED_OUT", "ABORTED"}


class ExecutionDescription(BaseModel):
    """Terminal (or current) status of one execution."""

    execution_id: str
    status: str = "RUNNING"
    output: Optional[str] = None
    error: Optional[str] = None
    cause: Optional[str] = None
    start_date: Optional[datetime] = None
    stop_date: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCEEDED"

    @property
    def failed(self) -> bool:
        return self.status in FAILED_STATUSES

    def output_json(self) -> Dict[str, Any]:
        if not self.output:
            return {}
        try:
            parsed = json.loads(self.output)
        except ValueError:
            logger.warning(f"Execution {self.execution_id} output is not JSON")
            return {}
        return parsed if isinstance(parsed, dict) else {}


class StepFunctionsHistory:
    """Reads execution status and the full event history."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_sfn_client()
        return self._client

    def describe(self, execution_arn: str) -> ExecutionDescription:
        try:
            response = self.client.describe_execution(executionArn=execution_arn)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ExecutionDoesNotExist":
                raise NotFoundError(f"Execution not found: {execution_arn}") from exc
            raise WorkflowError(f"Failed to describe execution: {exc}") from exc
        except BotoCoreError as exc:
            raise WorkflowError(f"Failed to describe execution: {exc}") from exc

        return ExecutionDescription(
            execution_id=execution_arn,
            status=response.get("status", "RUNNING"),
            output=response.get("output"),
            error=response.get("error"),
            cause=response.get("cause"),
            start_date=response.get("startDate"),
            stop_date=response.get("stopDate"),
        )

    def events(self, execution_arn: str) -> List[ExecutionEvent]:
        """Fetch every history page, oldest first, before converting."""
        raw_events: List[Dict[str, Any]] = []
        try:
            paginator = self.client.get_paginator("get_execution_history")
            for page in paginator.paginate(
                executionArn=execution_arn,
                reverseOrder=False,
                PaginationConfig={"PageSize": PAGE_SIZE},
            ):
                raw_events.extend(page.get("events", []))
        except (ClientError, BotoCoreError) as exc:
            raise WorkflowError(f"Failed to read execution history: {exc}") from exc

        logger.debug(f"Fetched {len(raw_events)} history events for {execution_arn}")
        return from_history(raw_events)
