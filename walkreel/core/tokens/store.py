"""
Continuation record store backed by DynamoDB.

Records are keyed by ``<KIND>#<output location>``. Consumption is a single
conditional ``DeleteItem`` returning the old item, so when several callback
deliveries race for the same key exactly one of them gets the record.
"""

import logging
import time
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from walkreel.config import AWS_REGION, TASK_TOKEN_TABLE, TASK_TOKEN_TTL_SECONDS
from walkreel.core.exceptions import PipelineError, StorageUnavailable
from walkreel.core.tokens.models import ContinuationRecord, JobKind, build_key

logger = logging.getLogger(__name__)

TRANSIENT_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionConflictException",
}

_dynamodb_client: Optional[Any] = None


def get_dynamodb_client():
    global _dynamodb_client
    if _dynamodb_client is None:
        session = boto3.session.Session()
        _dynamodb_client = session.client(
            "dynamodb",
            region_name=AWS_REGION,
            config=Config(retries={"mode": "standard"}),
        )
    return _dynamodb_client


class TokenStore(Protocol):
    """Durable map from (output location, job kind) to a continuation record."""

    def store(self, record: ContinuationRecord) -> ContinuationRecord:
        ...

    def peek(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        ...

    def consume(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        ...


def _to_item(record: ContinuationRecord) -> Dict[str, Dict[str, str]]:
    item = {
        "pk": {"S": record.key},
        "invocationArn": {"S": record.job_invocation_id},
        "taskToken": {"S": record.continuation_handle},
        "videoId": {"S": record.correlation_id},
        "outputS3Uri": {"S": record.output_location},
        "type": {"S": record.job_kind.value},
    }
    if record.expires_at is not None:
        item["ttl"] = {"N": str(record.expires_at)}
    return item


def _from_item(item: Dict[str, Dict[str, str]]) -> ContinuationRecord:
    ttl = item.get("ttl", {}).get("N")
    return ContinuationRecord(
        job_invocation_id=item.get("invocationArn", {}).get("S", ""),
        continuation_handle=item["taskToken"]["S"],
        correlation_id=item.get("videoId", {}).get("S", ""),
        output_location=item["outputS3Uri"]["S"],
        job_kind=item["type"]["S"],
        expires_at=int(ttl) if ttl is not None else None,
    )


def _translate(exc: Exception, operation: str, key: str) -> PipelineError:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        if code in TRANSIENT_CODES or status >= 500:
            return StorageUnavailable(f"Token {operation} failed for {key}: {code or status}")
        return PipelineError(f"Token {operation} failed for {key}: {exc}", code="TOKEN_STORE_ERROR")
    return StorageUnavailable(f"Token {operation} failed for {key}: {exc}")


class DynamoTokenStore:
    """
    TokenStore on a DynamoDB table with a string partition key ``pk``.

    The table is expected to have TTL enabled on the ``ttl`` attribute.
    Because TTL deletion is lazy, expired items are also filtered on read.
    """

    def __init__(
        self,
        table_name: str = TASK_TOKEN_TABLE,
        client: Optional[Any] = None,
        ttl_seconds: int = TASK_TOKEN_TTL_SECONDS,
    ):
        if not table_name:
            raise ValueError("TASK_TOKEN_TABLE must be configured")
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_dynamodb_client()
        return self._client

    def store(self, record: ContinuationRecord) -> ContinuationRecord:
        """Insert or overwrite the record for its key and stamp an expiry."""
        record = record.with_expiry(self.ttl_seconds)
        try:
            self.client.put_item(TableName=self.table_name, Item=_to_item(record))
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "store", record.key) from exc
        logger.info(
            f"Stored continuation {record.key} for {record.correlation_id} "
            f"(expires {record.expires_at})"
        )
        return record

    def peek(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        key = build_key(output_location, job_kind)
        try:
            response = self.client.get_item(
                TableName=self.table_name,
                Key={"pk": {"S": key}},
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "peek", key) from exc

        item = response.get("Item")
        if not item:
            return None
        record = _from_item(item)
        if record.is_expired():
            logger.debug(f"Continuation {key} has expired")
            return None
        return record

    def consume(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        """
        Atomically read and delete the record for a key.

        Returns:
            The record if this caller won it, None if there was nothing to
            claim (never stored, already consumed, or expired).
        """
        key = build_key(output_location, job_kind)
        try:
            response = self.client.delete_item(
                TableName=self.table_name,
                Key={"pk": {"S": key}},
                ConditionExpression="attribute_exists(pk)",
                ReturnValues="ALL_OLD",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.debug(f"No continuation to consume for {key}")
                return None
            raise _translate(exc, "consume", key) from exc
        except BotoCoreError as exc:
            raise _translate(exc, "consume", key) from exc

        item = response.get("Attributes")
        if not item:
            return None
        record = _from_item(item)
        if record.is_expired(time.time()):
            logger.info(f"Discarded expired continuation {key}")
            return None
        logger.info(f"Consumed continuation {key}")
        return record
