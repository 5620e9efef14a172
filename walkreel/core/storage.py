"""
Object storage access (S3).

Locations are addressed as ``s3://bucket/key`` strings everywhere in the
pipeline; this module is the only place that splits them.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional, Tuple

import boto3
from boto3.exceptions import Boto3Error
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from walkreel.config import AWS_REGION
from walkreel.core.exceptions import (
    InvalidLocationFormat,
    NotFoundError,
    PipelineError,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)

_S3_URI_RE = re.compile(r"^s3://([^/]+)/(.+)$")

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404", "NoSuchBucket"}
TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
}

_s3_client: Optional[Any] = None


def get_s3_client():
    global _s3_client
    if _s3_client is None:
        session = boto3.session.Session()
        _s3_client = session.client(
            "s3",
            region_name=AWS_REGION,
            config=Config(signature_version="s3v4", retries={"mode": "standard"}),
        )
    return _s3_client


def parse_location(location: str) -> Tuple[str, str]:
    """
    Split an ``s3://bucket/key`` location into bucket and key.

    Raises:
        InvalidLocationFormat: If the location is not a valid S3 URI.
    """
    if not isinstance(location, str):
        raise InvalidLocationFormat(f"Invalid S3 URI: {location!r}")
    match = _S3_URI_RE.match(location)
    if not match:
        raise InvalidLocationFormat(f"Invalid S3 URI: {location}")
    return match.group(1), match.group(2)


def build_location(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"


def translate_client_error(exc: Exception, operation: str, target: str) -> PipelineError:
    """Map a botocore error onto the pipeline error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        if code in NOT_FOUND_CODES or status == 404:
            return NotFoundError(f"{operation}: {target} not found")
        if code in TRANSIENT_CODES or status >= 500:
            return StorageUnavailable(f"{operation} failed for {target}: {code or status}")
        return PipelineError(f"{operation} failed for {target}: {exc}", code="STORAGE_ERROR")
    # Connection, endpoint and credential-refresh errors
    return StorageUnavailable(f"{operation} failed for {target}: {exc}")


class S3Storage:
    """
    Object/blob storage port backed by S3.

    Every method takes a full ``s3://`` location. Missing objects raise
    ``NotFoundError``; unreachable storage raises ``StorageUnavailable``.
    """

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def get(self, location: str) -> bytes:
        bucket, key = parse_location(location)
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
            return obj["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, "get", location) from exc

    def put(
        self,
        location: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        bucket, key = parse_location(location)
        params = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, "put", location) from exc
        return location

    def head(self, location: str) -> Optional[int]:
        """Return the object size in bytes, or None if it does not exist."""
        bucket, key = parse_location(location)
        try:
            response = self.client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            error = translate_client_error(exc, "head", location)
            if isinstance(error, NotFoundError):
                return None
            raise error from exc
        return int(response.get("ContentLength", 0))

    def download(self, location: str, path: Path) -> Path:
        bucket, key = parse_location(location)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.client.download_file(bucket, key, str(path))
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise translate_client_error(exc, "download", location) from exc
        logger.debug(f"Downloaded {location} to {path}")
        return path

    def upload(self, path: Path, location: str, content_type: str = "video/mp4") -> str:
        bucket, key = parse_location(location)
        try:
            self.client.upload_file(
                str(path), bucket, key, ExtraArgs={"ContentType": content_type}
            )
        except (ClientError, BotoCoreError, Boto3Error) as exc:
            raise translate_client_error(exc, "upload", location) from exc
        logger.info(f"Uploaded {Path(path).name} to {location}")
        return location
