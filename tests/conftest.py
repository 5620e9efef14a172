"""
Shared fixtures.

AWS-backed tests run against moto; everything else uses the in-memory
fakes defined here.
"""

import os
from pathlib import Path
from typing import Dict, Optional

import boto3
import pytest

from walkreel.core.exceptions import NotFoundError
from walkreel.core.storage import parse_location

# boto3 must never see real credentials while tests run
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

REGION = "us-east-1"
TOKEN_TABLE = "walkreel-task-tokens"


class FakeStorage:
    """Dict-backed stand-in for S3Storage."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.uploads: Dict[str, bytes] = {}
        self.gets = []

    def get(self, location: str) -> bytes:
        parse_location(location)
        self.gets.append(location)
        if location not in self.objects:
            raise NotFoundError(f"get: {location} not found")
        return self.objects[location]

    def put(self, location: str, data: bytes, content_type=None) -> str:
        parse_location(location)
        self.objects[location] = data
        return location

    def head(self, location: str) -> Optional[int]:
        data = self.objects.get(location)
        return None if data is None else len(data)

    def download(self, location: str, path: Path) -> Path:
        if location not in self.objects:
            raise NotFoundError(f"download: {location} not found")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.objects[location])
        return path

    def upload(self, path: Path, location: str, content_type: str = "video/mp4") -> str:
        data = Path(path).read_bytes()
        self.objects[location] = data
        self.uploads[location] = data
        return location


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def no_sleep(monkeypatch):
    """Make retry backoff instant; returns the list of requested delays."""
    delays = []
    monkeypatch.setattr("walkreel.core.retry.time.sleep", delays.append)
    return delays


@pytest.fixture
def aws():
    mock_aws = pytest.importorskip("moto").mock_aws
    with mock_aws():
        yield


@pytest.fixture
def s3_client(aws):
    client = boto3.client("s3", region_name=REGION)
    client.create_bucket(Bucket="walkreel-test")
    return client


@pytest.fixture
def dynamodb_client(aws):
    client = boto3.client("dynamodb", region_name=REGION)
    client.create_table(
        TableName=TOKEN_TABLE,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    return client
