"""
In-process continuation store.

Only valid when every producer and consumer of continuations lives in one
process (local runs, tests). Multi-process deployments need DynamoTokenStore.
"""

import logging
import time
from threading import Lock
from typing import Callable, Dict, Optional

from walkreel.config import TASK_TOKEN_TTL_SECONDS
from walkreel.core.tokens.models import ContinuationRecord, JobKind, build_key

logger = logging.getLogger(__name__)


class InMemoryTokenStore:
    """Thread-safe TTL map of continuation records."""

    def __init__(
        self,
        ttl_seconds: int = TASK_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._records: Dict[str, ContinuationRecord] = {}
        self._lock = Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def store(self, record: ContinuationRecord) -> ContinuationRecord:
        record = record.with_expiry(self._ttl_seconds, now=self._clock())
        with self._lock:
            self._records[record.key] = record
        logger.debug(f"Stored continuation {record.key}")
        return record

    def peek(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        key = build_key(output_location, job_kind)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                # Expired, remove it
                del self._records[key]
                return None
            return record

    def consume(self, output_location: str, job_kind: JobKind) -> Optional[ContinuationRecord]:
        key = build_key(output_location, job_kind)
        with self._lock:
            record = self._records.pop(key, None)
        if record is None or record.is_expired(self._clock()):
            return None
        logger.debug(f"Consumed continuation {key}")
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
