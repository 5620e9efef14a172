"""
Continuation records for suspended workflow steps.
"""

from walkreel.core.tokens.memory import InMemoryTokenStore
from walkreel.core.tokens.models import ContinuationRecord, JobKind, build_key
from walkreel.core.tokens.store import DynamoTokenStore, TokenStore

__all__ = [
    "ContinuationRecord",
    "DynamoTokenStore",
    "InMemoryTokenStore",
    "JobKind",
    "TokenStore",
    "build_key",
]
