"""
Callback correlation: async job notifications back to waiting workflow steps.
"""

from walkreel.core.callbacks.classifier import (
    Classification,
    JobStatusNotification,
    ObjectCreatedNotification,
    classify,
    classify_object_key,
    parse_notifications,
)
from walkreel.core.callbacks.router import (
    CallbackRouter,
    Delivery,
    RouteOutcome,
    build_result,
    decode_payload,
)
from walkreel.core.callbacks.workflow import ContinuationPort, StepFunctionsContinuationPort

__all__ = [
    "CallbackRouter",
    "Classification",
    "ContinuationPort",
    "Delivery",
    "JobStatusNotification",
    "ObjectCreatedNotification",
    "RouteOutcome",
    "StepFunctionsContinuationPort",
    "build_result",
    "classify",
    "classify_object_key",
    "decode_payload",
    "parse_notifications",
]
