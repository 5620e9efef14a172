"""
Execution progress reconstructed from an append-only event log.
"""

from walkreel.core.progress.events import EventType, ExecutionEvent, from_history, from_history_event
from walkreel.core.progress.history import ExecutionDescription, StepFunctionsHistory
from walkreel.core.progress.log_adapter import LogLineTranslator
from walkreel.core.progress.reconstructor import (
    MAP_STATE_TO_STEP,
    PIPELINE_STEPS,
    STATE_TO_STEPS,
    MapProgress,
    PipelineStatus,
    ProgressReconstructor,
    StepSnapshot,
    StepStatus,
    replay,
)

__all__ = [
    "EventType",
    "ExecutionDescription",
    "ExecutionEvent",
    "LogLineTranslator",
    "MAP_STATE_TO_STEP",
    "MapProgress",
    "PIPELINE_STEPS",
    "PipelineStatus",
    "ProgressReconstructor",
    "STATE_TO_STEPS",
    "StepFunctionsHistory",
    "StepSnapshot",
    "StepStatus",
    "from_history",
    "from_history_event",
    "replay",
]
