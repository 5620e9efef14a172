"""
Progress reconstruction from an execution's event log.

The event log is replayed from the start on every status query; nothing
is persisted between queries. The replay tracks the most recently entered
state, the set of exited states and a stack of open map states, and
counts iterations against the innermost open map. The result is then
projected onto the fixed, human-facing pipeline steps.

The execution's terminal status always wins over the event log: a
succeeded execution shows every step complete even if the log is partial.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from walkreel.core.progress.events import EventType, ExecutionEvent
from walkreel.core.progress.history import ExecutionDescription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineStep:
    id: str
    name: str


PIPELINE_STEPS: Tuple[PipelineStep, ...] = (
    PipelineStep("retrieve", "Retrieve scene segments"),
    PipelineStep("annotate", "Annotate segments"),
    PipelineStep("filter", "Filter candidates"),
    PipelineStep("select", "Select segments"),
    PipelineStep("voiceover", "Generate voiceover scripts"),
    PipelineStep("audio", "Synthesize audio"),
    PipelineStep("render", "Process & render video"),
)

# Engine state -> displayed steps. One state may back several steps.
STATE_TO_STEPS: Dict[str, Tuple[str, ...]] = {
    "StartMarengoEmbedding": ("retrieve",),
    "StoreEmbeddings": ("retrieve",),
    "AnalyzeSegmentsMap": ("annotate",),
    "SelectSegments": ("filter", "select"),
    "GenerateVoiceoverMap": ("voiceover",),
    "SynthesizeAudio": ("audio",),
    "ProcessVideo": ("render",),
}

MAP_STATE_TO_STEP: Dict[str, str] = {
    "AnalyzeSegmentsMap": "annotate",
    "GenerateVoiceoverMap": "voiceover",
}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MapProgress(_Schema):
    total: int
    succeeded: int
    in_progress: int
    queued: int
    failed: int


class StepSnapshot(_Schema):
    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    detail: Optional[str] = None
    map_progress: Optional[MapProgress] = None


class PipelineStatus(_Schema):
    execution_id: str
    status: str
    steps: List[StepSnapshot]
    output_location: Optional[str] = None
    error: Optional[str] = None
    start_date: Optional[str] = None
    stop_date: Optional[str] = None


@dataclass
class MapCounters:
    total: int = 0
    started: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def in_progress(self) -> int:
        return self.started - self.succeeded - self.failed

    @property
    def queued(self) -> int:
        return self.total - self.started

    def to_progress(self) -> MapProgress:
        return MapProgress(
            total=self.total,
            succeeded=self.succeeded,
            in_progress=self.in_progress,
            queued=self.queued,
            failed=self.failed,
        )


@dataclass
class ReplayState:
    current_state: Optional[str] = None
    completed_states: Set[str] = field(default_factory=set)
    open_maps: List[str] = field(default_factory=list)
    maps: Dict[str, MapCounters] = field(default_factory=dict)

    def innermost_map(self) -> Optional[MapCounters]:
        if not self.open_maps:
            return None
        return self.maps[self.open_maps[-1]]


def replay(events: Iterable[ExecutionEvent]) -> ReplayState:
    """
    Replay a complete, ordered event log.

    The caller must have drained every page of the history; a partial or
    reordered list breaks the map-state stack.
    """
    state = ReplayState()

    for event in events:
        kind = event.type
        name = event.state_name

        if kind is EventType.STATE_ENTERED:
            if name:
                state.current_state = name

        elif kind is EventType.MAP_ENTERED:
            if name:
                state.current_state = name
                state.open_maps.append(name)
                state.maps.setdefault(name, MapCounters())

        elif kind is EventType.STATE_EXITED:
            if name:
                state.completed_states.add(name)

        elif kind is EventType.MAP_EXITED:
            if name:
                state.completed_states.add(name)
            if state.open_maps:
                state.open_maps.pop()
            else:
                logger.debug(f"map-exited for {name} with no open map")

        elif kind is EventType.MAP_STARTED:
            counters = state.innermost_map()
            if counters is not None and event.iteration_count is not None:
                counters.total = event.iteration_count

        elif kind in (
            EventType.MAP_ITERATION_STARTED,
            EventType.MAP_ITERATION_SUCCEEDED,
            EventType.MAP_ITERATION_FAILED,
        ):
            counters = state.innermost_map()
            if counters is None:
                continue
            if kind is EventType.MAP_ITERATION_STARTED:
                counters.started += 1
            elif kind is EventType.MAP_ITERATION_SUCCEEDED:
                counters.succeeded += 1
            else:
                counters.failed += 1

    return state


class ProgressReconstructor:
    """Projects a replayed event log onto displayed pipeline steps."""

    def __init__(
        self,
        steps: Sequence[PipelineStep] = PIPELINE_STEPS,
        state_to_steps: Mapping[str, Sequence[str]] = STATE_TO_STEPS,
        map_state_to_step: Mapping[str, str] = MAP_STATE_TO_STEP,
    ):
        self.steps = tuple(steps)
        self.state_to_steps = dict(state_to_steps)
        self.map_state_to_step = dict(map_state_to_step)

        self._backing: Dict[str, List[str]] = {step.id: [] for step in self.steps}
        for state_name, step_ids in self.state_to_steps.items():
            for step_id in step_ids:
                self._backing.setdefault(step_id, []).append(state_name)

    def active_state(self, state: ReplayState) -> Optional[str]:
        """
        The mapped state the execution is currently in.

        States entered inside a map iteration are not in the table, so the
        innermost open map stands in for them.
        """
        if state.current_state in self.state_to_steps:
            return state.current_state
        for map_name in reversed(state.open_maps):
            if map_name in self.state_to_steps:
                return map_name
        return None

    def step_statuses(self, state: ReplayState) -> List[StepSnapshot]:
        active = self.active_state(state)
        snapshots = []
        for step in self.steps:
            backing = self._backing.get(step.id, [])
            status = StepStatus.PENDING
            if backing and all(s in state.completed_states for s in backing):
                status = StepStatus.COMPLETE
            elif active is not None and active in backing:
                status = StepStatus.RUNNING
            snapshots.append(StepSnapshot(id=step.id, name=step.name, status=status))

        by_id = {s.id: s for s in snapshots}
        for map_state, step_id in self.map_state_to_step.items():
            counters = state.maps.get(map_state)
            snapshot = by_id.get(step_id)
            if counters is None or snapshot is None or counters.total <= 0:
                continue
            snapshot.map_progress = counters.to_progress()
            snapshot.progress = min(100, round(counters.succeeded / counters.total * 100))
            if map_state in state.completed_states:
                snapshot.status = StepStatus.COMPLETE
                snapshot.detail = f"{counters.succeeded}/{counters.total} complete"
            elif counters.started > 0:
                snapshot.status = StepStatus.RUNNING
                snapshot.detail = (
                    f"{counters.succeeded} done, {counters.in_progress} running, "
                    f"{counters.queued} queued"
                )
                if counters.failed > 0:
                    snapshot.detail += f", {counters.failed} failed"
        return snapshots

    def snapshot(
        self,
        events: Iterable[ExecutionEvent],
        execution: ExecutionDescription,
    ) -> PipelineStatus:
        """Build the current status view of one execution."""
        state = replay(events)
        steps = self.step_statuses(state)

        overall = "running"
        output_location = None
        error = None

        if execution.succeeded:
            overall = "complete"
            for step in steps:
                step.status = StepStatus.COMPLETE
            output_location = execution.output_json().get("finalVideoS3Uri")
        elif execution.failed:
            overall = "error"
            error = execution.error or execution.cause or "Pipeline failed"
            active = self.active_state(state)
            failed_ids = set(self.state_to_steps.get(active, ())) if active else set()
            for step in steps:
                if step.id in failed_ids:
                    step.status = StepStatus.ERROR
                    if execution.cause:
                        step.detail = execution.cause

        return PipelineStatus(
            execution_id=execution.execution_id,
            status=overall,
            steps=steps,
            output_location=output_location,
            error=error,
            start_date=execution.start_date.isoformat() if execution.start_date else None,
            stop_date=execution.stop_date.isoformat() if execution.stop_date else None,
        )
