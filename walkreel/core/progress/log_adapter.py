"""
Free-text log adapter.

Local pipeline runs only print progress markers to stdout. This adapter
translates those lines into the same ExecutionEvents the workflow engine
emits, so progress is always reconstructed from structured events.
"""

import re
from typing import Iterable, List, Optional

from walkreel.core.progress.events import EventType, ExecutionEvent

_TOTAL_SEGMENTS_RE = re.compile(r"Total segments: (\d+)")
_SELECTED_RE = re.compile(r"selected (\d+) segments")


def _event(kind: EventType, name: Optional[str] = None, count: Optional[int] = None) -> ExecutionEvent:
    return ExecutionEvent(type=kind, state_name=name, iteration_count=count)


class LogLineTranslator:
    """
    Stateful line-by-line translator.

    Each marker is translated at most once, so repeated lines (such as the
    per-job render marker) do not re-enter states.
    """

    def __init__(self):
        self._seen: set = set()

    def _once(self, marker: str) -> bool:
        if marker in self._seen:
            return False
        self._seen.add(marker)
        return True

    def translate(self, line: str) -> List[ExecutionEvent]:
        line = line.strip()
        if not line:
            return []

        if "Retrieving Marengo scene segments" in line and self._once("retrieve"):
            return [_event(EventType.STATE_ENTERED, "StartMarengoEmbedding")]

        match = _TOTAL_SEGMENTS_RE.search(line)
        if match and self._once("segments"):
            return [
                _event(EventType.STATE_EXITED, "StartMarengoEmbedding"),
                _event(EventType.STATE_ENTERED, "StoreEmbeddings"),
                _event(EventType.STATE_EXITED, "StoreEmbeddings"),
                _event(EventType.MAP_ENTERED, "AnalyzeSegmentsMap"),
                _event(EventType.MAP_STARTED, count=int(match.group(1))),
            ]

        if "[ANN]" in line:
            return [
                _event(EventType.MAP_ITERATION_STARTED),
                _event(EventType.MAP_ITERATION_SUCCEEDED),
            ]

        if "Pegasus annotated" in line and self._once("annotated"):
            return [
                _event(EventType.MAP_EXITED, "AnalyzeSegmentsMap"),
                _event(EventType.STATE_ENTERED, "SelectSegments"),
            ]

        match = _SELECTED_RE.search(line)
        if match and ("Nova selected" in line or "Gemini selected" in line) and self._once("selected"):
            return [
                _event(EventType.STATE_EXITED, "SelectSegments"),
                _event(EventType.MAP_ENTERED, "GenerateVoiceoverMap"),
                _event(EventType.MAP_STARTED, count=int(match.group(1))),
            ]

        if "[VO]" in line:
            return [
                _event(EventType.MAP_ITERATION_STARTED),
                _event(EventType.MAP_ITERATION_SUCCEEDED),
            ]

        if "Cutting segments" in line and self._once("cutting"):
            return [
                _event(EventType.MAP_EXITED, "GenerateVoiceoverMap"),
                _event(EventType.STATE_ENTERED, "SynthesizeAudio"),
            ]

        if "[JOB" in line and self._once("render"):
            return [
                _event(EventType.STATE_EXITED, "SynthesizeAudio"),
                _event(EventType.STATE_ENTERED, "ProcessVideo"),
            ]

        if "Done. Final short video:" in line and self._once("done"):
            return [_event(EventType.STATE_EXITED, "ProcessVideo")]

        return []

    def translate_all(self, lines: Iterable[str]) -> List[ExecutionEvent]:
        events: List[ExecutionEvent] = []
        for line in lines:
            events.extend(self.translate(line))
        return events
