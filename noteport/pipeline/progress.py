"""
Ordered progress events for an import run.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..config import config
from ..models import ProgressEvent, ProgressState

ProgressListener = Callable[[ProgressEvent], None]


class ProgressStream:
    """
    Emits ProgressEvent objects for a fixed sequence of stages.

    Stages start in declared order, each only after the previous one
    reached its terminal event. Within a stage, current never decreases and
    periodic events are throttled to every interval-th item plus the last
    one. Every started stage gets exactly one terminal event. Calls that
    would break these rules raise RuntimeError.
    """

    def __init__(self, stages: Sequence[str], interval: Optional[int] = None):
        """
        Args:
            stages: Stage names in the order they run
            interval: Emit a periodic event every N items (defaults to config value)
        """
        self.stages = list(stages)
        self.interval = max(1, interval or config.progress_interval)
        self.events: List[ProgressEvent] = []
        self._listeners: List[ProgressListener] = []
        self._started: List[str] = []
        self._active: Optional[str] = None
        self._totals: Dict[str, int] = {}
        self._current: Dict[str, int] = {}
        self._messages: Dict[str, str] = {}

    @property
    def active_stage(self) -> Optional[str]:
        return self._active

    def subscribe(self, listener: ProgressListener) -> None:
        """Call listener with every event emitted from now on."""
        self._listeners.append(listener)

    def _emit(self, stage: str, state: ProgressState, message: Optional[str] = None) -> ProgressEvent:
        event = ProgressEvent(
            stage=stage,
            current=self._current[stage],
            total=self._totals[stage],
            state=state,
            message=message if message is not None else self._messages.get(stage, ""),
        )
        self.events.append(event)
        logging.debug(f"Progress {event.stage} {event.state.value} {event.current}/{event.total}")
        for listener in self._listeners:
            listener(event)
        return event

    def _require_active(self, stage: str) -> None:
        if self._active != stage:
            raise RuntimeError(f"Stage '{stage}' is not running")

    def start(self, stage: str, total: int, message: str = "") -> ProgressEvent:
        """Start the next stage and emit its initial running event."""
        if self._active is not None:
            raise RuntimeError(f"Cannot start '{stage}' while '{self._active}' is running")
        if len(self._started) >= len(self.stages) or self.stages[len(self._started)] != stage:
            raise RuntimeError(f"Stage '{stage}' started out of order")
        self._started.append(stage)
        self._active = stage
        self._totals[stage] = max(0, total)
        self._current[stage] = 0
        self._messages[stage] = message
        return self._emit(stage, ProgressState.RUNNING)

    def advance(self, stage: str, current: int, message: Optional[str] = None) -> Optional[ProgressEvent]:
        """
        Record that current items of the stage are done.

        Returns the emitted event, or None when throttled.
        """
        self._require_active(stage)
        if current < self._current[stage]:
            raise RuntimeError(f"Progress of '{stage}' went backwards: {current} < {self._current[stage]}")
        if current > self._totals[stage]:
            raise RuntimeError(f"Progress of '{stage}' exceeds its total: {current} > {self._totals[stage]}")
        self._current[stage] = current
        if current == self._totals[stage] or current % self.interval == 0:
            return self._emit(stage, ProgressState.RUNNING, message)
        return None

    def finish(self, stage: str, message: Optional[str] = None) -> ProgressEvent:
        """Emit the stage's done event."""
        self._require_active(stage)
        self._current[stage] = self._totals[stage]
        self._active = None
        return self._emit(stage, ProgressState.DONE, message)

    def fail(self, message: str = "", stage: Optional[str] = None) -> ProgressEvent:
        """
        Emit the error event of the running stage.

        When no stage is running, the next pending stage is started and
        failed at once, so the failure is attributed to the stage that was
        about to run.
        """
        if stage is None:
            stage = self._active
        if stage is None:
            if len(self._started) >= len(self.stages):
                raise RuntimeError("No stage left to fail")
            self.start(self.stages[len(self._started)], total=0)
            stage = self._active
        self._require_active(stage)
        self._active = None
        return self._emit(stage, ProgressState.ERROR, message)
