"""Hierarchical progress store for analysis runs.

Adapters for several levels and voices report concurrently into one
``AnalysisRun``. Every update is applied synchronously, so no locking is
needed inside a single event loop.

Stream events pass two gates per level slot before they are broadcast:

- priority: a tool-call event within ``text_priority_window`` seconds of the
  last text delta on that slot is dropped.
- throttle: at most one stream broadcast per ``throttle_window`` seconds. An
  event inside the window is stored but not broadcast; the next broadcast
  carries it.

Plain status updates are always broadcast.

Finished runs stay queryable until more than ``max_finished_runs`` newer
runs have finished; the oldest finished run is then dropped.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from pair_review.analysis.broadcast import BroadcastChannel
from pair_review.analysis.constants import (
    LEVEL_SLOTS,
    MAX_FINISHED_RUNS,
    ORCHESTRATION_SLOT,
    TEXT_PRIORITY_WINDOW_SECONDS,
    THROTTLE_WINDOW_SECONDS,
    resolve_level,
)
from pair_review.analysis.contracts import (
    AnalysisRun,
    LevelStatus,
    PhaseStatus,
    RunStatus,
    SlotStatus,
    StreamEvent,
    StreamEventKind,
)

logger = logging.getLogger(__name__)

LevelId = Union[int, str]

_OPEN_STATUSES = (SlotStatus.PENDING, SlotStatus.RUNNING)


class ProgressAggregator:
    """Per-run status store with throttled broadcasting."""

    def __init__(
        self,
        broadcaster: Optional[BroadcastChannel] = None,
        throttle_window: float = THROTTLE_WINDOW_SECONDS,
        text_priority_window: float = TEXT_PRIORITY_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        max_finished_runs: int = MAX_FINISHED_RUNS,
    ) -> None:
        self.broadcaster = broadcaster
        self.throttle_window = throttle_window
        self.text_priority_window = text_priority_window
        self._clock = clock
        self.max_finished_runs = max_finished_runs
        self._finished: List[str] = []
        self._runs: Dict[str, AnalysisRun] = {}
        self._last_broadcast: Dict[Tuple[str, int], float] = {}
        self._last_text: Dict[Tuple[str, int], float] = {}

    def create_run(
        self,
        run_id: str,
        skip_levels: Iterable[int] = (),
        progress: str = "Starting analysis...",
    ) -> AnalysisRun:
        """Create a run with levels 1-3 running (or skipped) and level 4 pending."""
        skipped = set(skip_levels)
        levels = {}
        for slot in LEVEL_SLOTS:
            if slot in skipped:
                levels[slot] = LevelStatus(own_status=SlotStatus.SKIPPED, progress="Skipped")
            elif slot == ORCHESTRATION_SLOT:
                levels[slot] = LevelStatus(own_status=SlotStatus.PENDING, progress="Pending")
            else:
                levels[slot] = LevelStatus(own_status=SlotStatus.RUNNING, progress="Starting...")

        run = AnalysisRun(id=run_id, progress=progress, levels=levels)
        self._runs[run_id] = run
        logger.info(f"Created analysis run {run_id}")
        self._broadcast(run)
        return run

    def get_run(self, run_id: str) -> Optional[AnalysisRun]:
        return self._runs.get(run_id)

    def get_status(self, run_id: str) -> Optional[RunStatus]:
        run = self._runs.get(run_id)
        return run.status if run else None

    def remove_run(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
        self._forget_gates(run_id)
        if run_id in self._finished:
            self._finished.remove(run_id)

    def _open_run(self, run_id: str) -> Optional[AnalysisRun]:
        run = self._runs.get(run_id)
        if run is None:
            logger.debug(f"Ignoring update for unknown run {run_id}")
            return None
        if run.status.is_terminal:
            logger.debug(f"Ignoring update for finished run {run_id} ({run.status.value})")
            return None
        return run

    def _broadcast(self, run: AnalysisRun) -> None:
        if self.broadcaster is not None:
            self.broadcaster.publish(run.id, run.to_message())

    def update_level(
        self,
        run_id: str,
        level: LevelId,
        status: Union[SlotStatus, str],
        progress: str = "",
        voice_id: Optional[str] = None,
    ) -> bool:
        """Record a status change for a level, voice or consolidation step.

        Args:
            run_id: Run identifier
            level: Level id; ``consolidation-Lk`` ids update step ``Lk`` of slot 4
            status: New status
            progress: Progress text
            voice_id: Voice to update instead of the whole slot

        Returns:
            True if the update was applied and broadcast
        """
        run = self._open_run(run_id)
        resolved = resolve_level(level)
        if run is None or resolved is None:
            if resolved is None:
                logger.debug(f"Ignoring update for unknown level {level!r}")
            return False
        try:
            status = SlotStatus(status)
        except ValueError:
            logger.debug(f"Ignoring unknown status {status!r}")
            return False

        slot, step = resolved
        level_status = run.levels[slot]
        phase = PhaseStatus(status=status, progress=progress)

        if step is not None:
            level_status.steps = {**(level_status.steps or {}), step: phase}
            level_status.consolidation_step = step
            level_status.progress = progress
        elif voice_id is not None:
            level_status.voices = {**(level_status.voices or {}), voice_id: phase}
            level_status.voice_id = voice_id
            level_status.progress = progress
        else:
            level_status.own_status = status
            level_status.progress = progress
            level_status.stream_event = None
            level_status.voice_id = None

        self._broadcast(run)
        return True

    def update_stream_event(
        self,
        run_id: str,
        level: LevelId,
        event: StreamEvent,
        voice_id: Optional[str] = None,
    ) -> bool:
        """Store a stream event on a slot and broadcast it if the gates allow.

        Returns:
            True if the event was broadcast
        """
        run = self._open_run(run_id)
        resolved = resolve_level(level)
        if run is None or resolved is None:
            return False

        slot, _ = resolved
        key = (run_id, slot)
        now = self._clock()

        if event.kind == StreamEventKind.TEXT_DELTA:
            self._last_text[key] = now
        elif event.is_tool_call:
            last_text = self._last_text.get(key)
            if last_text is not None and now - last_text < self.text_priority_window:
                return False

        level_status = run.levels[slot]
        level_status.stream_event = event
        if voice_id is not None:
            level_status.voice_id = voice_id

        last = self._last_broadcast.get(key)
        if last is not None and now - last < self.throttle_window:
            return False

        self._last_broadcast[key] = now
        self._broadcast(run)
        return True

    def set_run_progress(self, run_id: str, progress: str) -> bool:
        run = self._open_run(run_id)
        if run is None:
            return False
        run.progress = progress
        self._broadcast(run)
        return True

    def complete_run(
        self,
        run_id: str,
        status: RunStatus = RunStatus.COMPLETED,
        progress: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a running run into a terminal status."""
        run = self._open_run(run_id)
        if run is None:
            return False

        run.status = RunStatus(status)
        run.progress = progress or f"Analysis {run.status.value}"
        run.error = error
        run.finished_at = datetime.now()
        logger.info(f"Run {run_id} finished: {run.status.value}")
        self._forget_gates(run_id)
        self._broadcast(run)
        self._retain_finished(run_id)
        return True

    def cancel_run(self, run_id: str) -> bool:
        """Mark a run cancelled along with every slot, voice and step still open.

        Cancellation is final: later updates to the run are ignored.
        """
        run = self._open_run(run_id)
        if run is None:
            return False

        for level_status in run.levels.values():
            if level_status.own_status in _OPEN_STATUSES:
                level_status.own_status = SlotStatus.CANCELLED
                level_status.progress = "Cancelled"
            for phases in (level_status.voices, level_status.steps):
                for name, phase in list((phases or {}).items()):
                    if phase.status in _OPEN_STATUSES:
                        phases[name] = PhaseStatus(status=SlotStatus.CANCELLED, progress="Cancelled")

        return self.complete_run(run_id, RunStatus.CANCELLED, progress="Analysis cancelled")

    def _retain_finished(self, run_id: str) -> None:
        self._finished.append(run_id)
        while len(self._finished) > self.max_finished_runs:
            evicted = self._finished.pop(0)
            self._runs.pop(evicted, None)
            logger.debug(f"Evicted finished run {evicted}")

    def _forget_gates(self, run_id: str) -> None:
        for gate in (self._last_broadcast, self._last_text):
            for key in [key for key in gate if key[0] == run_id]:
                del gate[key]
