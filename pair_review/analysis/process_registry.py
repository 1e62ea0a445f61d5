"""Tracking and mass termination of reviewer subprocesses per run."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from pair_review.analysis.contracts import RunStatus

logger = logging.getLogger(__name__)

StatusLookup = Callable[[str], Optional[RunStatus]]


class ProcessRegistry:
    """Live reviewer processes keyed by run id.

    A handle is anything exposing ``terminate()``, ``wait()`` (awaitable) and
    ``returncode``, which ``asyncio.subprocess.Process`` does. Each registered
    handle gets a watcher task that removes it once the process exits; a
    run's entry is deleted as soon as its last handle is gone.
    """

    def __init__(self, status_lookup: Optional[StatusLookup] = None) -> None:
        self._processes: Dict[str, Set[Any]] = {}
        self._watchers: Dict[Any, asyncio.Task] = {}
        self._status_lookup = status_lookup

    def set_status_lookup(self, status_lookup: Optional[StatusLookup]) -> None:
        self._status_lookup = status_lookup

    def register(self, run_id: str, process: Any) -> None:
        """Track a process under a run until it exits.

        Must be called from inside the event loop, right after spawning and
        before any output is read.
        """
        if process.returncode is not None:
            logger.debug(f"Process {getattr(process, 'pid', '?')} already exited, not registering")
            return

        self._processes.setdefault(run_id, set()).add(process)
        self._watchers[process] = asyncio.get_running_loop().create_task(
            self._watch(run_id, process)
        )
        logger.debug(f"Registered process {getattr(process, 'pid', '?')} for run {run_id}")

    async def _watch(self, run_id: str, process: Any) -> None:
        try:
            await process.wait()
        finally:
            self._discard(run_id, process)

    def _discard(self, run_id: str, process: Any) -> None:
        self._watchers.pop(process, None)
        handles = self._processes.get(run_id)
        if handles is None:
            return
        handles.discard(process)
        if not handles:
            del self._processes[run_id]

    def kill_all(self, run_id: str) -> int:
        """Send SIGTERM to every process of a run.

        Processes that already exited are skipped silently. The run's entry is
        removed regardless, so a second call returns 0.

        Returns:
            Number of processes that were signalled
        """
        handles = self._processes.pop(run_id, set())
        killed = 0
        for process in handles:
            try:
                process.terminate()
                killed += 1
            except (ProcessLookupError, OSError) as e:
                logger.debug(f"Process {getattr(process, 'pid', '?')} already gone: {e}")

        if handles:
            logger.info(f"Sent termination to {killed}/{len(handles)} processes of run {run_id}")
        return killed

    def is_cancelled(self, run_id: Optional[str]) -> bool:
        if not run_id or self._status_lookup is None:
            return False
        return self._status_lookup(run_id) == RunStatus.CANCELLED

    def live_count(self, run_id: str) -> int:
        return len(self._processes.get(run_id, ()))

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._processes
