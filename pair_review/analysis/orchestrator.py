"""Run coordinator tying adapters, progress, processes and broadcasting together.

The orchestrator owns the process-wide state of the engine: one progress
aggregator, one process registry and one broadcast channel. A run is created
by ``start_run``, driven by ``run_analysis`` (or individual ``run_task``
calls) and stopped early by ``cancel``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pair_review.analysis.broadcast import BroadcastChannel
from pair_review.analysis.constants import STEP_LABELS, resolve_level
from pair_review.analysis.contracts import RunStatus, SlotStatus
from pair_review.analysis.errors import CancellationError, ProviderError
from pair_review.analysis.process_registry import ProcessRegistry
from pair_review.analysis.progress import ProgressAggregator
from pair_review.analysis.providers.base import ExecuteOptions
from pair_review.analysis.providers.registry import ProviderRegistry
from pair_review.analysis.utils.config import AnalysisSettings

logger = logging.getLogger(__name__)


@dataclass
class LevelTask:
    """One prompt to run for one level (and optionally one voice)."""

    level: Union[int, str]
    provider_id: str
    prompt: str
    model: Optional[str] = None
    voice_id: Optional[str] = None
    cwd: Optional[str] = None
    timeout_seconds: Optional[float] = None


@dataclass
class TaskOutcome:
    """What one task produced: a result, an error, or a cancellation."""

    task: LevelTask
    result: Any = None
    error: Optional[ProviderError] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled

    @property
    def parsed(self) -> bool:
        if not self.succeeded:
            return False
        return not (isinstance(self.result, dict) and self.result.get("parsed") is False)


class AnalysisOrchestrator:
    """Coordinates analysis runs across providers, levels and voices."""

    def __init__(
        self,
        settings: Optional[AnalysisSettings] = None,
        aggregator: Optional[ProgressAggregator] = None,
        broadcaster: Optional[BroadcastChannel] = None,
        process_registry: Optional[ProcessRegistry] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.settings = settings or AnalysisSettings()
        self.broadcaster = broadcaster or BroadcastChannel(self.settings.subscriber_queue_size)
        self.aggregator = aggregator or ProgressAggregator(
            self.broadcaster,
            throttle_window=self.settings.throttle_window_seconds,
            text_priority_window=self.settings.text_priority_window_seconds,
            max_finished_runs=self.settings.max_finished_runs,
        )
        self.process_registry = process_registry or ProcessRegistry()
        self.process_registry.set_status_lookup(self.aggregator.get_status)
        self._environ = environ

    def start_run(self, run_id: Optional[str] = None, skip_levels: Iterable[int] = ()) -> str:
        """Create a run and broadcast its initial state.

        Returns:
            The run id (generated when not supplied)
        """
        run_id = run_id or uuid.uuid4().hex
        self.aggregator.create_run(run_id, skip_levels=skip_levels)
        return run_id

    def _progress_text(self, task: LevelTask, adapter_name: str, model: str) -> str:
        resolved = resolve_level(task.level)
        step = resolved[1] if resolved else None
        if step in STEP_LABELS:
            return f"{STEP_LABELS[step]} with {adapter_name} ({model})..."
        return f"Running {adapter_name} ({model})..."

    def validate_task(self, task: LevelTask) -> None:
        """Check that a task can run at all, without spawning anything.

        Raises:
            ValueError: The level is not part of the level vocabulary, or the
                provider has no model to run
            KeyError: The task's provider is not registered
        """
        if resolve_level(task.level) is None:
            raise ValueError(f"Unknown level: {task.level!r}")
        ProviderRegistry.resolve_model(task.provider_id, task.model, self.settings)

    async def run_task(self, run_id: str, task: LevelTask) -> TaskOutcome:
        """Run one task and report its progress into the run.

        Provider failures are recorded on the task's slot and returned in the
        outcome rather than raised.

        Raises:
            ValueError: See ``validate_task``
            KeyError: The task's provider is not registered
        """
        self.validate_task(task)

        adapter = ProviderRegistry.create_adapter(
            task.provider_id, model=task.model, settings=self.settings, environ=self._environ
        )
        aggregator = self.aggregator
        aggregator.update_level(
            run_id,
            task.level,
            SlotStatus.RUNNING,
            self._progress_text(task, adapter.spec.name, adapter.model),
            voice_id=task.voice_id,
        )

        options = ExecuteOptions(
            cwd=task.cwd,
            timeout_seconds=task.timeout_seconds,
            level=task.level,
            run_id=run_id,
            on_stream_event=lambda event: aggregator.update_stream_event(
                run_id, task.level, event, voice_id=task.voice_id
            ),
            process_registry=self.process_registry,
        )

        try:
            result = await adapter.execute(task.prompt, options)
        except CancellationError:
            aggregator.update_level(run_id, task.level, SlotStatus.CANCELLED, "Cancelled", voice_id=task.voice_id)
            return TaskOutcome(task=task, cancelled=True)
        except ProviderError as e:
            aggregator.update_level(run_id, task.level, SlotStatus.FAILED, str(e), voice_id=task.voice_id)
            return TaskOutcome(task=task, error=e)

        outcome = TaskOutcome(task=task, result=result)
        progress = "Complete" if outcome.parsed else "Complete (unparsed response)"
        aggregator.update_level(run_id, task.level, SlotStatus.COMPLETED, progress, voice_id=task.voice_id)
        return outcome

    async def run_analysis(self, run_id: str, tasks: Sequence[LevelTask]) -> List[TaskOutcome]:
        """Run every task concurrently and finalize the run.

        Every task is validated before the first process starts. The run ends
        cancelled if it was cancelled meanwhile, failed if every task failed
        or a task raised, and completed otherwise. When a task raises, its
        siblings are cancelled and their processes terminated. The run's
        broadcast channel is closed on every exit path.
        """
        pending: List[asyncio.Future] = []
        try:
            for task in tasks:
                self.validate_task(task)
            self.aggregator.set_run_progress(run_id, f"Running {len(tasks)} reviewer task(s)...")
            pending = [asyncio.ensure_future(self.run_task(run_id, task)) for task in tasks]
            outcomes = list(await asyncio.gather(*pending))
        except asyncio.CancelledError:
            self.cancel(run_id)
            raise
        except Exception as e:
            await self._abort_tasks(run_id, pending)
            self.aggregator.complete_run(run_id, RunStatus.FAILED, error=str(e) or type(e).__name__)
            raise
        else:
            if self.aggregator.get_status(run_id) == RunStatus.CANCELLED:
                logger.info(f"Run {run_id} was cancelled")
            elif outcomes and all(outcome.error is not None for outcome in outcomes):
                errors = "; ".join(str(outcome.error) for outcome in outcomes)
                self.aggregator.complete_run(run_id, RunStatus.FAILED, error=errors)
            else:
                self.aggregator.complete_run(run_id, RunStatus.COMPLETED, progress="Analysis complete")
            return outcomes
        finally:
            self.broadcaster.close(run_id)

    async def _abort_tasks(self, run_id: str, pending: Sequence[asyncio.Future]) -> None:
        killed = self.process_registry.kill_all(run_id)
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.warning(f"Run {run_id} aborted, terminated {killed} processes")

    def cancel(self, run_id: str) -> int:
        """Cancel a run: record the status first, then signal its processes.

        Returns:
            Number of processes signalled
        """
        if not self.aggregator.cancel_run(run_id):
            logger.debug(f"Run {run_id} is not running, nothing to cancel")
        killed = self.process_registry.kill_all(run_id)
        logger.info(f"Cancelled run {run_id}, terminated {killed} processes")
        return killed
