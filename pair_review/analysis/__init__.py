"""Orchestration and progress tracking for external AI reviewer processes."""

# Public API
from pair_review.analysis.orchestrator import AnalysisOrchestrator, LevelTask, TaskOutcome
from pair_review.analysis.progress import ProgressAggregator
from pair_review.analysis.process_registry import ProcessRegistry
from pair_review.analysis.broadcast import BroadcastChannel, Subscription, format_sse
from pair_review.analysis.availability import AvailabilityCache
from pair_review.analysis.extraction import extract_json

# Providers
from pair_review.analysis.providers import (
    ExecuteOptions,
    ProviderAdapter,
    ProviderRegistry,
    ProviderSpec,
)

# Contracts
from pair_review.analysis.contracts import (
    AnalysisRun,
    AvailabilityStatus,
    ExtractionResult,
    LevelStatus,
    PhaseStatus,
    ProviderModel,
    ProviderOverrides,
    RunStatus,
    SlotStatus,
    StreamEvent,
    StreamEventKind,
)

# Errors
from pair_review.analysis.errors import (
    CancellationError,
    ProviderError,
    ProviderExitError,
    ProviderTimeoutError,
    SpawnNotFoundError,
)

from pair_review.analysis.utils.config import AnalysisSettings, load_settings

__all__ = [
    "AnalysisOrchestrator",
    "LevelTask",
    "TaskOutcome",
    "ProgressAggregator",
    "ProcessRegistry",
    "BroadcastChannel",
    "Subscription",
    "format_sse",
    "AvailabilityCache",
    "extract_json",
    "ExecuteOptions",
    "ProviderAdapter",
    "ProviderRegistry",
    "ProviderSpec",
    "AnalysisRun",
    "AvailabilityStatus",
    "ExtractionResult",
    "LevelStatus",
    "PhaseStatus",
    "ProviderModel",
    "ProviderOverrides",
    "RunStatus",
    "SlotStatus",
    "StreamEvent",
    "StreamEventKind",
    "CancellationError",
    "ProviderError",
    "ProviderExitError",
    "ProviderTimeoutError",
    "SpawnNotFoundError",
    "AnalysisSettings",
    "load_settings",
]
