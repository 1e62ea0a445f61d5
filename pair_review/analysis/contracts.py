"""Pydantic contracts for analysis runs, stream events and provider metadata."""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

import pydantic as pd

from pair_review.analysis.constants import LEVEL_SLOTS


class RunStatus(str, Enum):
    """Overall status of an analysis run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class SlotStatus(str, Enum):
    """Status of a level slot, a voice or a consolidation step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class StreamEventKind(str, Enum):
    """Canonical, provider-agnostic stream event kinds."""

    TEXT_DELTA = "text_delta"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_END = "tool_call_end"
    TURN_SUMMARY = "turn_summary"


class StreamEvent(pd.BaseModel):
    """One normalized progress event from a reviewer process."""

    kind: StreamEventKind
    text: str = ""
    tool_name: Optional[str] = pd.Field(default=None, serialization_alias="toolName")
    correlation_id: Optional[str] = pd.Field(default=None, serialization_alias="correlationId")
    timestamp: float = pd.Field(default_factory=time.time)

    model_config = pd.ConfigDict(extra="forbid", populate_by_name=True)

    @property
    def is_tool_call(self) -> bool:
        return self.kind in (StreamEventKind.TOOL_CALL_START, StreamEventKind.TOOL_CALL_END)


def aggregate_status(statuses: List[SlotStatus]) -> SlotStatus:
    """Derive one status from the statuses of voices or consolidation steps.

    failed beats running, running beats everything else, and completed is
    only reported once every entry has finished.
    """
    if not statuses:
        return SlotStatus.PENDING
    if SlotStatus.FAILED in statuses:
        return SlotStatus.FAILED
    if SlotStatus.RUNNING in statuses:
        return SlotStatus.RUNNING

    finished = (SlotStatus.COMPLETED, SlotStatus.SKIPPED)
    if all(s in finished for s in statuses):
        if SlotStatus.COMPLETED in statuses:
            return SlotStatus.COMPLETED
        return SlotStatus.SKIPPED
    if SlotStatus.CANCELLED in statuses:
        return SlotStatus.CANCELLED
    if SlotStatus.COMPLETED in statuses:
        return SlotStatus.RUNNING
    return SlotStatus.PENDING


class PhaseStatus(pd.BaseModel):
    """Status of a single voice or consolidation step."""

    status: SlotStatus
    progress: str = ""

    model_config = pd.ConfigDict(extra="forbid")


class LevelStatus(pd.BaseModel):
    """Status of one of the four level slots of a run."""

    own_status: SlotStatus = pd.Field(default=SlotStatus.PENDING, exclude=True)
    progress: str = "Pending"
    stream_event: Optional[StreamEvent] = pd.Field(
        default=None, serialization_alias="streamEvent"
    )
    voice_id: Optional[str] = pd.Field(default=None, serialization_alias="voiceId")
    voices: Optional[Dict[str, PhaseStatus]] = None
    consolidation_step: Optional[str] = pd.Field(
        default=None, serialization_alias="consolidationStep"
    )
    steps: Optional[Dict[str, PhaseStatus]] = None

    model_config = pd.ConfigDict(extra="forbid", populate_by_name=True)

    @pd.computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> SlotStatus:
        if self.steps:
            return aggregate_status([s.status for s in self.steps.values()])
        if self.voices:
            return aggregate_status([v.status for v in self.voices.values()])
        return self.own_status


class AnalysisRun(pd.BaseModel):
    """Hierarchical status of one analysis run."""

    id: str
    status: RunStatus = RunStatus.RUNNING
    progress: str = "Starting analysis..."
    levels: Dict[int, LevelStatus] = pd.Field(
        default_factory=lambda: {slot: LevelStatus() for slot in LEVEL_SLOTS}
    )
    started_at: datetime = pd.Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    model_config = pd.ConfigDict(extra="forbid")

    def to_message(self) -> Dict[str, Any]:
        """Render the run as a progress broadcast message."""
        return {
            "type": "progress",
            "status": self.status.value,
            "progress": self.progress,
            "levels": {
                str(slot): level.model_dump(mode="json", by_alias=True, exclude_none=True)
                for slot, level in sorted(self.levels.items())
            },
        }


class ExtractionResult(pd.BaseModel):
    """Outcome of recovering a JSON payload from free-form text."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    preview: Optional[str] = None
    strategy: Optional[str] = None

    model_config = pd.ConfigDict(extra="forbid")


ModelTier = Literal["fast", "balanced", "thorough"]


class ProviderModel(pd.BaseModel):
    """A model offered by a reviewer program, mapped onto a tier."""

    id: str
    tier: ModelTier
    name: str = ""
    description: str = ""
    default: bool = False
    extra_args: List[str] = pd.Field(default_factory=list)
    env: Dict[str, str] = pd.Field(default_factory=dict)

    model_config = pd.ConfigDict(extra="ignore")


class ProviderOverrides(pd.BaseModel):
    """User configuration for one provider."""

    command: Optional[str] = None
    install_instructions: Optional[str] = None
    extra_args: List[str] = pd.Field(default_factory=list)
    env: Dict[str, str] = pd.Field(default_factory=dict)
    models: List[Dict[str, Any]] = pd.Field(default_factory=list)
    shell: bool = False

    model_config = pd.ConfigDict(extra="ignore")


class AvailabilityStatus(pd.BaseModel):
    """Cached result of probing a provider's CLI."""

    available: bool
    error: Optional[str] = None
    install_instructions: Optional[str] = None
    checked_at: datetime = pd.Field(default_factory=datetime.now)

    model_config = pd.ConfigDict(extra="forbid")
