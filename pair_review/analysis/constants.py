"""Constants shared across the analysis engine."""

import signal
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

PAIR_REVIEW_DIR = ".pair-review"
CONFIG_FILENAME = "config.toml"

# Level slots. Slot 4 is the synthesis/orchestration pass.
LEVEL_SLOTS = (1, 2, 3, 4)
ORCHESTRATION_SLOT = 4

LEVEL_IDS = (
    "1",
    "2",
    "3",
    "orchestration",
    "consolidation-L1",
    "consolidation-L2",
    "consolidation-L3",
)

DEFAULT_TIMEOUT_SECONDS = 300.0
EXTRACTION_TIMEOUT_SECONDS = 60.0
AVAILABILITY_TIMEOUT_SECONDS = 10.0

THROTTLE_WINDOW_SECONDS = 0.3
TEXT_PRIORITY_WINDOW_SECONDS = 2.0

# Finished runs kept for status queries; older ones are evicted first.
MAX_FINISHED_RUNS = 100

PREVIEW_LENGTH = 500
SNIPPET_LENGTH = 200

# Exit codes produced by a termination signal, either reported directly by
# the OS (negative) or by an intermediate shell (128 + signal).
CANCELLATION_EXIT_CODES = frozenset(
    {
        -signal.SIGTERM,
        -signal.SIGKILL,
        128 + signal.SIGTERM,
        128 + signal.SIGKILL,
    }
)


def resolve_level(level: Union[int, str, None]) -> Optional[Tuple[int, Optional[str]]]:
    """Map a level identifier onto its status slot.

    Args:
        level: An int slot (1-4) or a string from LEVEL_IDS

    Returns:
        Tuple of (slot, consolidation step name or None), or None when the
        identifier is not part of the vocabulary
    """
    if isinstance(level, bool):
        return None
    if isinstance(level, int):
        return (level, None) if level in LEVEL_SLOTS else None
    if not isinstance(level, str):
        return None

    key = level.strip()
    if key in ("1", "2", "3", "4"):
        return int(key), None
    if key == "orchestration":
        return ORCHESTRATION_SLOT, None
    if key.startswith("consolidation-L") and key in LEVEL_IDS:
        return ORCHESTRATION_SLOT, key[len("consolidation-"):]
    return None


def level_label(level: Union[int, str]) -> str:
    """Human readable label used as a log prefix."""
    return f"[Level {level}]"


def get_pair_review_dir(home: Path | None = None) -> Path:
    """Get the per-user .pair-review directory path."""
    return (home or Path.home()) / PAIR_REVIEW_DIR


def get_default_config_path(home: Path | None = None) -> Path:
    """Get the default configuration file path."""
    return get_pair_review_dir(home) / CONFIG_FILENAME


STEP_LABELS: Dict[str, str] = {
    "L1": "Consolidating level 1",
    "L2": "Consolidating level 2",
    "L3": "Consolidating level 3",
}
