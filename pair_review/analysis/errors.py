"""Failures raised by provider adapters.

Extraction failures are deliberately absent: they degrade to a raw,
unparsed result instead of raising.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for failures of an external reviewer process."""

    def __init__(self, message: str, provider_id: str = "", level: str = "") -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.level = level


class SpawnNotFoundError(ProviderError):
    """Raised when the reviewer binary cannot be found."""

    def __init__(
        self, message: str, install_instructions: str = "", provider_id: str = "", level: str = ""
    ) -> None:
        super().__init__(message, provider_id=provider_id, level=level)
        self.install_instructions = install_instructions


class ProviderTimeoutError(ProviderError):
    """Raised when a reviewer process exceeds its wall-clock bound."""

    def __init__(
        self, message: str, timeout_seconds: float, provider_id: str = "", level: str = ""
    ) -> None:
        super().__init__(message, provider_id=provider_id, level=level)
        self.timeout_seconds = timeout_seconds


class ProviderExitError(ProviderError):
    """Raised when a reviewer process exits with a non-zero code."""

    def __init__(
        self, message: str, exit_code: int | None, stderr: str = "", provider_id: str = "", level: str = ""
    ) -> None:
        super().__init__(message, provider_id=provider_id, level=level)
        self.exit_code = exit_code
        self.stderr = stderr


class CancellationError(ProviderError):
    """Raised when a reviewer process was stopped because its run was cancelled."""
