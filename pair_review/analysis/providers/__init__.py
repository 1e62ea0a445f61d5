"""Reviewer provider capability records and adapters."""

from pair_review.analysis.providers.base import (
    ExecuteOptions,
    ProviderAdapter,
    ProviderSpec,
)
from pair_review.analysis.providers.registry import ProviderRegistry

__all__ = [
    "ExecuteOptions",
    "ProviderAdapter",
    "ProviderRegistry",
    "ProviderSpec",
]
