"""Cached availability of every registered provider's CLI."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from pair_review.analysis.contracts import AvailabilityStatus
from pair_review.analysis.providers.registry import ProviderRegistry
from pair_review.analysis.utils.config import AnalysisSettings

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """Probes provider CLIs with their version flag and remembers the result."""

    def __init__(
        self,
        settings: Optional[AnalysisSettings] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.settings = settings or AnalysisSettings()
        self._environ = environ
        self._cache: Dict[str, AvailabilityStatus] = {}
        self._checking = False

    @property
    def is_checking(self) -> bool:
        return self._checking

    async def check_provider_availability(self, provider_id: str) -> AvailabilityStatus:
        """Probe one provider and cache the outcome. Never raises."""
        try:
            adapter = ProviderRegistry.create_adapter(
                provider_id, settings=self.settings, environ=self._environ
            )
        except KeyError as e:
            status = AvailabilityStatus(available=False, error=str(e))
            self._cache[provider_id] = status
            return status
        except ValueError as e:
            # Known provider that cannot run yet, such as one without any model configured
            spec = ProviderRegistry.get(provider_id)
            status = AvailabilityStatus(
                available=False, error=str(e), install_instructions=spec.install_instructions or None
            )
            self._cache[provider_id] = status
            return status

        available = await adapter.check_available(self.settings.availability_timeout_seconds)
        status = AvailabilityStatus(
            available=available,
            error=None if available else f"{adapter.spec.name} CLI not found or not responding",
            install_instructions=None if available else adapter.install_instructions or None,
        )
        self._cache[provider_id] = status
        return status

    async def check_all_providers(self, priority: Optional[str] = None) -> Dict[str, AvailabilityStatus]:
        """Probe every registered provider.

        The priority provider (typically the user's default) is checked first
        so its status is known as early as possible; the rest run
        concurrently. A call made while another is in flight returns the
        current cache without probing again.
        """
        if self._checking:
            logger.debug("Availability check already in progress")
            return dict(self._cache)

        self._checking = True
        try:
            provider_ids = ProviderRegistry.get_all_ids()
            if priority in provider_ids:
                await self.check_provider_availability(priority)
                provider_ids.remove(priority)

            await asyncio.gather(*(self.check_provider_availability(pid) for pid in provider_ids))
            available = [pid for pid, status in self._cache.items() if status.available]
            logger.info(f"Available providers: {', '.join(sorted(available)) or 'none'}")
            return dict(self._cache)
        finally:
            self._checking = False

    def get(self, provider_id: str) -> Optional[AvailabilityStatus]:
        return self._cache.get(provider_id)

    def get_all(self) -> Dict[str, AvailabilityStatus]:
        return dict(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
