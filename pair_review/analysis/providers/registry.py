"""Provider registry keyed by provider id.

Usage:
    # Adapter for a provider's default model
    adapter = ProviderRegistry.create_adapter("claude", settings=settings)

    # Specific model or tier
    adapter = ProviderRegistry.create_adapter("codex", model="gpt-5.2-codex")

    # Register a custom provider
    ProviderRegistry.register(my_spec)

Models:
    Every model maps onto a tier (fast, balanced, thorough). Config files may
    use the aliases ``free`` (fast) and ``premium`` (thorough). Models from
    config replace built-in entries with the same id and are appended
    otherwise.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pydantic as pd

from pair_review.analysis.contracts import ProviderModel, ProviderOverrides
from pair_review.analysis.providers.base import ProviderAdapter, ProviderSpec
from pair_review.analysis.utils.config import AnalysisSettings

logger = logging.getLogger(__name__)

VALID_TIERS = ("fast", "balanced", "thorough")
TIER_ALIASES = {"free": "fast", "premium": "thorough"}


def resolve_tier(tier: Optional[str]) -> str:
    """Normalize a tier name, mapping aliases and defaulting to balanced."""
    if not tier:
        return "balanced"
    value = TIER_ALIASES.get(tier.lower(), tier.lower())
    if value not in VALID_TIERS:
        logger.warning(f"Unknown model tier '{tier}', using 'balanced'")
        return "balanced"
    return value


def prettify_model_id(model_id: str) -> str:
    """Turn ``gpt-5.1-codex-mini`` into ``Gpt 5.1 Codex Mini``."""
    words = model_id.replace("_", "-").replace("/", " ").split("-")
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def model_from_config(entry: Dict[str, Any]) -> Optional[ProviderModel]:
    """Build a ProviderModel from a config entry, inferring missing fields."""
    model_id = entry.get("id")
    if not model_id:
        logger.warning(f"Ignoring model entry without id: {entry}")
        return None
    data = dict(entry)
    data["tier"] = resolve_tier(entry.get("tier"))
    data.setdefault("name", prettify_model_id(model_id))
    try:
        return ProviderModel.model_validate(data)
    except pd.ValidationError as e:
        logger.warning(f"Ignoring invalid model entry '{model_id}': {e}")
        return None


def merge_models(builtin: List[ProviderModel], overrides: ProviderOverrides) -> List[ProviderModel]:
    models = list(builtin)
    for entry in overrides.models:
        model = model_from_config(entry)
        if model is None:
            continue
        for index, existing in enumerate(models):
            if existing.id == model.id:
                models[index] = model
                break
        else:
            models.append(model)
    return models


def default_model(models: List[ProviderModel]) -> Optional[str]:
    """Explicit default, else the first balanced model, else the first model."""
    for model in models:
        if model.default:
            return model.id
    for model in models:
        if model.tier == "balanced":
            return model.id
    return models[0].id if models else None


class ProviderRegistry:
    """Registry of provider capability records.

    Built-in providers are registered at module import time.
    """

    _registry: Dict[str, ProviderSpec] = {}

    @classmethod
    def register(cls, spec: ProviderSpec) -> None:
        """Register a provider spec.

        Raises:
            ValueError: If the provider id is already registered
        """
        if spec.id in cls._registry:
            raise ValueError(f"Provider '{spec.id}' already registered")
        cls._registry[spec.id] = spec

    @classmethod
    def unregister(cls, provider_id: str) -> None:
        cls._registry.pop(provider_id, None)

    @classmethod
    def get(cls, provider_id: str) -> ProviderSpec:
        """Get a provider spec by id.

        Raises:
            KeyError: If the provider id is not registered
        """
        if provider_id not in cls._registry:
            raise KeyError(
                f"Unknown provider: '{provider_id}'. "
                f"Available providers: {', '.join(sorted(cls._registry.keys()))}"
            )
        return cls._registry[provider_id]

    @classmethod
    def get_all_ids(cls) -> List[str]:
        return sorted(cls._registry.keys())

    @classmethod
    def get_models(cls, provider_id: str, settings: Optional[AnalysisSettings] = None) -> List[ProviderModel]:
        """Built-in models merged with models declared in config."""
        spec = cls.get(provider_id)
        overrides = (settings or AnalysisSettings()).providers.get(provider_id, ProviderOverrides())
        return merge_models(list(spec.models), overrides)

    @classmethod
    def resolve_model(
        cls, provider_id: str, model: Optional[str] = None, settings: Optional[AnalysisSettings] = None
    ) -> str:
        """Resolve a model id, a tier name, or nothing to a concrete model id."""
        models = cls.get_models(provider_id, settings)
        if model:
            if any(m.id == model for m in models):
                return model
            tier = TIER_ALIASES.get(model, model)
            if tier in VALID_TIERS:
                for candidate in models:
                    if candidate.tier == tier:
                        return candidate.id
            # Unknown ids pass through; the CLI decides whether it accepts them.
            return model
        resolved = default_model(models)
        if resolved is None:
            raise ValueError(f"Provider '{provider_id}' has no models configured")
        return resolved

    @classmethod
    def create_adapter(
        cls,
        provider_id: str,
        model: Optional[str] = None,
        settings: Optional[AnalysisSettings] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> ProviderAdapter:
        """Create an adapter for a provider with config overrides applied."""
        settings = settings or AnalysisSettings()
        spec = cls.get(provider_id)
        return ProviderAdapter(
            spec,
            model=cls.resolve_model(provider_id, model, settings),
            models=cls.get_models(provider_id, settings),
            overrides=settings.providers.get(provider_id, ProviderOverrides()),
            settings=settings,
            environ=environ,
        )


def _register_default_providers() -> None:
    from pair_review.analysis.providers.claude import CLAUDE
    from pair_review.analysis.providers.codex import CODEX
    from pair_review.analysis.providers.copilot import COPILOT
    from pair_review.analysis.providers.cursor_agent import CURSOR_AGENT
    from pair_review.analysis.providers.gemini import GEMINI
    from pair_review.analysis.providers.opencode import OPENCODE
    from pair_review.analysis.providers.pi import PI

    for spec in (CLAUDE, CODEX, GEMINI, COPILOT, PI, CURSOR_AGENT, OPENCODE):
        if spec.id not in ProviderRegistry._registry:
            ProviderRegistry.register(spec)


_register_default_providers()
