"""Provider factory -- creates one adapter per registered backend.

Adapters carry no credentials, so every backend is instantiated
regardless of configured keys; KeyPool decides availability per call.
Adding a new backend requires only an entry in PROVIDER_CONFIGS.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from academic_gateway.config import Settings
from academic_gateway.llm.providers import PROVIDER_REGISTRY, LLMProvider

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderFactoryConfig:
    """Typed configuration for creating a backend adapter."""

    get_base_url: Callable[[Settings], str] | None = None
    get_default_headers: Callable[[Settings], dict[str, str]] | None = None
    extra_kwargs: dict[str, Any] = field(default_factory=dict)


PROVIDER_CONFIGS: dict[str, ProviderFactoryConfig] = {
    "gemini": ProviderFactoryConfig(),
    "groq": ProviderFactoryConfig(
        get_base_url=lambda s: s.groq_base_url,
        extra_kwargs={"provider_name": "groq"},
    ),
    "openrouter": ProviderFactoryConfig(
        get_base_url=lambda s: s.openrouter_base_url,
        get_default_headers=lambda s: {
            "HTTP-Referer": s.openrouter_referer,
            "X-Title": s.openrouter_title,
        },
        extra_kwargs={"provider_name": "openrouter"},
    ),
}


def create_providers(settings: Settings) -> dict[str, LLMProvider]:
    """Instantiate an adapter for every registered backend.

    Returns dict: provider id -> LLMProvider instance.
    """
    providers: dict[str, LLMProvider] = {}

    for name, provider_cls in PROVIDER_REGISTRY.items():
        config = PROVIDER_CONFIGS.get(name)
        if config is None:
            continue

        kwargs: dict[str, Any] = {"timeout": settings.request_timeout}
        if config.get_base_url is not None:
            kwargs["base_url"] = config.get_base_url(settings)
        if config.get_default_headers is not None:
            kwargs["default_headers"] = config.get_default_headers(settings)
        kwargs.update(config.extra_kwargs)

        providers[name] = provider_cls(**kwargs)
        logger.debug("llm_provider_registered", provider=name)

    return providers
