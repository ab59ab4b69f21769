"""Named LLM providers available to GenerationService.

Filled once at startup from the environment; tests swap in fakes.
"""

import logging

from forkchat.providers.base import LLMProvider

logger = logging.getLogger(__name__)

OFFLINE_PROVIDER = "simulated"

_providers: dict[str, LLMProvider] = {}


def register_provider(provider: LLMProvider) -> None:
    if provider.name in _providers:
        logger.info("Replacing registered provider %s", provider.name)
    _providers[provider.name] = provider


def get_provider(name: str) -> LLMProvider:
    provider = _providers.get(name)
    if provider is None:
        raise ProviderNotFoundError(name, list(_providers))
    return provider


def list_providers() -> list[str]:
    return list(_providers)


def get_all_providers() -> list[LLMProvider]:
    return list(_providers.values())


def preferred_provider(configured: str | None = None) -> str:
    """Provider name used when a request does not pick one.

    An explicitly configured name wins. Otherwise the first registered
    provider backed by a real API, falling back to the offline one.
    """
    if configured:
        return configured
    real = [name for name in _providers if name != OFFLINE_PROVIDER]
    return real[0] if real else OFFLINE_PROVIDER


def clear_providers() -> None:
    _providers.clear()


class ProviderNotFoundError(Exception):
    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        listing = ", ".join(available) or "(none)"
        super().__init__(f"Provider '{name}' not registered. Available: {listing}")
