"""Provider registry mapping provider identifiers to OAuth adapters.

This is the single place that knows which identity providers exist. Every
other module asks the registry for an adapter instead of branching on a
provider identifier.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Set

from .errors import UnsupportedProviderError
from .providers import GoogleOAuthProvider, OAuthProvider

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[], OAuthProvider]


class ProviderRegistry:
    """Lookup table of provider factories.

    Adapters are stateless, so a new instance is built on every lookup and
    configuration changes (or test overrides) take effect immediately.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, provider_id: str, factory: ProviderFactory) -> None:
        if provider_id in self._factories:
            LOGGER.info("Replacing OAuth provider %s", provider_id)
        self._factories[provider_id] = factory
        LOGGER.debug("Registered OAuth provider %s", provider_id)

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def get_provider(self, provider_id: str) -> OAuthProvider:
        """Return a fresh adapter for ``provider_id``.

        Raises:
            UnsupportedProviderError: No factory is registered under that id.
        """
        factory = self._factories.get(provider_id)
        if factory is None:
            raise UnsupportedProviderError(provider_id, self._factories.keys())
        return factory()

    def list_providers(self) -> Set[str]:
        return set(self._factories)


def build_default_registry() -> ProviderRegistry:
    """Create a registry holding every compiled-in adapter."""
    registry = ProviderRegistry()
    registry.register("google", GoogleOAuthProvider)
    return registry


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get the global provider registry instance.

    Returns:
        Singleton ProviderRegistry instance.
    """
    global _registry
    if _registry is None:
        _registry = build_default_registry()
        LOGGER.info("OAuth providers available: %s", ", ".join(sorted(_registry.list_providers())))
    return _registry


def set_provider_registry(registry: Optional[ProviderRegistry]) -> None:
    """Swap the global registry; ``None`` rebuilds the default on next access."""
    global _registry
    _registry = registry
