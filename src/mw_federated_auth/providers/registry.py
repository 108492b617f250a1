"""
Provider Registry

Maps provider type tags (as used in the `provider` field of a domain
definition) to factory callables returning a Provider.

Thread Safety
-------------
- The registry is protected by an RLock
- Factories are expected to be cheap; connections are opened lazily
"""

from __future__ import annotations

from threading import RLock
from typing import Callable, Dict, List, Optional

from ..domains import DomainOptions
from .base import Provider
from .ldap import create_ldap_provider

ProviderFactory = Callable[[str, DomainOptions], Provider]


class ProviderRegistry:
    def __init__(self) -> None:
        self._factories: Dict[str, ProviderFactory] = {}
        self._lock = RLock()

    def register(self, tag: str, factory: ProviderFactory) -> None:
        with self._lock:
            self._factories[tag] = factory

    def unregister(self, tag: str) -> bool:
        with self._lock:
            return self._factories.pop(tag, None) is not None

    def get(self, tag: str) -> Optional[ProviderFactory]:
        with self._lock:
            return self._factories.get(tag)

    def has(self, tag: str) -> bool:
        with self._lock:
            return tag in self._factories

    def tags(self) -> List[str]:
        with self._lock:
            return sorted(self._factories)

    def create(self, tag: str, domain: str, options: DomainOptions) -> Provider:
        """
        Raises
        ------
        KeyError
            If no factory is registered for `tag`.
        """
        factory = self.get(tag)
        if factory is None:
            raise KeyError(tag)
        return factory(domain, options)


def default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("ldap", create_ldap_provider)
    return registry
