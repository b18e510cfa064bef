"""Provider registry.

Maps a provider name to a factory that builds the provider from an optional
configuration object. Registration normally happens once at start up; lookups
may run concurrently with it, so every access goes through one lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from loguru import logger

from kubestack.exceptions import ProviderAlreadyRegisteredError, UnknownProviderError
from kubestack.providers.provider import CloudProvider

log = logger.bind(component="registry")

type ProviderFactory = Callable[[Any], CloudProvider]


class ProviderRegistry:
    """Thread-safe map from provider name to provider factory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register ``factory`` under ``name``.

        Raises:
            ValueError: ``factory`` is None.
            ProviderAlreadyRegisteredError: ``name`` is already taken.
        """
        if factory is None:
            raise ValueError(f"cloud provider {name!r} registered with a None factory")
        with self._lock:
            if name in self._factories:
                raise ProviderAlreadyRegisteredError(name)
            self._factories[name] = factory
        log.debug("Registered cloud provider {name}", name=name)

    def init(self, name: str, config: Any = None) -> CloudProvider:
        """Build the provider registered under ``name``."""
        with self._lock:
            factory = self._factories.get(name)
            available = sorted(self._factories)
        if factory is None:
            raise UnknownProviderError(name, available)
        log.debug("Initialising cloud provider {name}", name=name)
        return factory(config)

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._factories

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)


def _aws_factory(config: Any) -> CloudProvider:
    from kubestack.providers.aws.config import AWS
    from kubestack.providers.aws.provider import AWSCloud

    return AWSCloud.create(config if config is not None else AWS())


def _fake_factory(config: Any) -> CloudProvider:
    from kubestack.providers.fake.provider import FakeCloud

    return FakeCloud.create(config)


def default_registry() -> ProviderRegistry:
    """Build a registry with the built-in ``aws`` and ``fake`` providers.

    Provider SDKs are imported lazily, when a provider is first initialised.
    """
    registry = ProviderRegistry()
    registry.register("aws", _aws_factory)
    registry.register("fake", _fake_factory)
    return registry
