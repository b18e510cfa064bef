"""Cloud providers and the capability interface they implement.

Provider SDKs are only imported when a provider is initialised through the
registry, so importing this package stays cheap.
"""

from kubestack.providers.provider import (
    Capability,
    CloudProvider,
    ClustersAPI,
    NodeAPI,
    NodePoolerAPI,
    require,
)
from kubestack.providers.registry import ProviderFactory, ProviderRegistry, default_registry

__all__ = [
    "Capability",
    "CloudProvider",
    "ClustersAPI",
    "NodeAPI",
    "NodePoolerAPI",
    "ProviderFactory",
    "ProviderRegistry",
    "default_registry",
    "require",
]
