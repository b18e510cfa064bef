"""Cloud provider capability interface.

A provider exposes up to three capability groups and declares the ones it
implements in ``capabilities``. An undeclared capability is reported as
``None`` by its accessor, so a provider can implement any subset (the fake
provider only implements node pools).
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, overload, runtime_checkable

from kubestack.exceptions import NotImplementedCapabilityError

if TYPE_CHECKING:
    from typing import Literal

    from kubestack.model import Assets, Cluster, ComputePool, MasterPool, NodeData


class Capability(StrEnum):
    CLUSTERS = "clusters"
    NODE_POOLER = "node-pooler"
    NODE = "node"


# =============================================================================
# Capability groups
# =============================================================================


@runtime_checkable
class ClustersAPI(Protocol):
    """Cluster level infrastructure, called from the control side."""

    def create_cluster_infra(self, cluster: Cluster) -> None:
        """Create the shared infrastructure (network, security groups, storage) of a cluster."""
        ...

    def get_clusters(self, name: str = "") -> Sequence[Cluster]:
        """List clusters, all of them when ``name`` is empty."""
        ...

    def delete_cluster(self, name: str) -> None:
        """Delete a cluster with all of its pools."""
        ...

    def get_master_persistent_ips(self, cluster_name: str) -> dict[str, str]:
        """Map stable master node id to private address."""
        ...

    def push_assets(self, cluster_name: str, assets: Assets) -> None: ...

    def get_kube_api_url(self, cluster_name: str) -> str: ...


@runtime_checkable
class NodePoolerAPI(Protocol):
    """Master and compute pool lifecycle."""

    def create_master_pool(self, pool: MasterPool) -> None: ...

    def create_compute_pool(self, pool: ComputePool) -> None: ...

    def get_master_pools(self, cluster_name: str, name: str = "") -> Sequence[MasterPool]: ...

    def get_compute_pools(self, cluster_name: str, name: str = "") -> Sequence[ComputePool]: ...

    def delete_master_pool(self, cluster_name: str) -> None: ...

    def delete_compute_pool(self, cluster_name: str, name: str = "") -> None:
        """Delete one compute pool, or all of the cluster's when ``name`` is empty."""
        ...


@runtime_checkable
class NodeAPI(Protocol):
    """Called from a running cluster node about itself."""

    def get_assets(self) -> Assets: ...

    def get_node_data(self) -> NodeData: ...


# =============================================================================
# Provider
# =============================================================================


@runtime_checkable
class CloudProvider(Protocol):
    """A named backend exposing an optional set of capabilities."""

    @property
    def name(self) -> str: ...

    @property
    def capabilities(self) -> frozenset[Capability]: ...

    def clusters(self) -> ClustersAPI | None: ...

    def node_pooler(self) -> NodePoolerAPI | None: ...

    def node(self) -> NodeAPI | None: ...


@overload
def require(provider: CloudProvider, capability: Literal[Capability.CLUSTERS]) -> ClustersAPI: ...
@overload
def require(provider: CloudProvider, capability: Literal[Capability.NODE_POOLER]) -> NodePoolerAPI: ...
@overload
def require(provider: CloudProvider, capability: Literal[Capability.NODE]) -> NodeAPI: ...


def require(
    provider: CloudProvider,
    capability: Capability,
) -> ClustersAPI | NodePoolerAPI | NodeAPI:
    """Return the provider's implementation of ``capability``.

    The capability must be declared in ``provider.capabilities`` and its
    accessor must return an implementation.

    Raises:
        NotImplementedCapabilityError: The provider does not implement it.
    """
    if capability not in provider.capabilities:
        raise NotImplementedCapabilityError(provider.name, capability.value)

    match capability:
        case Capability.CLUSTERS:
            api = provider.clusters()
        case Capability.NODE_POOLER:
            api = provider.node_pooler()
        case Capability.NODE:
            api = provider.node()
        case _:
            raise ValueError(f"Unknown capability: {capability!r}")

    if api is None:
        raise NotImplementedCapabilityError(provider.name, capability.value)
    return api


__all__ = [
    "Capability",
    "CloudProvider",
    "ClustersAPI",
    "NodeAPI",
    "NodePoolerAPI",
    "require",
]
