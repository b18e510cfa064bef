"""Cluster and node pool model.

Immutable value types shared by the controller and every provider. Providers
rebuild these from stack attributes on every query; nothing here is cached.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

type Labels = dict[str, str]
type PeerMap = Mapping[str, str]
"""Stable node id to private address of a master node."""


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class Status:
    """Observed status of a cluster or pool.

    Attributes:
        created: Creation time in epoch seconds, 0 when unknown.
        upgraded: Last upgrade time in epoch seconds, 0 when never upgraded.
        state: Provider status string (e.g. ``CREATE_COMPLETE``).
    """

    created: int = 0
    upgraded: int = 0
    state: str = ""


# =============================================================================
# Pools
# =============================================================================


@dataclass(frozen=True, slots=True)
class KubeArgs:
    """Extra command line flags passed to the Kubernetes components."""

    kubelet: str = ""
    apiserver: str = ""
    controller_manager: str = ""
    scheduler: str = ""


@dataclass(frozen=True, slots=True)
class NodePool:
    """Attributes shared by master and compute pools."""

    name: str
    cluster_name: str = ""
    labels: Labels = field(default_factory=dict)
    internal: bool = False
    kube_version: str = ""
    os_version: str = ""
    ssh_key: str = ""
    machine_type: str = ""
    disk_size: int = 0
    networks: tuple[str, ...] = ()
    user_data: bytes = b""
    taints: Labels = field(default_factory=dict)
    kube_args: KubeArgs = field(default_factory=KubeArgs)
    status: Status = field(default_factory=Status)


@dataclass(frozen=True, slots=True)
class MasterPool(NodePool):
    """Control plane pool. Exactly one per cluster.

    ``kube_api_networks`` are the subnets of the API load balancer; when empty
    the pool's own ``networks`` are used.
    """

    kube_api_url: str = ""
    kube_api_networks: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ComputePool(NodePool):
    """Worker pool, identified by ``(cluster_name, name)``."""

    size: int = 0


# =============================================================================
# Cluster
# =============================================================================


@dataclass(frozen=True, slots=True)
class Cluster:
    name: str
    labels: Labels = field(default_factory=dict)
    internal: bool = False
    dns_zone: str = ""
    master_pool: MasterPool | None = None
    compute_pools: tuple[ComputePool, ...] = ()
    kube_api_url: str = ""
    status: Status = field(default_factory=Status)


# =============================================================================
# Node side
# =============================================================================


@dataclass(frozen=True, slots=True)
class Assets:
    """Certificate authority material shared by every node of a cluster."""

    etcd_ca_cert: bytes = b""
    etcd_ca_key: bytes = b""
    kube_ca_cert: bytes = b""
    kube_ca_key: bytes = b""


@dataclass(frozen=True, slots=True)
class NodeData:
    """What a running node learns about itself from its provider."""

    kube_api_url: str
    cluster_name: str
    kube_version: str = ""
    labels: Labels = field(default_factory=dict)
    taints: Labels = field(default_factory=dict)
    kube_args: KubeArgs = field(default_factory=KubeArgs)


@dataclass(frozen=True, slots=True)
class NodeNetworkAssignment:
    """Placement of one master node. Computed on demand, never stored."""

    subnet_id: str
    availability_zone: str
    node_id: int


# =============================================================================
# Label encoding
# =============================================================================


def labels_to_kvs(labels: Mapping[str, str]) -> str:
    """Encode labels as ``k=v,k=v`` with keys sorted.

    >>> labels_to_kvs({"b": "2", "a": "1"})
    'a=1,b=2'
    """
    return ",".join(f"{k}={labels[k]}" for k in sorted(labels))


def kvs_to_labels(kvs: str) -> Labels:
    """Decode a ``k=v,k=v`` string, skipping items without ``=`` or a key."""
    labels: Labels = {}
    for item in kvs.split(","):
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        labels[key] = value.strip()
    return labels
