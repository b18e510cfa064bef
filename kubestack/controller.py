"""Cluster and node pool orchestration.

The controller turns user intents into a sequence of provider calls. It owns
the idempotency guards, defaulting and label propagation; everything
provider specific lives behind the capability interface.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace

from loguru import logger

from kubestack.constants import (
    CLUSTER_NAME_LABEL,
    DEFAULT_COMPUTE_POOL_SIZE,
    DEFAULT_DISK_SIZE_GB,
    DEFAULT_KUBE_VERSION,
    DEFAULT_OS_VERSION,
    POOL_NAME_LABEL,
)
from kubestack.exceptions import (
    AmbiguousClusterError,
    ClusterAlreadyExistsError,
    ClusterDoesNotExistError,
    ComputePoolAlreadyExistsError,
    KubestackError,
    MasterPoolAlreadyExistsError,
    StepFailedError,
)
from kubestack.model import Assets, Cluster, ComputePool, MasterPool, NodePool
from kubestack.providers.provider import Capability, CloudProvider, ClustersAPI, require
from kubestack.userdata import CloudConfigRenderer, UserDataRenderer

log = logger.bind(component="controller")


@dataclass(frozen=True, slots=True)
class Defaults:
    """Values used for pool attributes left unset by the caller."""

    kube_version: str = DEFAULT_KUBE_VERSION
    os_version: str = DEFAULT_OS_VERSION
    disk_size: int = DEFAULT_DISK_SIZE_GB
    compute_pool_size: int = DEFAULT_COMPUTE_POOL_SIZE


# =============================================================================
# Step log
# =============================================================================


class StepLog:
    """Records the steps of a multi-step operation as they complete.

    The first failing step aborts the operation with ``StepFailedError``.
    Nothing already done is rolled back.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.completed: list[str] = []

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        log.debug("{operation}: step {n} {step}", operation=self.operation, n=len(self.completed), step=name)
        try:
            yield
        except Exception as e:
            log.error(
                "{operation}: step {step} failed after {done} completed steps: {error}",
                operation=self.operation, step=name, done=len(self.completed), error=e,
            )
            raise StepFailedError(self.operation, name, self.completed, e) from e
        self.completed.append(name)


# =============================================================================
# Controller
# =============================================================================


def _filter_by_name[T: (Cluster, NodePool)](items: Sequence[T], names: Sequence[str]) -> list[T]:
    # No match returns everything, which callers rely on for "list all".
    matched = [item for item in items if item.name in names]
    return matched or list(items)


class Controller:
    """Orchestrates cluster and pool lifecycle on a cloud provider.

    Args:
        provider: Backend implementing some or all capabilities.
        renderer: Boot configuration renderer. Defaults to ``CloudConfigRenderer``.
        defaults: Values for pool attributes left unset.
    """

    def __init__(
        self,
        provider: CloudProvider,
        renderer: UserDataRenderer | None = None,
        defaults: Defaults | None = None,
    ) -> None:
        self.provider = provider
        self.renderer = renderer or CloudConfigRenderer()
        self.defaults = defaults or Defaults()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_cluster(self, cluster: Cluster, assets: Assets) -> None:
        """Create the cluster infrastructure, its master pool and compute pools.

        Raises:
            ClusterAlreadyExistsError: A cluster with this name exists.
            StepFailedError: A step failed. Earlier steps are left in place.
        """
        clusters = require(self.provider, Capability.CLUSTERS)

        log.info("Checking whether cluster {name} already exists", name=cluster.name)
        if self._cluster_exists(cluster.name, clusters):
            raise ClusterAlreadyExistsError(cluster.name)

        if cluster.internal:
            log.info("Cluster {name} is internal, node pools will also be internal", name=cluster.name)

        cluster = replace(cluster, labels={**cluster.labels, CLUSTER_NAME_LABEL: cluster.name})
        master = cluster.master_pool or MasterPool(name="master")
        master = replace(master, cluster_name=cluster.name)

        steps = StepLog(f"create cluster {cluster.name}")
        with steps.step("create-infra"):
            log.info("Creating cluster {name} infrastructure", name=cluster.name)
            clusters.create_cluster_infra(cluster)
        with steps.step("push-assets"):
            log.info("Pushing cluster {name} assets", name=cluster.name)
            clusters.push_assets(cluster.name, assets)
        with steps.step("create-master-pool"):
            self.create_master_pool(master)
        for pool in cluster.compute_pools:
            with steps.step(f"create-compute-pool:{pool.name}"):
                self.create_compute_pool(replace(pool, cluster_name=cluster.name))

        log.info("Cluster {name} created", name=cluster.name)

    def create_master_pool(self, pool: MasterPool) -> None:
        clusters = require(self.provider, Capability.CLUSTERS)
        pooler = require(self.provider, Capability.NODE_POOLER)

        cluster = self._resolve_cluster(pool.cluster_name)
        pool = replace(pool, internal=cluster.internal)

        log.info(
            "Checking whether masterpool {name} already exists in cluster {cluster}",
            name=pool.name, cluster=pool.cluster_name,
        )
        if pooler.get_master_pools(pool.cluster_name, ""):
            raise MasterPoolAlreadyExistsError(pool.cluster_name)

        pool = self._apply_defaults(pool)

        log.info("Getting master persistent IPs for cluster {cluster}", cluster=pool.cluster_name)
        ips = clusters.get_master_persistent_ips(pool.cluster_name)
        log.debug("Master persistent IPs: {ips}", ips=ips)

        user_data = self.renderer.render_master(
            self.provider.name, pool.cluster_name, pool.kube_version, ips,
        )
        pool = replace(pool, user_data=user_data, labels=self._pool_labels(pool, cluster))

        log.info("Creating masterpool in cluster {cluster}", cluster=pool.cluster_name)
        pooler.create_master_pool(pool)

    def create_compute_pool(self, pool: ComputePool) -> None:
        pooler = require(self.provider, Capability.NODE_POOLER)

        cluster = self._resolve_cluster(pool.cluster_name)
        pool = replace(pool, internal=cluster.internal)

        log.info(
            "Checking whether computepool {name} already exists in cluster {cluster}",
            name=pool.name, cluster=pool.cluster_name,
        )
        if pooler.get_compute_pools(pool.cluster_name, pool.name):
            raise ComputePoolAlreadyExistsError(pool.cluster_name, pool.name)

        pool = self._apply_defaults(pool)
        if pool.size == 0:
            pool = replace(pool, size=self.defaults.compute_pool_size)
            log.info("Compute pool size is not specified, using default {size}", size=pool.size)

        user_data = self.renderer.render_compute(
            self.provider.name, pool.cluster_name, pool.kube_version,
        )
        pool = replace(pool, user_data=user_data, labels=self._pool_labels(pool, cluster))

        log.info(
            "Creating computepool {name} in cluster {cluster}",
            name=pool.name, cluster=pool.cluster_name,
        )
        pooler.create_compute_pool(pool)

    # -------------------------------------------------------------------------
    # Get
    # -------------------------------------------------------------------------

    def get_clusters(self, *names: str) -> list[Cluster]:
        """List clusters matching ``names``, or all of them when none match."""
        clusters = require(self.provider, Capability.CLUSTERS)
        log.debug("Getting clusters")
        return _filter_by_name(clusters.get_clusters(""), names)

    def get_master_pools(self, cluster_name: str, *names: str) -> list[MasterPool]:
        pooler = require(self.provider, Capability.NODE_POOLER)
        log.debug("Getting masterpool in cluster {cluster}", cluster=cluster_name)
        return _filter_by_name(pooler.get_master_pools(cluster_name, ""), names)

    def get_compute_pools(self, cluster_name: str, *names: str) -> list[ComputePool]:
        pooler = require(self.provider, Capability.NODE_POOLER)
        log.debug("Getting computepools in cluster {cluster}", cluster=cluster_name)
        return _filter_by_name(pooler.get_compute_pools(cluster_name, ""), names)

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete_cluster(self, *names: str) -> None:
        """Delete clusters in order, stopping at the first failure."""
        clusters = require(self.provider, Capability.CLUSTERS)
        steps = StepLog("delete clusters")
        for name in names:
            with steps.step(f"delete-cluster:{name}"):
                log.info("Deleting cluster {name}", name=name)
                clusters.delete_cluster(name)

    def delete_master_pool(self, cluster_name: str) -> None:
        pooler = require(self.provider, Capability.NODE_POOLER)
        log.info("Deleting masterpool of cluster {cluster}", cluster=cluster_name)
        pooler.delete_master_pool(cluster_name)

    def delete_compute_pool(self, cluster_name: str, *names: str) -> None:
        """Delete the named compute pools, or every compute pool when none are named."""
        pooler = require(self.provider, Capability.NODE_POOLER)
        if not names:
            log.info("Deleting all computepools of cluster {cluster}", cluster=cluster_name)
            pooler.delete_compute_pool(cluster_name, "")
            return
        for name in names:
            log.info("Deleting computepool {name} of cluster {cluster}", name=name, cluster=cluster_name)
            pooler.delete_compute_pool(cluster_name, name)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _cluster_exists(name: str, clusters: ClustersAPI) -> bool:
        # A lookup failure counts as "does not exist"; creation surfaces the real error.
        try:
            found = clusters.get_clusters(name)
        except KubestackError as e:
            log.warning("Cluster lookup for {name} failed, assuming absent: {error}", name=name, error=e)
            return False
        return len(found) == 1

    def _resolve_cluster(self, name: str) -> Cluster:
        clusters = require(self.provider, Capability.CLUSTERS)
        matches = [c for c in clusters.get_clusters(name) if c.name == name]
        match len(matches):
            case 0:
                raise ClusterDoesNotExistError(name)
            case 1:
                return matches[0]
            case n:
                raise AmbiguousClusterError(name, n)

    def _apply_defaults[P: (MasterPool, ComputePool)](self, pool: P) -> P:
        if pool.disk_size == 0:
            pool = replace(pool, disk_size=self.defaults.disk_size)
            log.info("Disk size is not specified, using default {size}", size=pool.disk_size)
        if not pool.kube_version:
            pool = replace(pool, kube_version=self.defaults.kube_version)
            log.info("Kube version is not specified, using default {version}", version=pool.kube_version)
        if not pool.os_version:
            pool = replace(pool, os_version=self.defaults.os_version)
            log.info("OS version is not specified, using default {version}", version=pool.os_version)
        return pool

    @staticmethod
    def _pool_labels(pool: NodePool, cluster: Cluster) -> dict[str, str]:
        # Cluster scoped labels apply to every pool; pool-name always wins.
        return {**pool.labels, **cluster.labels, POOL_NAME_LABEL: pool.name}
