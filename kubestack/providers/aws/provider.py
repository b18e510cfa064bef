"""AWS cloud provider.

Implements every capability on top of CloudFormation. Each cluster is an
infra stack (network, security groups, assets bucket, master ENIs), an ELB
stack for the API, a master pool stack and any number of compute pool stacks.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from functools import cached_property
from typing import Final, Self

from injector import Injector
from loguru import logger

from kubestack.constants import StackOutput, StackTag, StackType
from kubestack.exceptions import ClusterAlreadyExistsError, NetworkValidationError, StackOperationError
from kubestack.model import (
    Assets,
    Cluster,
    ComputePool,
    KubeArgs,
    MasterPool,
    kvs_to_labels,
)
from kubestack.providers.provider import Capability

from .clients import AWSClients, AWSModule
from .config import AWS
from .distribution import distribute_nodes, nodes_per_subnet
from .network import Network, vpc_of
from .node import AWSNode, InstanceMetadata
from .s3 import AssetStore
from .stacks import IAM_CAPABILITIES, StackNames, StackRecord, Stacks, StackSpec, stack_labels, stack_tags
from .templates import render_compute_pool, render_elb, render_infra, render_master_pool

log = logger.bind(component="aws")

ELB_RESOURCE_TYPE: Final = "AWS::ElasticLoadBalancing::LoadBalancer"
BUCKET_RESOURCE_TYPE: Final = "AWS::S3::Bucket"


def _disk_size(record: StackRecord) -> int:
    raw = record.get(StackTag.DISK_SIZE, StackOutput.DISK_SIZE, default="0")
    try:
        return int(raw)
    except ValueError as e:
        raise StackOperationError(f"stack {record.name!r} has invalid disk size {raw!r}") from e


def _kube_args(record: StackRecord) -> KubeArgs:
    return KubeArgs(
        kubelet=record.get(StackOutput.KUBELET_EXTRA_ARGS),
        apiserver=record.get(StackOutput.APISERVER_EXTRA_ARGS),
        controller_manager=record.get(StackOutput.CONTROLLER_MANAGER_EXTRA_ARGS),
        scheduler=record.get(StackOutput.SCHEDULER_EXTRA_ARGS),
    )


class AWSCloud:
    """AWS implementation of the Clusters, NodePooler and Node capabilities.

    Stack waits are bounded by ``config.stack_timeout`` and aborted by
    ``cancel()``; once cancelled the provider stays cancelled.
    """

    name: Final = "aws"
    capabilities: Final = frozenset({Capability.CLUSTERS, Capability.NODE_POOLER, Capability.NODE})

    def __init__(
        self,
        config: AWS,
        clients: AWSClients,
        cancel: threading.Event | None = None,
    ) -> None:
        self.config = config
        self._clients = clients
        self._cancel = cancel or threading.Event()
        self.names = StackNames(config.stack_prefix)
        self.stacks = Stacks(
            clients.cloudformation,
            poll_interval=config.poll_interval,
            timeout=config.stack_timeout,
            cancel=self._cancel,
        )
        self.network = Network(clients.ec2, clients.elb)
        self.assets = AssetStore(clients.s3)

    @classmethod
    def create(cls, config: AWS, cancel: threading.Event | None = None) -> Self:
        """Build the provider with boto3 clients from the DI container."""
        injector = Injector([AWSModule(config)])
        return cls(config, injector.get(AWSClients), cancel)

    def cancel(self) -> None:
        """Abort every stack wait, current and future."""
        log.warning("Cancelling stack operations")
        self._cancel.set()

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def clusters(self) -> Self:
        return self

    def node_pooler(self) -> Self:
        return self

    @cached_property
    def _node(self) -> AWSNode:
        metadata = InstanceMetadata(timeout=self.config.metadata_timeout)
        return AWSNode(self.stacks, self.network, self.assets, metadata)

    def node(self) -> AWSNode:
        return self._node

    # -------------------------------------------------------------------------
    # Clusters
    # -------------------------------------------------------------------------

    def create_cluster_infra(self, cluster: Cluster) -> None:
        infra_stack = self.names.infra(cluster.name)
        if self.stacks.exists(infra_stack):
            raise ClusterAlreadyExistsError(cluster.name)

        networks = cluster.master_pool.networks if cluster.master_pool else ()
        subnets = self.network.describe_subnets(networks)
        vpc_id = vpc_of(subnets)
        assignments = distribute_nodes(subnets)
        log.info(
            "Cluster {name} gets {n} master nodes across {subnets} subnets in {vpc}",
            name=cluster.name, n=len(assignments), subnets=len(subnets), vpc=vpc_id,
        )

        self.stacks.create(StackSpec(
            name=infra_stack,
            template=render_infra(cluster, vpc_id, assignments, self.names.prefix),
            tags=stack_tags(cluster.name, StackType.INFRA),
        ))

    def get_clusters(self, name: str = "") -> list[Cluster]:
        api_urls = {
            record.cluster_name: record.get(StackTag.KUBE_API_URL, StackOutput.KUBE_API_URL)
            for record in self.stacks.by_type(StackType.MASTER_POOL)
        }
        clusters = []
        for record in self.stacks.by_type(StackType.INFRA):
            cluster_name = record.cluster_name
            if not cluster_name or (name and cluster_name != name):
                continue
            clusters.append(Cluster(
                name=cluster_name,
                labels=stack_labels(record),
                internal=record.get(StackOutput.INTERNAL) == "true",
                dns_zone=record.get(StackOutput.DNS_ZONE),
                kube_api_url=api_urls.get(cluster_name, ""),
                status=record.status_view(),
            ))
        return clusters

    def delete_cluster(self, name: str) -> None:
        """Delete compute pools, master pool, ELB, assets and infra, in that order."""
        self.delete_compute_pool(name, "")
        self.delete_master_pool(name)
        self.stacks.delete(self.names.elb(name))

        bucket = self._assets_bucket(name)
        if bucket:
            self.assets.delete(bucket)

        self.stacks.delete(self.names.infra(name))
        log.info("Cluster {name} deleted", name=name)

    def get_master_persistent_ips(self, cluster_name: str) -> dict[str, str]:
        return self.network.persistent_ips(cluster_name)

    def push_assets(self, cluster_name: str, assets: Assets) -> None:
        bucket = self._assets_bucket(cluster_name)
        if not bucket:
            raise StackOperationError(f"no assets bucket found for cluster {cluster_name!r}")
        self.assets.put(bucket, assets)

    def get_kube_api_url(self, cluster_name: str) -> str:
        elb_name = self.stacks.resource_id(self.names.elb(cluster_name), ELB_RESOURCE_TYPE)
        if not elb_name:
            raise StackOperationError(f"no load balancer found for cluster {cluster_name!r}")
        return self.network.kube_api_url(elb_name)

    # -------------------------------------------------------------------------
    # Node pools
    # -------------------------------------------------------------------------

    def create_master_pool(self, pool: MasterPool) -> None:
        cluster = pool.cluster_name
        infra_stack = self.names.infra(cluster)

        # Masters live where the infra stack put their persistent ENIs.
        enis = self.network.persistent_enis(cluster)
        networks = tuple(eni["SubnetId"] for eni in enis)
        pool = replace(pool, networks=networks)

        infra = self.stacks.get(infra_stack)
        if infra is None:
            raise StackOperationError(f"infra stack {infra_stack!r} not found")

        if not self.stacks.exists(self.names.elb(cluster)):
            self._create_load_balancer(pool, infra_stack, infra.get(StackOutput.DNS_ZONE))

        ami_id = self.network.ami_by_name(pool.os_version)
        elb_name = self.stacks.resource_id(self.names.elb(cluster), ELB_RESOURCE_TYPE)
        kube_api_url = self.get_kube_api_url(cluster)
        bucket = self._assets_bucket(cluster)
        subnets = self.network.describe_subnets(sorted(set(networks)))
        stack_name = self.names.master_pool(cluster)

        self.stacks.create(StackSpec(
            name=stack_name,
            template=render_master_pool(
                pool,
                ami_id=ami_id,
                elb_name=elb_name,
                assets_bucket=bucket,
                nodes_per_subnet=nodes_per_subnet(subnets),
                kube_api_url=kube_api_url,
                stack_name=stack_name,
                infra_stack=infra_stack,
                prefix=self.names.prefix,
            ),
            tags=stack_tags(
                cluster, StackType.MASTER_POOL,
                pool_name=pool.name,
                kube_version=pool.kube_version,
                os_version=pool.os_version,
                machine_type=pool.machine_type,
                kube_api_url=kube_api_url,
                assets_bucket=bucket,
                disk_size=pool.disk_size,
            ),
            capabilities=IAM_CAPABILITIES,
        ))

    def create_compute_pool(self, pool: ComputePool) -> None:
        """Create a compute pool inside the cluster's VPC.

        Compute pools in another VPC than the masters are not supported.
        """
        cluster = pool.cluster_name
        infra_stack = self.names.infra(cluster)

        infra = self.stacks.get(infra_stack)
        cluster_vpc = infra.get(StackOutput.VPC_ID) if infra else ""

        subnets = self.network.describe_subnets(pool.networks)
        vpc_id = vpc_of(subnets)
        if vpc_id != cluster_vpc:
            raise NetworkValidationError(f"networks must belong to {cluster_vpc!r} VPC")

        ami_id = self.network.ami_by_name(pool.os_version)
        kube_api_url = self.get_kube_api_url(cluster)
        stack_name = self.names.compute_pool(cluster, pool.name)

        self.stacks.create(StackSpec(
            name=stack_name,
            template=render_compute_pool(
                pool,
                ami_id=ami_id,
                kube_api_url=kube_api_url,
                stack_name=stack_name,
                infra_stack=infra_stack,
                prefix=self.names.prefix,
            ),
            tags=stack_tags(
                cluster, StackType.COMPUTE_POOL,
                pool_name=pool.name,
                kube_version=pool.kube_version,
                os_version=pool.os_version,
                machine_type=pool.machine_type,
                kube_api_url=kube_api_url,
                disk_size=pool.disk_size,
            ),
            capabilities=IAM_CAPABILITIES,
        ))

    def get_master_pools(self, cluster_name: str, name: str = "") -> list[MasterPool]:
        return [
            MasterPool(
                name=record.pool_name,
                cluster_name=record.cluster_name,
                labels=stack_labels(record),
                internal=record.get(StackOutput.INTERNAL) == "true",
                kube_version=record.get(StackTag.KUBE_VERSION, StackOutput.KUBE_VERSION),
                os_version=record.get(StackTag.OS_VERSION, StackOutput.OS_VERSION),
                machine_type=record.get(StackTag.MACHINE_TYPE, StackOutput.MACHINE_TYPE),
                disk_size=_disk_size(record),
                taints=kvs_to_labels(record.get(StackOutput.TAINTS)),
                kube_args=_kube_args(record),
                status=record.status_view(),
                kube_api_url=record.get(StackTag.KUBE_API_URL, StackOutput.KUBE_API_URL),
            )
            for record in self._pool_stacks(StackType.MASTER_POOL, cluster_name, name)
        ]

    def get_compute_pools(self, cluster_name: str, name: str = "") -> list[ComputePool]:
        return [
            ComputePool(
                name=record.pool_name,
                cluster_name=record.cluster_name,
                labels=stack_labels(record),
                internal=record.get(StackOutput.INTERNAL) == "true",
                kube_version=record.get(StackTag.KUBE_VERSION, StackOutput.KUBE_VERSION),
                os_version=record.get(StackTag.OS_VERSION, StackOutput.OS_VERSION),
                machine_type=record.get(StackTag.MACHINE_TYPE, StackOutput.MACHINE_TYPE),
                disk_size=_disk_size(record),
                taints=kvs_to_labels(record.get(StackOutput.TAINTS)),
                kube_args=_kube_args(record),
                status=record.status_view(),
            )
            for record in self._pool_stacks(StackType.COMPUTE_POOL, cluster_name, name)
        ]

    def delete_master_pool(self, cluster_name: str) -> None:
        for record in self.stacks.by_type(StackType.MASTER_POOL):
            if record.cluster_name == cluster_name:
                self.stacks.delete(record.stack_id)

    def delete_compute_pool(self, cluster_name: str, name: str = "") -> None:
        for record in self._pool_stacks(StackType.COMPUTE_POOL, cluster_name, name):
            if record.cluster_name == cluster_name and record.pool_name:
                self.stacks.delete(record.stack_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _pool_stacks(self, stack_type: StackType, cluster_name: str, name: str) -> list[StackRecord]:
        return [
            record
            for record in self.stacks.by_type(stack_type)
            if (not cluster_name or record.cluster_name == cluster_name)
            and (not name or record.pool_name == name)
        ]

    def _assets_bucket(self, cluster_name: str) -> str:
        infra_stack = self.names.infra(cluster_name)
        bucket = self.stacks.resource_id(infra_stack, BUCKET_RESOURCE_TYPE)
        if bucket:
            return bucket
        infra = self.stacks.get(infra_stack)
        return infra.get(StackOutput.ASSETS_BUCKET) if infra else ""

    def _create_load_balancer(self, pool: MasterPool, infra_stack: str, dns_zone: str) -> None:
        subnet_ids = pool.kube_api_networks or pool.networks
        subnets = self.network.describe_subnets(subnet_ids)
        vpc_id = vpc_of(subnets)
        log.info("Creating API load balancer for cluster {cluster}", cluster=pool.cluster_name)
        self.stacks.create(StackSpec(
            name=self.names.elb(pool.cluster_name),
            template=render_elb(
                pool,
                vpc_id,
                [s.subnet_id for s in subnets],
                infra_stack,
                dns_zone=dns_zone,
                prefix=self.names.prefix,
            ),
            tags=stack_tags(pool.cluster_name, StackType.ELB),
        ))
