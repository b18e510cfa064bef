"""Centralized constants and enums for kubestack.

All tag keys, output keys, stack types and defaults live here so the
controller and the provisioning engines agree on the same strings.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Labels applied by the controller
# =============================================================================

CLUSTER_NAME_LABEL: Final = "cluster-name"
POOL_NAME_LABEL: Final = "pool-name"


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_KUBE_VERSION: Final = "v1.6.1"
DEFAULT_COMPUTE_POOL_SIZE: Final = 1
DEFAULT_DISK_SIZE_GB: Final = 10
# Only meaningful for AWS for now, the name is looked up as an AMI name.
DEFAULT_OS_VERSION: Final = "CoreOS-beta-1325.2.0-hvm"


# =============================================================================
# Stack Tags
# =============================================================================


class StackTag(StrEnum):
    """CloudFormation tag keys written on every managed stack."""

    MANAGED = "managed-by-keto"
    CLUSTER_NAME = "cluster-name"
    STACK_TYPE = "stack-type"
    POOL_NAME = "pool-name"
    KUBE_VERSION = "kube-version"
    OS_VERSION = "coreos-version"
    MACHINE_TYPE = "machine-type"
    KUBE_API_URL = "kube-api-url"
    ASSETS_BUCKET = "assets-bucket-name"
    DISK_SIZE = "disk-size"


MANAGED_TAG_VALUE: Final = "true"


# =============================================================================
# Stack Outputs
# =============================================================================


class StackOutput(StrEnum):
    """CloudFormation output keys read back by the controller and by nodes."""

    VPC_ID = "VpcID"
    MASTER_POOL_SG = "MasterPoolSG"
    COMPUTE_POOL_SG = "ComputePoolSG"
    ASSETS_BUCKET = "AssetsBucketName"
    CLUSTER_NAME = "ClusterName"
    POOL_NAME = "NodePoolName"
    STACK_TYPE = "StackType"
    OS_VERSION = "CoreOSVersion"
    KUBE_VERSION = "KubeVersion"
    KUBE_API_URL = "KubeAPIURL"
    MACHINE_TYPE = "MachineType"
    DISK_SIZE = "DiskSize"
    LABELS = "Labels"
    TAINTS = "Taints"
    INTERNAL = "InternalCluster"
    DNS_ZONE = "DNSZone"
    ELB = "ELB"
    ELB_DNS = "ELBDNS"
    KUBELET_EXTRA_ARGS = "KubeletExtraArgs"
    APISERVER_EXTRA_ARGS = "APIServerExtraArgs"
    CONTROLLER_MANAGER_EXTRA_ARGS = "ControllerManagerExtraArgs"
    SCHEDULER_EXTRA_ARGS = "SchedulerExtraArgs"


# =============================================================================
# Stack Types
# =============================================================================


class StackType(StrEnum):
    """Classifier stored in the stack-type tag."""

    INFRA = "infra"
    ELB = "elb"
    MASTER_POOL = "masterpool"
    COMPUTE_POOL = "computepool"


class Partition(StrEnum):
    """Blue/green slot of a pool stack. Only BLUE is used today."""

    BLUE = "blue"
    GREEN = "green"


# Stack attributes that never surface as user labels.
RESERVED_ATTRIBUTES: Final[frozenset[str]] = frozenset({
    StackTag.STACK_TYPE,
    StackTag.MANAGED,
    StackTag.KUBE_VERSION,
    StackTag.KUBE_API_URL,
    StackTag.OS_VERSION,
    StackTag.ASSETS_BUCKET,
    StackTag.MACHINE_TYPE,
    StackTag.DISK_SIZE,
    *StackOutput,
})


# =============================================================================
# Stack Status
# =============================================================================

STATUS_COMPLETE_SUFFIX: Final = "COMPLETE"
STATUS_IN_PROGRESS_SUFFIX: Final = "IN_PROGRESS"
STATUS_FAILED_SUFFIX: Final = "FAILED"
STATUS_ROLLBACK: Final = "ROLLBACK"

STACK_POLL_INTERVAL: Final = 5
STACK_TIMEOUT: Final = 3600


# =============================================================================
# Assets
# =============================================================================


class AssetObject(StrEnum):
    """Object names of the certificate authority material."""

    ETCD_CA_CERT = "etcd_ca.crt"
    ETCD_CA_KEY = "etcd_ca.key"
    KUBE_CA_CERT = "kube_ca.crt"
    KUBE_CA_KEY = "kube_ca.key"


ASSETS_EXPIRATION_SECONDS: Final = 3600
