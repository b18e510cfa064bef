"""kubestack - Provision Kubernetes clusters on cloud infrastructure stacks.

Example:

    from kubestack import Cluster, ComputePool, default_registry, Controller
    from kubestack.assets import read_assets

    provider = default_registry().init("aws")
    controller = Controller(provider)

    controller.create_cluster(
        Cluster(name="prod", compute_pools=(ComputePool(name="workers", size=3),)),
        read_assets("./assets"),
    )
"""

from kubestack.config import Settings, build_controller, load_config, resolve_settings
from kubestack.controller import Controller, Defaults
from kubestack.exceptions import (
    AlreadyExistsError,
    DoesNotExistError,
    KubestackError,
    NotImplementedCapabilityError,
    StepFailedError,
)
from kubestack.logging import LogConfig, setup_logging, teardown_logging
from kubestack.model import (
    Assets,
    Cluster,
    ComputePool,
    KubeArgs,
    MasterPool,
    NodeData,
    NodePool,
    Status,
)
from kubestack.providers import Capability, ProviderRegistry, default_registry

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "Assets",
    "Capability",
    "Cluster",
    "ComputePool",
    "Controller",
    "Defaults",
    "DoesNotExistError",
    "KubeArgs",
    "KubestackError",
    "LogConfig",
    "MasterPool",
    "NodeData",
    "NodePool",
    "NotImplementedCapabilityError",
    "ProviderRegistry",
    "Settings",
    "Status",
    "StepFailedError",
    "build_controller",
    "default_registry",
    "load_config",
    "resolve_settings",
    "setup_logging",
    "teardown_logging",
]
