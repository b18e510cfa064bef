"""Node side of the AWS provider.

Runs on a cluster instance: finds the stack that launched the instance and
reads the node's configuration and the cluster assets from it.
"""

from __future__ import annotations

from functools import cached_property
from typing import Any, Final

import httpx
from loguru import logger

from kubestack.constants import StackOutput
from kubestack.exceptions import ConfigurationError, StackOperationError, UpstreamError
from kubestack.model import Assets, KubeArgs, NodeData, kvs_to_labels

from .network import STACK_NAME_TAG, Network
from .s3 import AssetStore
from .stacks import StackRecord, Stacks

log = logger.bind(component="node")

IMDS_URL: Final = "http://169.254.169.254/latest"
IMDS_TOKEN_TTL: Final = "21600"


class InstanceMetadata:
    """Minimal EC2 instance metadata (IMDSv2) client."""

    def __init__(self, base_url: str = IMDS_URL, timeout: float = 2.0) -> None:
        self.base_url = base_url
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def identity(self) -> dict[str, Any]:
        """The instance identity document."""
        try:
            with self._client() as client:
                token = client.put(
                    "/api/token",
                    headers={"X-aws-ec2-metadata-token-ttl-seconds": IMDS_TOKEN_TTL},
                )
                token.raise_for_status()
                response = client.get(
                    "/dynamic/instance-identity/document",
                    headers={"X-aws-ec2-metadata-token": token.text},
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise UpstreamError("read instance metadata", e) from e

    def instance_id(self) -> str:
        return self.identity()["instanceId"]

    def region(self) -> str:
        try:
            return self.identity()["region"]
        except UpstreamError as e:
            raise ConfigurationError("unable to determine AWS region") from e


class AWSNode:
    """NodeAPI implementation for instances launched by a pool stack."""

    def __init__(
        self,
        stacks: Stacks,
        network: Network,
        assets: AssetStore,
        metadata: InstanceMetadata | None = None,
    ) -> None:
        self._stacks = stacks
        self._network = network
        self._assets = assets
        self._metadata = metadata or InstanceMetadata()

    @cached_property
    def _stack(self) -> StackRecord:
        instance_id = self._metadata.instance_id()
        stack_name = self._network.resource_tag(instance_id, STACK_NAME_TAG)
        if not stack_name:
            raise StackOperationError(f"{STACK_NAME_TAG} tag not found on instance {instance_id}")
        record = self._stacks.get(stack_name)
        if record is None:
            raise StackOperationError(f"failed to describe {stack_name!r} stack")
        log.debug("Instance {instance} belongs to stack {stack}", instance=instance_id, stack=stack_name)
        return record

    def get_node_data(self) -> NodeData:
        outputs = self._stack.outputs
        return NodeData(
            kube_api_url=outputs.get(StackOutput.KUBE_API_URL, ""),
            cluster_name=outputs.get(StackOutput.CLUSTER_NAME, ""),
            kube_version=outputs.get(StackOutput.KUBE_VERSION, ""),
            labels=kvs_to_labels(outputs.get(StackOutput.LABELS, "")),
            taints=kvs_to_labels(outputs.get(StackOutput.TAINTS, "")),
            kube_args=KubeArgs(
                kubelet=outputs.get(StackOutput.KUBELET_EXTRA_ARGS, ""),
                apiserver=outputs.get(StackOutput.APISERVER_EXTRA_ARGS, ""),
                controller_manager=outputs.get(StackOutput.CONTROLLER_MANAGER_EXTRA_ARGS, ""),
                scheduler=outputs.get(StackOutput.SCHEDULER_EXTRA_ARGS, ""),
            ),
        )

    def get_assets(self) -> Assets:
        bucket = self._stack.outputs.get(StackOutput.ASSETS_BUCKET, "")
        if not bucket:
            raise StackOperationError(f"stack {self._stack.name!r} has no assets bucket output")
        return self._assets.get(bucket)
