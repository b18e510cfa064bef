"""EC2 and ELB lookups: subnets, persistent master ENIs, AMIs, load balancers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from loguru import logger

from kubestack.constants import MANAGED_TAG_VALUE, StackTag
from kubestack.exceptions import NetworkValidationError, UpstreamError

from .clients import aws_call

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_elb import ElasticLoadBalancingClient

log = logger.bind(component="network")

# Publisher of the CoreOS AMIs.
COREOS_ACCOUNT_ID: Final = "595879546273"
NODE_ID_TAG: Final = "NodeID"
STACK_NAME_TAG: Final = "aws:cloudformation:stack-name"


@dataclass(frozen=True, slots=True)
class Subnet:
    subnet_id: str
    availability_zone: str
    vpc_id: str

    @classmethod
    def from_boto(cls, subnet: dict[str, Any]) -> Subnet:
        return cls(
            subnet_id=subnet["SubnetId"],
            availability_zone=subnet.get("AvailabilityZone", ""),
            vpc_id=subnet.get("VpcId", ""),
        )


def vpc_of(subnets: Sequence[Subnet]) -> str:
    """The single VPC all ``subnets`` belong to.

    Raises:
        NetworkValidationError: No subnets, or subnets span several VPCs.
    """
    if not subnets:
        raise NetworkValidationError("no subnets found")
    vpcs = {s.vpc_id for s in subnets}
    if len(vpcs) != 1:
        raise NetworkValidationError(
            f"subnets do not belong to the same VPC: {', '.join(sorted(vpcs))}"
        )
    return vpcs.pop()


def format_kube_api_url(host: str) -> str:
    # Kubernetes does not accept mixed case DNS names.
    return "https://" + host.lower()


class Network:
    """Network level lookups for one cluster region."""

    def __init__(self, ec2: EC2Client, elb: ElasticLoadBalancingClient) -> None:
        self._ec2 = ec2
        self._elb = elb

    def describe_subnets(self, subnet_ids: Sequence[str]) -> list[Subnet]:
        if not subnet_ids:
            return []
        with aws_call("describe subnets"):
            response = self._ec2.describe_subnets(SubnetIds=list(subnet_ids))
        return [Subnet.from_boto(s) for s in response.get("Subnets", [])]

    def persistent_enis(self, cluster_name: str) -> list[dict[str, Any]]:
        """Master network interfaces created by the cluster infra stack."""
        filters = [
            {"Name": f"tag:{StackTag.MANAGED}", "Values": [MANAGED_TAG_VALUE]},
            {"Name": f"tag:{StackTag.CLUSTER_NAME}", "Values": [cluster_name]},
        ]
        with aws_call("describe network interfaces"):
            response = self._ec2.describe_network_interfaces(Filters=filters)
        return list(response.get("NetworkInterfaces", []))

    def persistent_ips(self, cluster_name: str) -> dict[str, str]:
        """Map master ``NodeID`` tag to the private address of its ENI."""
        ips: dict[str, str] = {}
        for eni in self.persistent_enis(cluster_name):
            tags = {t["Key"]: t["Value"] for t in eni.get("TagSet", [])}
            if node_id := tags.get(NODE_ID_TAG):
                ips[node_id] = eni["PrivateIpAddress"]
        return ips

    def ami_by_name(self, name: str) -> str:
        filters = [
            {"Name": "name", "Values": [name]},
            {"Name": "virtualization-type", "Values": ["hvm"]},
            {"Name": "state", "Values": ["available"]},
        ]
        with aws_call(f"describe image {name}"):
            response = self._ec2.describe_images(Owners=[COREOS_ACCOUNT_ID], Filters=filters)
        images = response.get("Images", [])
        if not images:
            raise UpstreamError(f"lookup of image {name!r}", LookupError(f"image {name!r} not found"))
        image_id = images[0]["ImageId"]
        log.debug("Resolved image {name} to {ami}", name=name, ami=image_id)
        return image_id

    def resource_tag(self, resource_id: str, key: str) -> str:
        filters = [
            {"Name": "resource-id", "Values": [resource_id]},
            {"Name": "key", "Values": [key]},
        ]
        with aws_call(f"describe tags of {resource_id}"):
            response = self._ec2.describe_tags(Filters=filters)
        for tag in response.get("Tags", []):
            if tag.get("Key") == key:
                return tag.get("Value", "")
        return ""

    def kube_api_url(self, elb_name: str) -> str:
        """API URL of the load balancer ``elb_name``."""
        with aws_call(f"describe load balancer {elb_name}"):
            response = self._elb.describe_load_balancers(LoadBalancerNames=[elb_name])
        descriptions = response.get("LoadBalancerDescriptions", [])
        if not descriptions:
            raise UpstreamError(
                f"lookup of load balancer {elb_name!r}", LookupError("no load balancers found"),
            )
        return format_kube_api_url(descriptions[0]["DNSName"])
