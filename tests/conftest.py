"""In-memory AWS service fakes.

The fakes implement just the client calls kubestack makes, with the
response shapes boto3 returns. CloudFormation evaluates outputs and
resources from the submitted template, and network interfaces declared in
a template show up in EC2 with the stack tags propagated, like the real
services do.
"""

from __future__ import annotations

import io
import itertools
import json
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from botocore.exceptions import ClientError

from kubestack.providers.aws.clients import AWSClients
from kubestack.providers.aws.config import AWS
from kubestack.providers.aws.provider import AWSCloud

VPC = "vpc-1"
OTHER_VPC = "vpc-2"


def client_error(code: str, message: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


# =============================================================================
# CloudFormation
# =============================================================================


def _output_value(stack: str, value: Any) -> str:
    match value:
        case str():
            return value
        case {"Ref": ref}:
            return f"{stack}-{ref}"
        case {"Fn::GetAtt": [resource, attr]}:
            return f"{stack}-{resource}-{attr}"
        case _:
            return json.dumps(value)


class FakePaginator:
    def __init__(self, pages: list[list[dict[str, Any]]]) -> None:
        self._pages = pages

    def paginate(self) -> Iterator[dict[str, Any]]:
        for page in self._pages:
            yield {"Stacks": page}


class FakeCloudFormation:
    """Stacks settle immediately unless a status script is queued for them."""

    page_size = 2

    def __init__(self, ec2: FakeEC2 | None = None) -> None:
        self.ec2 = ec2
        self.stacks: dict[str, dict[str, Any]] = {}
        self.resources: dict[str, list[dict[str, Any]]] = {}
        self.scripts: dict[str, list[str]] = {}
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.invalid_templates = False
        self.stuck_deletes: set[str] = set()
        self._ids = itertools.count(1)

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def add_stack(
        self,
        name: str,
        status: str = "CREATE_COMPLETE",
        tags: dict[str, str] | None = None,
        outputs: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        stack = {
            "StackId": f"arn:aws:cloudformation:eu-west-2:123:stack/{name}/{next(self._ids)}",
            "StackName": name,
            "StackStatus": status,
            "CreationTime": datetime(2024, 1, 1, tzinfo=UTC),
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
            "Outputs": [{"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()],
        }
        self.stacks[name] = stack
        return stack

    def script(self, name: str, *statuses: str) -> None:
        """Statuses reported by the next describe calls of ``name``."""
        self.scripts[name] = list(statuses)

    def template(self, name: str) -> dict[str, Any]:
        return json.loads(self.stacks[name]["TemplateBody"])

    def tags(self, name: str) -> dict[str, str]:
        return {t["Key"]: t["Value"] for t in self.stacks[name]["Tags"]}

    def _find(self, name: str) -> dict[str, Any] | None:
        if name in self.stacks:
            return self.stacks[name]
        return next((s for s in self.stacks.values() if s["StackId"] == name), None)

    # -------------------------------------------------------------------------
    # Client API
    # -------------------------------------------------------------------------

    def describe_stacks(self, StackName: str) -> dict[str, Any]:
        stack = self._find(StackName)
        if stack is None:
            raise client_error("ValidationError", f"Stack with id {StackName} does not exist", "DescribeStacks")
        script = self.scripts.get(stack["StackName"])
        if script:
            stack["StackStatus"] = script.pop(0)
        return {"Stacks": [stack]}

    def get_paginator(self, operation: str) -> FakePaginator:
        assert operation == "describe_stacks"
        stacks = list(self.stacks.values())
        pages = [stacks[i:i + self.page_size] for i in range(0, len(stacks), self.page_size)]
        return FakePaginator(pages or [[]])

    def validate_template(self, TemplateBody: str) -> dict[str, Any]:
        if self.invalid_templates:
            raise client_error("ValidationError", "Template format error", "ValidateTemplate")
        json.loads(TemplateBody)
        return {}

    def create_stack(
        self,
        StackName: str,
        TemplateBody: str,
        Tags: list[dict[str, str]],
        Capabilities: list[str],
    ) -> dict[str, Any]:
        if StackName in self.stacks:
            raise client_error("AlreadyExistsException", f"Stack [{StackName}] already exists", "CreateStack")
        template = json.loads(TemplateBody)
        tags = {t["Key"]: t["Value"] for t in Tags}
        outputs = {
            key: _output_value(StackName, out["Value"])
            for key, out in template.get("Outputs", {}).items()
        }
        stack = self.add_stack(StackName, tags=tags, outputs=outputs)
        stack["TemplateBody"] = TemplateBody
        stack["Capabilities"] = Capabilities
        self.resources[StackName] = [
            {
                "LogicalResourceId": logical,
                "PhysicalResourceId": f"{StackName}-{logical}",
                "ResourceType": resource["Type"],
            }
            for logical, resource in template.get("Resources", {}).items()
        ]
        if self.ec2 is not None:
            self.ec2.attach_stack_resources(template.get("Resources", {}), tags)
        self.created.append(StackName)
        return {"StackId": stack["StackId"]}

    def delete_stack(self, StackName: str) -> dict[str, Any]:
        stack = self._find(StackName)
        if stack is None:
            return {}
        name = stack["StackName"]
        self.deleted.append(name)
        if name in self.stuck_deletes:
            stack["StackStatus"] = "DELETE_IN_PROGRESS"
            return {}
        del self.stacks[name]
        self.resources.pop(name, None)
        return {}

    def describe_stack_resources(self, StackName: str) -> dict[str, Any]:
        stack = self._find(StackName)
        if stack is None:
            raise client_error(
                "ValidationError", f"Stack with id {StackName} does not exist", "DescribeStackResources",
            )
        return {"StackResources": self.resources.get(stack["StackName"], [])}


# =============================================================================
# EC2, ELB, S3
# =============================================================================


class FakeEC2:
    def __init__(self) -> None:
        self.subnets: dict[str, dict[str, str]] = {}
        self.interfaces: list[dict[str, Any]] = []
        self.images: dict[str, str] = {"CoreOS-beta-1325.2.0-hvm": "ami-coreos"}
        self.resource_tags: dict[str, dict[str, str]] = {}

    def add_subnet(self, subnet_id: str, zone: str, vpc_id: str = VPC) -> None:
        self.subnets[subnet_id] = {"SubnetId": subnet_id, "AvailabilityZone": zone, "VpcId": vpc_id}

    def attach_stack_resources(self, resources: dict[str, Any], stack_tags: dict[str, str]) -> None:
        for resource in resources.values():
            if resource["Type"] != "AWS::EC2::NetworkInterface":
                continue
            props = resource["Properties"]
            tags = {**stack_tags, **{t["Key"]: t["Value"] for t in props.get("Tags", [])}}
            n = len(self.interfaces)
            self.interfaces.append({
                "NetworkInterfaceId": f"eni-{n}",
                "SubnetId": props["SubnetId"],
                "PrivateIpAddress": f"10.0.0.{10 + n}",
                "TagSet": [{"Key": k, "Value": v} for k, v in tags.items()],
            })

    def describe_subnets(self, SubnetIds: list[str]) -> dict[str, Any]:
        missing = [s for s in SubnetIds if s not in self.subnets]
        if missing:
            raise client_error(
                "InvalidSubnetID.NotFound", f"The subnet ID '{missing[0]}' does not exist", "DescribeSubnets",
            )
        return {"Subnets": [self.subnets[s] for s in dict.fromkeys(SubnetIds)]}

    def describe_network_interfaces(self, Filters: list[dict[str, Any]]) -> dict[str, Any]:
        def matches(eni: dict[str, Any]) -> bool:
            tags = {t["Key"]: t["Value"] for t in eni["TagSet"]}
            for f in Filters:
                key = f["Name"].removeprefix("tag:")
                if tags.get(key) not in f["Values"]:
                    return False
            return True

        return {"NetworkInterfaces": [eni for eni in self.interfaces if matches(eni)]}

    def describe_images(self, Owners: list[str], Filters: list[dict[str, Any]]) -> dict[str, Any]:
        name = next(f["Values"][0] for f in Filters if f["Name"] == "name")
        image = self.images.get(name)
        return {"Images": [{"ImageId": image, "Name": name}] if image else []}

    def describe_tags(self, Filters: list[dict[str, Any]]) -> dict[str, Any]:
        resource = next(f["Values"][0] for f in Filters if f["Name"] == "resource-id")
        key = next(f["Values"][0] for f in Filters if f["Name"] == "key")
        tags = self.resource_tags.get(resource, {})
        return {"Tags": [{"Key": key, "Value": tags[key], "ResourceId": resource}] if key in tags else []}


class FakeELB:
    def describe_load_balancers(self, LoadBalancerNames: list[str]) -> dict[str, Any]:
        return {
            "LoadBalancerDescriptions": [
                {"LoadBalancerName": n, "DNSName": f"{n}.eu-west-2.ELB.amazonaws.com"}
                for n in LoadBalancerNames
            ]
        }


class FakeS3:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.expires: dict[tuple[str, str], datetime] = {}

    def put_object(self, Bucket: str, Key: str, Body: bytes, Expires: datetime) -> dict[str, Any]:
        self.objects[(Bucket, Key)] = Body
        self.expires[(Bucket, Key)] = Expires
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", "The specified key does not exist.", "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def delete_objects(self, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        for obj in Delete["Objects"]:
            self.objects.pop((Bucket, obj["Key"]), None)
        return {}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ec2() -> FakeEC2:
    fake = FakeEC2()
    fake.add_subnet("subnet-a", "eu-west-2a")
    fake.add_subnet("subnet-b", "eu-west-2b")
    fake.add_subnet("subnet-c", "eu-west-2c")
    fake.add_subnet("subnet-x", "eu-west-2a", vpc_id=OTHER_VPC)
    return fake


@pytest.fixture
def cloudformation(ec2: FakeEC2) -> FakeCloudFormation:
    return FakeCloudFormation(ec2)


@pytest.fixture
def s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def aws_clients(cloudformation: FakeCloudFormation, ec2: FakeEC2, s3: FakeS3) -> AWSClients:
    return AWSClients(cloudformation=cloudformation, ec2=ec2, elb=FakeELB(), s3=s3)  # type: ignore[arg-type]


@pytest.fixture
def aws_cloud(aws_clients: AWSClients) -> AWSCloud:
    return AWSCloud(AWS(region="eu-west-2", poll_interval=0, stack_timeout=5), aws_clients)
