"""CloudFormation templates for the four stack types.

Templates are built as plain dicts and serialised to JSON. Every value read
back by kubestack (pool attributes, labels, taints) is exposed as a stack
output so nodes and the controller can recover it from the stack alone.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping, Sequence
from typing import Any, Final

from kubestack.constants import StackOutput, StackType
from kubestack.model import Cluster, ComputePool, MasterPool, NodeNetworkAssignment, NodePool, labels_to_kvs

type Template = dict[str, Any]

COMPUTE_POOL_MAX_SIZE: Final = 100
MASTER_DATA_VOLUME_GB: Final = 10

ASSUME_ROLE_POLICY: Final[dict[str, Any]] = {
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": ["ec2.amazonaws.com"]},
            "Action": ["sts:AssumeRole"],
        }
    ]
}

MASTER_EC2_ACTIONS: Final = (
    "ec2:AttachNetworkInterface",
    "ec2:AttachVolume",
    "ec2:AuthorizeSecurityGroupEgress",
    "ec2:AuthorizeSecurityGroupIngress",
    "ec2:CreateRoute",
    "ec2:CreateSecurityGroup",
    "ec2:CreateTags",
    "ec2:CreateVolume",
    "ec2:DeleteRoute",
    "ec2:DeleteSecurityGroup",
    "ec2:DeleteVolume",
    "ec2:DescribeInstances",
    "ec2:DescribeNetworkInterfaces",
    "ec2:DescribeRouteTables",
    "ec2:DescribeSecurityGroups",
    "ec2:DescribeSubnets",
    "ec2:DescribeTags",
    "ec2:DescribeVolumes",
    "ec2:DescribeVpcs",
    "ec2:DetachNetworkInterface",
    "ec2:DetachVolume",
    "ec2:ModifyInstanceAttribute",
    "ec2:ModifyNetworkInterfaceAttribute",
    "ec2:RevokeSecurityGroupEgress",
    "ec2:RevokeSecurityGroupIngress",
    "elasticloadbalancing:ConfigureHealthCheck",
    "elasticloadbalancing:Create*",
    "elasticloadbalancing:Delete*",
    "elasticloadbalancing:DeregisterInstancesFromLoadBalancer",
    "elasticloadbalancing:DescribeLoadBalancerAttributes",
    "elasticloadbalancing:DescribeLoadBalancers",
    "elasticloadbalancing:ModifyLoadBalancerAttributes",
    "elasticloadbalancing:RegisterInstancesWithLoadBalancer",
    "elasticloadbalancing:SetLoadBalancerPoliciesForBackendServer",
)

COMPUTE_EC2_ACTIONS: Final = (
    "ec2:CreateTags",
    "ec2:DescribeInstances",
    "ec2:DescribeTags",
    "ec2:DescribeVpcs",
)


# =============================================================================
# Helpers
# =============================================================================


def _ref(name: str) -> dict[str, str]:
    return {"Ref": name}


def _import(infra_stack: str, output: StackOutput) -> dict[str, str]:
    return {"Fn::ImportValue": f"{infra_stack}-{output}"}


def _export(output: StackOutput) -> dict[str, Any]:
    return {"Name": {"Fn::Sub": f"${{AWS::StackName}}-{output}"}}


def _outputs(values: Mapping[StackOutput, Any]) -> dict[str, Any]:
    return {str(k): {"Value": v} for k, v in values.items()}


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _any_traffic(group: str, source: str) -> dict[str, Any]:
    return {
        "Type": "AWS::EC2::SecurityGroupIngress",
        "Properties": {
            "GroupId": _ref(group),
            "IpProtocol": "-1",
            "SourceSecurityGroupId": _ref(source),
            "FromPort": -1,
            "ToPort": -1,
        },
    }


def _security_group(description: str, vpc_id: str, name: str, cluster: str) -> dict[str, Any]:
    return {
        "Type": "AWS::EC2::SecurityGroup",
        "Properties": {
            "GroupDescription": description,
            "VpcId": vpc_id,
            "SecurityGroupIngress": [
                {"IpProtocol": "6", "CidrIp": "0.0.0.0/0", "FromPort": 22, "ToPort": 22},
            ],
            "SecurityGroupEgress": [
                {"IpProtocol": "-1", "CidrIp": "0.0.0.0/0", "FromPort": -1, "ToPort": -1},
            ],
            "Tags": [
                {"Key": "Name", "Value": name},
                {"Key": "KubernetesCluster", "Value": cluster},
            ],
        },
    }


def _alnum(value: str) -> str:
    return value.replace("-", "")


def _dump(template: Template) -> str:
    return json.dumps(template, indent=2, sort_keys=False)


# =============================================================================
# Infra stack
# =============================================================================


def render_infra(
    cluster: Cluster,
    vpc_id: str,
    assignments: Sequence[NodeNetworkAssignment],
    prefix: str = "keto",
) -> str:
    """Cluster wide resources: assets bucket, security groups, master ENIs and volumes."""
    name = cluster.name
    resources: dict[str, Any] = {
        "AssetsBucket": {
            "Type": "AWS::S3::Bucket",
            "Properties": {
                "LifecycleConfiguration": {
                    "Rules": [{"Id": "expiry", "ExpirationInDays": 1, "Status": "Enabled"}],
                },
            },
        },
        "MasterPoolSG": _security_group(
            f"Kubernetes cluster {name} SG for master nodepool", vpc_id,
            f"{prefix}-{name}-masterpool", name,
        ),
        "MasterPoolAllTrafficSGIn": _any_traffic("MasterPoolSG", "MasterPoolSG"),
        "MasterPoolComputeAPISGIn": {
            "Type": "AWS::EC2::SecurityGroupIngress",
            "Properties": {
                "GroupId": _ref("MasterPoolSG"),
                "IpProtocol": "6",
                "SourceSecurityGroupId": _ref("ComputePoolSG"),
                "FromPort": 443,
                "ToPort": 443,
            },
        },
        "ComputePoolSG": _security_group(
            f"Kubernetes cluster {name} SG for compute nodepools", vpc_id,
            f"{prefix}-{name}-computepool", name,
        ),
        "ComputePoolAllTrafficSGIn": _any_traffic("ComputePoolSG", "ComputePoolSG"),
        "MasterPoolToComputePoolSG": _any_traffic("ComputePoolSG", "MasterPoolSG"),
    }

    for a in assignments:
        resources[f"ENI{a.node_id}"] = {
            "Type": "AWS::EC2::NetworkInterface",
            "Properties": {
                "Description": f"Kubernetes cluster {name} master ENI",
                "GroupSet": [_ref("MasterPoolSG")],
                "SourceDestCheck": False,
                "SubnetId": a.subnet_id,
                "Tags": [
                    {"Key": "NodeID", "Value": str(a.node_id)},
                    {"Key": "Name", "Value": f"{prefix}-{name}-eni{a.node_id}"},
                ],
            },
        }
        resources[f"Volume{a.node_id}"] = {
            "Type": "AWS::EC2::Volume",
            "Properties": {
                "Encrypted": True,
                "Size": MASTER_DATA_VOLUME_GB,
                "VolumeType": "gp2",
                "AvailabilityZone": a.availability_zone,
                "Tags": [
                    {"Key": "NodeID", "Value": str(a.node_id)},
                    {"Key": "Name", "Value": f"{prefix}-{name}-volume{a.node_id}"},
                ],
            },
        }

    outputs = _outputs({
        StackOutput.CLUSTER_NAME: name,
        StackOutput.LABELS: labels_to_kvs(cluster.labels),
        StackOutput.INTERNAL: _bool(cluster.internal),
        StackOutput.STACK_TYPE: str(StackType.INFRA),
    })
    if cluster.dns_zone:
        outputs.update(_outputs({StackOutput.DNS_ZONE: cluster.dns_zone}))
    outputs[StackOutput.VPC_ID] = {"Value": vpc_id, "Export": _export(StackOutput.VPC_ID)}
    outputs[StackOutput.MASTER_POOL_SG] = {
        "Value": _ref("MasterPoolSG"), "Export": _export(StackOutput.MASTER_POOL_SG),
    }
    outputs[StackOutput.COMPUTE_POOL_SG] = {
        "Value": _ref("ComputePoolSG"), "Export": _export(StackOutput.COMPUTE_POOL_SG),
    }
    outputs[StackOutput.ASSETS_BUCKET] = {
        "Value": _ref("AssetsBucket"), "Export": _export(StackOutput.ASSETS_BUCKET),
    }

    return _dump({
        "Description": f"Kubernetes cluster '{name}' infra stack",
        "Resources": resources,
        "Outputs": outputs,
    })


# =============================================================================
# ELB stack
# =============================================================================


def render_elb(
    pool: MasterPool,
    vpc_id: str,
    subnets: Sequence[str],
    infra_stack: str,
    dns_zone: str = "",
    prefix: str = "keto",
) -> str:
    """Load balancer in front of the master pool's API servers."""
    name = pool.cluster_name
    dns_attr = "DNSName" if pool.internal else "CanonicalHostedZoneName"
    resources: dict[str, Any] = {
        "ELBSG": {
            "Type": "AWS::EC2::SecurityGroup",
            "Properties": {
                "GroupDescription": f"Kubernetes cluster {name} SG for API ELB",
                "VpcId": vpc_id,
                "SecurityGroupIngress": [
                    {"IpProtocol": "6", "CidrIp": "0.0.0.0/0", "FromPort": 443, "ToPort": 443},
                ],
                "Tags": [{"Key": "Name", "Value": f"{prefix}-{name}-kubeapi"}],
            },
        },
        "ELBtoMasterPoolTrafficSG": {
            "Type": "AWS::EC2::SecurityGroupIngress",
            "Properties": {
                "GroupId": _import(infra_stack, StackOutput.MASTER_POOL_SG),
                "IpProtocol": "6",
                "SourceSecurityGroupId": _ref("ELBSG"),
                "FromPort": 443,
                "ToPort": 443,
            },
        },
        "ELB": {
            "Type": "AWS::ElasticLoadBalancing::LoadBalancer",
            "Properties": {
                "CrossZone": True,
                "Subnets": sorted(subnets),
                "SecurityGroups": [_ref("ELBSG")],
                "HealthCheck": {
                    "Target": "TCP:443",
                    "HealthyThreshold": 2,
                    "Interval": 10,
                    "Timeout": 5,
                    "UnhealthyThreshold": 2,
                },
                "ConnectionDrainingPolicy": {"Enabled": True, "Timeout": 30},
                "Listeners": [
                    {
                        "LoadBalancerPort": 443,
                        "Protocol": "TCP",
                        "InstancePort": 443,
                        "InstanceProtocol": "TCP",
                    }
                ],
                "ConnectionSettings": {"IdleTimeout": 600},
                "Scheme": "internal" if pool.internal else "internet-facing",
            },
        },
    }

    if dns_zone:
        record = f"kube-{name}.{dns_zone}"
        resources["ELBDNS"] = {
            "Type": "AWS::Route53::RecordSetGroup",
            "Properties": {
                "HostedZoneName": f"{dns_zone}.",
                "RecordSets": [
                    {
                        "Name": record,
                        "Type": "A",
                        "AliasTarget": {
                            "HostedZoneId": {"Fn::GetAtt": ["ELB", "CanonicalHostedZoneNameID"]},
                            "DNSName": {"Fn::GetAtt": ["ELB", dns_attr]},
                        },
                    }
                ],
            },
        }
        elb_dns: Any = record
    else:
        elb_dns = {"Fn::GetAtt": ["ELB", dns_attr]}

    return _dump({
        "Description": f"Kubernetes cluster '{name}' ELB stack",
        "Resources": resources,
        "Outputs": _outputs({
            StackOutput.ELB: _ref("ELB"),
            StackOutput.ELB_DNS: elb_dns,
            StackOutput.CLUSTER_NAME: name,
            StackOutput.STACK_TYPE: str(StackType.ELB),
        }),
    })


# =============================================================================
# Pool stacks
# =============================================================================


def _instance_profile(policy_name: str, statements: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "InstanceRole": {
            "Type": "AWS::IAM::Role",
            "Properties": {"AssumeRolePolicyDocument": ASSUME_ROLE_POLICY, "Path": "/"},
        },
        "InstanceProfile": {
            "Type": "AWS::IAM::InstanceProfile",
            "Properties": {"Roles": [_ref("InstanceRole")], "Path": "/"},
        },
        "RolePolicies": {
            "Type": "AWS::IAM::Policy",
            "Properties": {
                "PolicyName": policy_name,
                "Roles": [_ref("InstanceRole")],
                "PolicyDocument": {"Statement": statements},
            },
        },
    }


def _describe_own_stack(stack_name: str) -> dict[str, Any]:
    arn = f"arn:aws:cloudformation:${{AWS::Region}}:${{AWS::AccountId}}:stack/{stack_name}/*"
    return {
        "Resource": [{"Fn::Sub": arn}],
        "Effect": "Allow",
        "Action": ["cloudformation:DescribeStacks"],
    }


def _launch_configuration(
    pool: NodePool,
    ami_id: str,
    security_group: dict[str, str],
) -> dict[str, Any]:
    return {
        "Type": "AWS::AutoScaling::LaunchConfiguration",
        "Properties": {
            "AssociatePublicIpAddress": not pool.internal,
            "IamInstanceProfile": _ref("InstanceProfile"),
            "ImageId": ami_id,
            "InstanceMonitoring": False,
            "InstanceType": pool.machine_type,
            "KeyName": pool.ssh_key,
            "SecurityGroups": [security_group],
            "BlockDeviceMappings": [
                {
                    "DeviceName": "/dev/xvda",
                    "Ebs": {
                        "VolumeSize": pool.disk_size,
                        "DeleteOnTermination": True,
                        "VolumeType": "gp2",
                    },
                }
            ],
            "UserData": base64.b64encode(pool.user_data).decode(),
        },
    }


def _asg_tags(cluster: str, name: str) -> list[dict[str, Any]]:
    return [
        {"Key": "Name", "Value": name, "PropagateAtLaunch": True},
        {"Key": "KubernetesCluster", "Value": cluster, "PropagateAtLaunch": True},
    ]


def _pool_outputs(pool: NodePool, stack_type: StackType, kube_api_url: str) -> dict[StackOutput, Any]:
    return {
        StackOutput.CLUSTER_NAME: pool.cluster_name,
        StackOutput.POOL_NAME: pool.name,
        StackOutput.OS_VERSION: pool.os_version,
        StackOutput.KUBE_API_URL: kube_api_url,
        StackOutput.MACHINE_TYPE: pool.machine_type,
        StackOutput.KUBE_VERSION: pool.kube_version,
        StackOutput.DISK_SIZE: str(pool.disk_size),
        StackOutput.LABELS: labels_to_kvs(pool.labels),
        StackOutput.INTERNAL: _bool(pool.internal),
        StackOutput.STACK_TYPE: str(stack_type),
        StackOutput.TAINTS: labels_to_kvs(pool.taints),
        StackOutput.KUBELET_EXTRA_ARGS: pool.kube_args.kubelet,
    }


def render_master_pool(
    pool: MasterPool,
    *,
    ami_id: str,
    elb_name: str,
    assets_bucket: str,
    nodes_per_subnet: Mapping[str, int],
    kube_api_url: str,
    stack_name: str,
    infra_stack: str,
    prefix: str = "keto",
) -> str:
    """Master pool: one auto scaling group per subnet, sized by the node distribution."""
    cluster = pool.cluster_name
    statements: list[dict[str, Any]] = [
        {
            "Resource": "*",
            "Effect": "Allow",
            "Action": [
                "autoscaling:DescribeAutoScalingGroups",
                "ec2:CreateTags",
                "ec2:DescribeTags",
                "ec2:DescribeInstances",
            ],
        },
        {"Resource": f"arn:aws:s3:::{assets_bucket}", "Effect": "Allow", "Action": ["s3:List*"]},
        {"Resource": f"arn:aws:s3:::{assets_bucket}/*", "Effect": "Allow", "Action": ["s3:Get*"]},
        _describe_own_stack(stack_name),
        {"Resource": "*", "Effect": "Allow", "Action": list(MASTER_EC2_ACTIONS)},
    ]
    resources = _instance_profile(f"kube-cluster-{cluster}-master-policy", statements)

    security_group = _import(infra_stack, StackOutput.MASTER_POOL_SG)
    for subnet in sorted(nodes_per_subnet):
        count = nodes_per_subnet[subnet]
        suffix = _alnum(subnet)
        resources[f"ASG{suffix}"] = {
            "Type": "AWS::AutoScaling::AutoScalingGroup",
            "Properties": {
                "LaunchConfigurationName": _ref(f"LaunchConfiguration{suffix}"),
                "VPCZoneIdentifier": [subnet],
                "LoadBalancerNames": [elb_name],
                "TerminationPolicies": ["OldestInstance", "Default"],
                "MaxSize": count,
                "MinSize": count,
                "Tags": _asg_tags(cluster, f"{prefix}-{cluster}-master"),
            },
        }
        resources[f"LaunchConfiguration{suffix}"] = _launch_configuration(pool, ami_id, security_group)

    outputs = _pool_outputs(pool, StackType.MASTER_POOL, kube_api_url)
    outputs.update({
        StackOutput.ASSETS_BUCKET: assets_bucket,
        StackOutput.APISERVER_EXTRA_ARGS: pool.kube_args.apiserver,
        StackOutput.CONTROLLER_MANAGER_EXTRA_ARGS: pool.kube_args.controller_manager,
        StackOutput.SCHEDULER_EXTRA_ARGS: pool.kube_args.scheduler,
    })

    return _dump({
        "Description": f"Kubernetes cluster '{cluster}' master nodepool stack",
        "Resources": resources,
        "Outputs": _outputs(outputs),
    })


def render_compute_pool(
    pool: ComputePool,
    *,
    ami_id: str,
    kube_api_url: str,
    stack_name: str,
    infra_stack: str,
    prefix: str = "keto",
) -> str:
    """Compute pool: one auto scaling group spanning the pool's subnets."""
    cluster = pool.cluster_name
    statements: list[dict[str, Any]] = [
        {"Resource": "*", "Effect": "Allow", "Action": list(COMPUTE_EC2_ACTIONS)},
        _describe_own_stack(stack_name),
    ]
    resources = _instance_profile(f"kube-cluster-{cluster}-compute-policy", statements)
    resources["ASG"] = {
        "Type": "AWS::AutoScaling::AutoScalingGroup",
        "Properties": {
            "LaunchConfigurationName": _ref("LaunchConfiguration"),
            "VPCZoneIdentifier": sorted(pool.networks),
            "TerminationPolicies": ["OldestInstance", "Default"],
            "MaxSize": COMPUTE_POOL_MAX_SIZE,
            "MinSize": pool.size,
            "Tags": _asg_tags(cluster, f"{prefix}-{cluster}-{pool.name}"),
        },
    }
    resources["LaunchConfiguration"] = _launch_configuration(
        pool, ami_id, _import(infra_stack, StackOutput.COMPUTE_POOL_SG),
    )

    return _dump({
        "Description": f"Kubernetes cluster '{cluster}' compute nodepool stack",
        "Resources": resources,
        "Outputs": _outputs(_pool_outputs(pool, StackType.COMPUTE_POOL, kube_api_url)),
    })
