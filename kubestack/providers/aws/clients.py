"""AWS clients with dependency injection.

Provides the boto3 session and the four service clients the engine talks to,
plus the helper that turns botocore failures into kubestack errors.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from injector import Binder, Module, provider, singleton
from loguru import logger

from kubestack.exceptions import UpstreamError

from .config import AWS

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_elb import ElasticLoadBalancingClient
    from mypy_boto3_s3 import S3Client

log = logger.bind(component="aws")


# =============================================================================
# Clients
# =============================================================================


@dataclass(frozen=True, slots=True)
class AWSClients:
    """Service clients bound to one region."""

    cloudformation: CloudFormationClient
    ec2: EC2Client
    elb: ElasticLoadBalancingClient
    s3: S3Client


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", "")


@contextmanager
def aws_call(operation: str) -> Iterator[None]:
    """Wrap botocore failures of ``operation`` in ``UpstreamError``."""
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        log.debug("{operation} failed: {error}", operation=operation, error=e)
        raise UpstreamError(operation, e) from e


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module that provides the AWS session and clients.

    Usage:
        >>> from injector import Injector
        >>> from kubestack.providers.aws import AWS, AWSClients, AWSModule
        >>>
        >>> injector = Injector([AWSModule(AWS(region="eu-west-2"))])
        >>> clients = injector.get(AWSClients)
        >>> clients.cloudformation.describe_stacks()
    """

    def __init__(self, config: AWS) -> None:
        self._config = config

    def configure(self, binder: Binder) -> None:
        binder.bind(AWS, to=self._config)

    @singleton
    @provider
    def provide_session(self, config: AWS) -> boto3.Session:
        """Provide singleton boto3 session, resolving the region if unset."""
        session = boto3.Session(region_name=config.region)
        if session.region_name:
            return session

        # Running on an instance without a configured region.
        from .node import InstanceMetadata

        region = InstanceMetadata(timeout=config.metadata_timeout).region()
        log.debug("Region resolved from instance metadata: {region}", region=region)
        return boto3.Session(region_name=region)

    @singleton
    @provider
    def provide_clients(self, session: boto3.Session) -> AWSClients:
        """Provide the service clients."""
        client: Any = session.client
        return AWSClients(
            cloudformation=client("cloudformation"),
            ec2=client("ec2"),
            elb=client("elb"),
            s3=client("s3"),
        )


__all__ = [
    "AWSClients",
    "AWSModule",
    "aws_call",
    "error_code",
    "error_message",
]
