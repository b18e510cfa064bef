"""AWS CloudFormation provider for kubestack.

NOTE: Only the config class is imported at package level so reading
configuration does not pull in boto3. The provider loads on demand:

    from kubestack.providers.aws import AWS, AWSCloud

    cloud = AWSCloud.create(AWS(region="eu-west-2"))
"""

from typing import Any

from .config import AWS


def __getattr__(name: str) -> Any:
    if name == "AWSCloud":
        from .provider import AWSCloud

        return AWSCloud
    if name in ("AWSClients", "AWSModule"):
        from . import clients

        return getattr(clients, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["AWS", "AWSClients", "AWSCloud", "AWSModule"]
