"""AWS provider configuration.

Immutable configuration dataclass for the AWS provider.
"""

from __future__ import annotations

from dataclasses import dataclass

from kubestack.constants import STACK_POLL_INTERVAL, STACK_TIMEOUT


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Example:
        >>> from kubestack.providers.aws import AWS
        >>> config = AWS(region="eu-west-2", stack_timeout=1800)

    Args:
        region: AWS region. When None, taken from the boto3 session and then
            from the instance metadata service.
        stack_prefix: Prefix of every stack name.
        poll_interval: Seconds between two stack status checks.
        stack_timeout: Seconds a single stack create or delete may take.
        metadata_timeout: Seconds allowed for an instance metadata request.
    """

    region: str | None = None
    stack_prefix: str = "keto"
    poll_interval: float = STACK_POLL_INTERVAL
    stack_timeout: float = STACK_TIMEOUT
    metadata_timeout: float = 2.0

    @property
    def type(self) -> str: return "aws"
