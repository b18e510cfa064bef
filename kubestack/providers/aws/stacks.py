"""CloudFormation stacks as the state store.

Every resource kubestack creates lives in a stack tagged ``managed-by-keto``.
Stack names, tags and outputs are the only persisted state; this module
names, tags, discovers, creates and deletes those stacks and polls them
until they settle.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from kubestack.constants import (
    MANAGED_TAG_VALUE,
    RESERVED_ATTRIBUTES,
    STACK_POLL_INTERVAL,
    STACK_TIMEOUT,
    STATUS_COMPLETE_SUFFIX,
    STATUS_FAILED_SUFFIX,
    STATUS_IN_PROGRESS_SUFFIX,
    STATUS_ROLLBACK,
    Partition,
    StackOutput,
    StackTag,
    StackType,
)
from kubestack.exceptions import (
    OperationCancelledError,
    StackOperationError,
    StackOperationFailedError,
    StackTimeoutError,
    TemplateValidationError,
)
from kubestack.model import Labels, Status, kvs_to_labels

from .clients import aws_call, error_code, error_message

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient

log = logger.bind(component="stacks")

IAM_CAPABILITIES: tuple[str, ...] = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM")


# =============================================================================
# Naming
# =============================================================================


@dataclass(frozen=True, slots=True)
class StackNames:
    """Stack naming scheme, ``<prefix>-<cluster>-<kind>[-<partition>]``.

    Infra and ELB stacks are updated in place and have no partition. Pool
    stacks carry a blue/green partition, blue by default.
    """

    prefix: str = "keto"

    def infra(self, cluster: str) -> str:
        return f"{self.prefix}-{cluster}-{StackType.INFRA}"

    def elb(self, cluster: str) -> str:
        return f"{self.prefix}-{cluster}-{StackType.ELB}"

    def master_pool(self, cluster: str, partition: Partition = Partition.BLUE) -> str:
        return f"{self.prefix}-{cluster}-{StackType.MASTER_POOL}-{partition}"

    def compute_pool(self, cluster: str, pool: str, partition: Partition = Partition.BLUE) -> str:
        return f"{self.prefix}-{cluster}-{pool}-{partition}"


def stack_tags(
    cluster_name: str,
    stack_type: StackType,
    *,
    pool_name: str = "",
    kube_version: str = "",
    os_version: str = "",
    machine_type: str = "",
    kube_api_url: str = "",
    assets_bucket: str = "",
    disk_size: int = 0,
) -> dict[str, str]:
    """Tags applied to a stack. Optional tags are only set when non-empty."""
    tags = {
        StackTag.MANAGED: MANAGED_TAG_VALUE,
        StackTag.CLUSTER_NAME: cluster_name,
        StackTag.STACK_TYPE: stack_type,
    }
    optional = {
        StackTag.POOL_NAME: pool_name,
        StackTag.KUBE_VERSION: kube_version,
        StackTag.OS_VERSION: os_version,
        StackTag.MACHINE_TYPE: machine_type,
        StackTag.KUBE_API_URL: kube_api_url,
        StackTag.ASSETS_BUCKET: assets_bucket,
        StackTag.DISK_SIZE: str(disk_size) if disk_size > 0 else "",
    }
    tags.update({k: v for k, v in optional.items() if v})
    return {str(k): str(v) for k, v in tags.items()}


# =============================================================================
# Records
# =============================================================================


def _epoch(value: datetime | None) -> int:
    return int(value.timestamp()) if value else 0


@dataclass(frozen=True, slots=True)
class StackRecord:
    """A stack as seen by kubestack.

    ``attributes`` merges tags and outputs, outputs winning, so callers do not
    care which of the two a value was written to.
    """

    stack_id: str
    name: str
    status: str
    tags: Mapping[str, str] = field(default_factory=dict)
    outputs: Mapping[str, str] = field(default_factory=dict)
    created: int = 0
    updated: int = 0

    @classmethod
    def from_boto(cls, stack: Mapping[str, Any]) -> StackRecord:
        return cls(
            stack_id=stack.get("StackId", ""),
            name=stack.get("StackName", ""),
            status=stack.get("StackStatus", ""),
            tags={t["Key"]: t["Value"] for t in stack.get("Tags", [])},
            outputs={o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])},
            created=_epoch(stack.get("CreationTime")),
            updated=_epoch(stack.get("LastUpdatedTime")),
        )

    @property
    def attributes(self) -> dict[str, str]:
        return {**self.tags, **self.outputs}

    @property
    def managed(self) -> bool:
        return self.tags.get(StackTag.MANAGED) == MANAGED_TAG_VALUE

    @property
    def stack_type(self) -> str:
        attrs = self.attributes
        return attrs.get(StackTag.STACK_TYPE) or attrs.get(StackOutput.STACK_TYPE, "")

    @property
    def cluster_name(self) -> str:
        attrs = self.attributes
        return attrs.get(StackTag.CLUSTER_NAME) or attrs.get(StackOutput.CLUSTER_NAME, "")

    @property
    def pool_name(self) -> str:
        attrs = self.attributes
        return attrs.get(StackTag.POOL_NAME) or attrs.get(StackOutput.POOL_NAME, "")

    def get(self, *keys: str, default: str = "") -> str:
        """First non-empty attribute among ``keys``."""
        attrs = self.attributes
        for key in keys:
            if value := attrs.get(key):
                return value
        return default

    def status_view(self) -> Status:
        return Status(created=self.created, upgraded=self.updated, state=self.status)


def stack_labels(record: StackRecord) -> Labels:
    """User facing labels of a stack.

    Every attribute outside the reserved set is a label. Labels encoded in the
    ``Labels`` output are decoded and merged on top.
    """
    labels = {k: v for k, v in record.attributes.items() if k not in RESERVED_ATTRIBUTES}
    if encoded := record.outputs.get(StackOutput.LABELS):
        labels.update(kvs_to_labels(encoded))
    return labels


@dataclass(frozen=True, slots=True)
class StackSpec:
    """Everything needed to create a stack."""

    name: str
    template: str
    tags: Mapping[str, str]
    capabilities: Sequence[str] = ()


# =============================================================================
# Stack operations
# =============================================================================


class _StackPendingError(Exception):
    """Stack still settling - retry."""


def _is_missing(e: ClientError) -> bool:
    return error_code(e) == "ValidationError" and "does not exist" in error_message(e)


class Stacks:
    """Discovery, lifecycle and completion polling of CloudFormation stacks.

    Every wait is bounded by ``timeout`` seconds and aborted as soon as
    ``cancel`` is set.
    """

    def __init__(
        self,
        cloudformation: CloudFormationClient,
        *,
        poll_interval: float = STACK_POLL_INTERVAL,
        timeout: float = STACK_TIMEOUT,
        cancel: threading.Event | None = None,
    ) -> None:
        self._cf = cloudformation
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.cancel = cancel or threading.Event()

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def describe(self, name: str = "") -> list[StackRecord]:
        """Describe one stack, or every stack of the region when ``name`` is empty.

        A stack that does not exist yields an empty list.
        """
        try:
            if name:
                stacks = self._cf.describe_stacks(StackName=name)["Stacks"]
            else:
                paginator = self._cf.get_paginator("describe_stacks")
                stacks = [s for page in paginator.paginate() for s in page["Stacks"]]
        except ClientError as e:
            if _is_missing(e):
                return []
            raise
        return [StackRecord.from_boto(s) for s in stacks]

    def get(self, name: str) -> StackRecord | None:
        with aws_call(f"describe stack {name}"):
            stacks = self.describe(name)
        return stacks[0] if len(stacks) == 1 else None

    def exists(self, name: str) -> bool:
        """True when ``name`` exists and is managed by kubestack."""
        record = self.get(name)
        return record is not None and record.managed

    def by_type(self, stack_type: StackType) -> list[StackRecord]:
        """Managed stacks of ``stack_type``."""
        with aws_call("describe stacks"):
            stacks = self.describe()
        return [s for s in stacks if s.managed and s.stack_type == stack_type]

    def resource_id(self, name: str, resource_type: str) -> str:
        """Physical id of the first resource of ``resource_type`` in stack ``name``."""
        with aws_call(f"describe resources of stack {name}"):
            resources = self._cf.describe_stack_resources(StackName=name)["StackResources"]
        for resource in resources:
            if resource["ResourceType"] == resource_type:
                return resource.get("PhysicalResourceId", "")
        return ""

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create(self, spec: StackSpec) -> str:
        """Validate, create and wait for a stack. Returns the stack id."""
        try:
            self._cf.validate_template(TemplateBody=spec.template)
        except ClientError as e:
            raise TemplateValidationError(f"stack {spec.name!r}: {error_message(e) or e}") from e

        log.info("Creating stack {name}", name=spec.name)
        with aws_call(f"create stack {spec.name}"):
            response = self._cf.create_stack(
                StackName=spec.name,
                TemplateBody=spec.template,
                Tags=[{"Key": k, "Value": v} for k, v in spec.tags.items()],
                Capabilities=list(spec.capabilities),
            )

        stack_id = response.get("StackId")
        if not stack_id:
            raise StackOperationError(f"failed to create {spec.name!r} stack, no stack id in response")

        self.wait(stack_id, spec.name)
        log.info("Stack {name} created", name=spec.name)
        return stack_id

    def delete(self, name: str) -> None:
        """Delete a stack and wait until it is gone."""
        log.info("Deleting stack {name}", name=name)
        with aws_call(f"delete stack {name}"):
            self._cf.delete_stack(StackName=name)
        self.wait(name)
        log.info("Stack {name} deleted", name=name)

    def wait(self, stack: str, label: str = "") -> None:
        """Poll ``stack`` (name or id) until it settles.

        Order matters: a missing stack is done, then in-progress keeps
        polling, failed and rollback statuses fail, complete is done. Any
        other status keeps polling.

        Raises:
            StackOperationFailedError: The stack reached a failed or rollback status.
            StackTimeoutError: The stack did not settle within ``timeout``.
            OperationCancelledError: ``cancel`` was set while waiting.
        """
        label = label or stack

        @retry(
            stop=stop_after_delay(self.timeout) | stop_when_event_set(self.cancel),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(_StackPendingError),
            sleep=self.cancel.wait,
        )
        def _poll() -> None:
            record = self.get(stack)
            if record is None:
                return

            status = record.status
            if status.endswith(STATUS_IN_PROGRESS_SUFFIX):
                log.debug("Stack {stack} is {status}", stack=label, status=status)
                raise _StackPendingError(status)
            if status.endswith(STATUS_FAILED_SUFFIX) or STATUS_ROLLBACK in status:
                raise StackOperationFailedError(label, status)
            if status.endswith(STATUS_COMPLETE_SUFFIX):
                return
            raise _StackPendingError(status)

        try:
            _poll()
        except RetryError as e:
            if self.cancel.is_set():
                raise OperationCancelledError(label) from e
            raise StackTimeoutError(label, self.timeout) from e


__all__ = [
    "IAM_CAPABILITIES",
    "StackNames",
    "StackRecord",
    "StackSpec",
    "Stacks",
    "stack_labels",
    "stack_tags",
]
