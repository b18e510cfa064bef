"""Custom exception hierarchy for kubestack.

All kubestack-specific exceptions inherit from KubestackError, enabling
callers to catch every provisioning failure with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence


class KubestackError(Exception):
    """Base exception for all kubestack errors."""


class NotImplementedCapabilityError(KubestackError):
    """Raised when the active provider lacks a requested capability."""

    def __init__(self, provider: str, capability: str) -> None:
        self.provider = provider
        self.capability = capability
        super().__init__(f"{capability} is not implemented by provider {provider!r}")


# =============================================================================
# Idempotency and preconditions
# =============================================================================


class AlreadyExistsError(KubestackError):
    """Raised when an idempotency guard finds the resource already created."""


class ClusterAlreadyExistsError(AlreadyExistsError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"cluster {name!r} already exists")


class MasterPoolAlreadyExistsError(AlreadyExistsError):
    def __init__(self, cluster_name: str) -> None:
        self.cluster_name = cluster_name
        super().__init__(f"masterpool already exists in cluster {cluster_name!r}")


class ComputePoolAlreadyExistsError(AlreadyExistsError):
    def __init__(self, cluster_name: str, name: str) -> None:
        self.cluster_name = cluster_name
        self.name = name
        super().__init__(f"computepool {name!r} already exists in cluster {cluster_name!r}")


class DoesNotExistError(KubestackError):
    """Raised when an operation targets a resource that cannot be found."""


class ClusterDoesNotExistError(DoesNotExistError):
    def __init__(self, name: str, message: str | None = None) -> None:
        self.name = name
        super().__init__(message or f"cluster {name!r} does not exist")


class AmbiguousClusterError(ClusterDoesNotExistError):
    """More than one cluster matched where exactly one was expected."""

    def __init__(self, name: str, count: int) -> None:
        self.count = count
        super().__init__(name, f"more than one cluster ({count}) found matching {name!r}")


# =============================================================================
# Stack operations
# =============================================================================


class StackOperationError(KubestackError):
    """Raised when a stack operation cannot be carried out."""


class StackOperationFailedError(StackOperationError):
    """A stack reached a failed or rollback status while being polled."""

    def __init__(self, stack: str, status: str, reason: str = "") -> None:
        self.stack = stack
        self.status = status
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"stack {stack!r} operation failed with status {status}{detail}")


class StackTimeoutError(StackOperationError):
    def __init__(self, stack: str, timeout: float) -> None:
        self.stack = stack
        self.timeout = timeout
        super().__init__(f"stack {stack!r} did not settle within {timeout:.0f}s")


class OperationCancelledError(StackOperationError):
    def __init__(self, stack: str) -> None:
        self.stack = stack
        super().__init__(f"waiting for stack {stack!r} was cancelled")


# =============================================================================
# Validation
# =============================================================================


class ValidationError(KubestackError):
    """Raised when a request or a rendered template is rejected."""


class TemplateValidationError(ValidationError):
    """The infrastructure service rejected a rendered template."""


class NetworkValidationError(ValidationError):
    """Requested networks are missing or span the wrong VPCs."""


# =============================================================================
# Upstream
# =============================================================================


class UpstreamError(KubestackError):
    """An infrastructure, network or storage API call failed."""

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


# =============================================================================
# Provider registry
# =============================================================================


class ProviderError(KubestackError):
    """Base class for provider registry errors."""


class UnknownProviderError(ProviderError):
    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        self.name = name
        known = ", ".join(available) or "none"
        super().__init__(f"unknown cloud provider: {name!r} (available: {known})")


class ProviderAlreadyRegisteredError(ProviderError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"register was called twice for cloud provider {name!r}")


# =============================================================================
# Multi-step operations
# =============================================================================


class StepFailedError(KubestackError):
    """A step of a multi-step operation failed.

    Earlier steps are not rolled back. ``resume_from`` is the index of the
    failed step, so a caller can tell exactly which work is already in place.
    """

    def __init__(
        self,
        operation: str,
        step: str,
        completed: Sequence[str],
        cause: Exception,
    ) -> None:
        self.operation = operation
        self.step = step
        self.completed = tuple(completed)
        self.cause = cause
        done = ", ".join(self.completed) or "none"
        super().__init__(
            f"{operation}: step {self.resume_from} ({step}) failed: {cause}; "
            f"completed steps: {done}"
        )

    @property
    def resume_from(self) -> int:
        return len(self.completed)


# =============================================================================
# Ambient
# =============================================================================


class ConfigurationError(KubestackError):
    """Raised for invalid configuration or missing required settings."""


class AssetError(KubestackError):
    """Raised when certificate authority material cannot be read."""
