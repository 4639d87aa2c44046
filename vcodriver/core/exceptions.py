"""Custom exception hierarchy for vcodriver.

All driver exceptions inherit from VcoDriverError, enabling callers to
catch every driver failure with a single except clause. Lifecycle errors
carry the machine name and the operation attempted so they can be matched
against the orchestrator's own job history.
"""

from __future__ import annotations


class VcoDriverError(Exception):
    """Base exception for all vcodriver errors."""


class ConfigurationError(VcoDriverError):
    """Raised for invalid configuration or missing required settings."""


# =============================================================================
# Transport
# =============================================================================


class ConnectionError(VcoDriverError):  # noqa: A001
    """Raised when the orchestration engine cannot be reached."""


class AuthenticationError(VcoDriverError):
    """Raised when the orchestration engine rejects the credentials."""


class TemplateNotFoundError(VcoDriverError):
    """Raised when a workflow template is not registered or not found remotely."""

    def __init__(self, tag: str, detail: str = "not registered") -> None:
        self.tag = tag
        super().__init__(f"Workflow template '{tag}' {detail}")


# =============================================================================
# Lifecycle
# =============================================================================


class LifecycleError(VcoDriverError):
    """Base for errors raised while running a lifecycle operation."""

    def __init__(self, machine: str, operation: str, reason: str) -> None:
        self.machine = machine
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} {machine}: {reason}")


class DriverMismatchError(LifecycleError):
    """Raised when a reference was created by a different driver URL."""


class ReferenceConsistencyError(LifecycleError):
    """Raised when a persisted reference is half-written or contradictory."""


class MultipleVMsProvisionedError(LifecycleError):
    """Raised when an allocation reports more than one virtual machine."""


class WorkflowFailedError(LifecycleError):
    """Raised when a workflow execution ends in a failed state."""

    def __init__(
        self,
        machine: str,
        operation: str,
        reason: str,
        *,
        execution_id: str | None = None,
    ) -> None:
        self.execution_id = execution_id
        super().__init__(machine, operation, reason)


class ProvisioningFailedError(WorkflowFailedError):
    """Raised when the allocation workflow ends in a failed state."""


class WorkflowTimeoutError(LifecycleError):
    """Raised when a workflow is still alive after the wait deadline."""

    def __init__(
        self,
        machine: str,
        operation: str,
        reason: str,
        *,
        execution_id: str | None = None,
    ) -> None:
        self.execution_id = execution_id
        super().__init__(machine, operation, reason)


class ProvisioningTimeoutError(WorkflowTimeoutError):
    """Raised when the allocation workflow outlives the wait deadline."""


class InstanceNotReadyError(LifecycleError):
    """Raised when a machine handle is requested for an absent instance."""
