"""Workflow submission, status and polling."""

from .client import WorkflowClient
from .poller import wait_for
from .types import ExecutionHandle, ExecutionState

__all__ = [
    "ExecutionHandle",
    "ExecutionState",
    "WorkflowClient",
    "wait_for",
]
