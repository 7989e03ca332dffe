from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ResourceRef


class BackupRestoreError(RuntimeError):
    """Base class for failures that abort the current operation."""


class UsageError(BackupRestoreError):
    """Raised for missing or malformed command-line arguments."""


class InvalidSelectorError(UsageError):
    """Raised when a label selector is not a single key=value pair."""


class TemplateNotFoundError(BackupRestoreError):
    """Raised when a resource template file is missing or unreadable."""


class OrchestrationError(BackupRestoreError):
    """Raised when a Kubernetes API call against a custom resource fails."""


class ResourceLookupError(BackupRestoreError):
    """Raised when an identifier needed by an operation cannot be resolved."""


class TerminalFailureError(BackupRestoreError):
    def __init__(self, *, target: ResourceRef, cause: str) -> None:
        detail = cause.strip()
        message = f"{target.kind.kind} {target.display} reported failure"
        super().__init__(f"{message}, error: {detail}" if detail else message)
        self.target = target
        self.cause = detail


class CompletionTimeoutError(BackupRestoreError):
    def __init__(
        self,
        *,
        target: ResourceRef,
        timeout_seconds: int,
        expected_state: str,
        last_state: str | None,
    ) -> None:
        observed = last_state or "<none>"
        super().__init__(
            f"{target.kind.kind} {target.display} did not reach '{expected_state}' state "
            f"within {timeout_seconds}s (last observed state={observed})"
        )
        self.target = target
        self.timeout_seconds = timeout_seconds
        self.last_state = last_state
