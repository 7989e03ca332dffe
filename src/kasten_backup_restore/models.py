from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ResourceKind:
    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool = True


POLICY = ResourceKind(kind="Policy", group="config.kio.kasten.io", version="v1alpha1", plural="policies")
BACKUP_ACTION = ResourceKind(
    kind="BackupAction",
    group="actions.kio.kasten.io",
    version="v1alpha1",
    plural="backupactions",
)
RESTORE_ACTION = ResourceKind(
    kind="RestoreAction",
    group="actions.kio.kasten.io",
    version="v1alpha1",
    plural="restoreactions",
)
RESTORE_POINT = ResourceKind(
    kind="RestorePoint",
    group="apps.kio.kasten.io",
    version="v1alpha1",
    plural="restorepoints",
)
RESTORE_POINT_CONTENT = ResourceKind(
    kind="RestorePointContent",
    group="apps.kio.kasten.io",
    version="v1alpha1",
    plural="restorepointcontents",
    namespaced=False,
)


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    name: str
    namespace: str | None = None

    @property
    def display(self) -> str:
        if self.kind.namespaced and self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


class Command(str, Enum):
    BACKUP = "backup"
    DELETE_BACKUP = "delete-backup"
    RESTORE = "restore"
    VERIFY_BACKUP = "verify-backup"
    VERIFY_RESTORE = "verify-restore"


@dataclass(frozen=True)
class CreateBackupRequest:
    name: str
    namespace: str = ""
    include_namespaces: str = ""
    selector: str | None = None
    include_resources: str | None = None
    # Accepted for CLI compatibility; not bound into any resource yet.
    snapshot_location: str | None = None
    verify: bool = False
    command: Command = Command.BACKUP


@dataclass(frozen=True)
class DeleteBackupRequest:
    name: str
    namespace: str = ""
    command: Command = Command.DELETE_BACKUP


@dataclass(frozen=True)
class CreateRestoreRequest:
    name: str
    from_backup: str
    namespace: str = ""
    verify: bool = False
    command: Command = Command.RESTORE


@dataclass(frozen=True)
class VerifyRequest:
    command: Command
    name: str
    namespace: str


OperationRequest = CreateBackupRequest | DeleteBackupRequest | CreateRestoreRequest | VerifyRequest


class PollStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollOutcome:
    status: PollStatus
    target: ResourceRef
    attempts: int
    expected_state: str
    timeout_seconds: int
    last_state: str | None = None
    cause: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is PollStatus.SUCCESS
