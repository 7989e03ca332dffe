from __future__ import annotations

from typing import Any, Callable

import structlog

from .errors import BackupRestoreError, ResourceLookupError
from .k8s import ResourceGateway, extract_field
from .materializer import ResourceMaterializer, ensure_templates, parse_selector, render_document
from .models import (
    BACKUP_ACTION,
    POLICY,
    RESTORE_ACTION,
    RESTORE_POINT,
    RESTORE_POINT_CONTENT,
    CreateBackupRequest,
    CreateRestoreRequest,
    DeleteBackupRequest,
    PollOutcome,
    ResourceKind,
    ResourceRef,
)
from .poller import CompletionPoller, raise_for_outcome

POLICY_NAMESPACE_PATH = ("spec", "selector", "matchExpressions", 0, "values", 0)
RESTORE_POINT_CONTENT_PATH = ("spec", "restorePointContentRef", "name")

logger = structlog.get_logger()


class BackupRestoreOperator:
    def __init__(
        self,
        *,
        gateway: ResourceGateway,
        materializer: ResourceMaterializer,
        poller: CompletionPoller,
        echo: Callable[[str], None] = print,
    ) -> None:
        self.gateway = gateway
        self.materializer = materializer
        self.poller = poller
        self.echo = echo

    def create_backup(self, request: CreateBackupRequest) -> PollOutcome | None:
        """Create a policy, wait for it to validate, then run a backup action.

        Returns the backup action outcome when ``request.verify`` is set.
        """
        if request.selector:
            parse_selector(request.selector)
        ensure_templates([self.materializer.policy_template, self.materializer.backup_action_template])
        if request.snapshot_location:
            logger.info("backup.snapshot_location_ignored", snapshot_location=request.snapshot_location)

        policy = self.materializer.build_policy(
            name=request.name,
            namespace=request.namespace,
            include_namespaces=request.include_namespaces,
            selector=request.selector,
            include_resources=request.include_resources,
        )
        self._submit("policy", POLICY, request.namespace, policy)
        self.verify_policy(request.name, request.namespace)

        backup_action = self.materializer.build_backup_action(
            name=request.name,
            namespace=request.namespace,
            include_namespaces=request.include_namespaces,
        )
        self._submit("backup", BACKUP_ACTION, request.include_namespaces, backup_action)

        if not request.verify:
            return None
        return self.verify_backup(request.name, request.include_namespaces)

    def delete_backup(self, request: DeleteBackupRequest) -> None:
        include_namespace = self._resolve_included_namespace(request.name, request.namespace)
        restore_point = ResourceRef(kind=RESTORE_POINT, name=request.name, namespace=include_namespace)
        content_name = self._lookup(
            restore_point,
            RESTORE_POINT_CONTENT_PATH,
            what="restore point content reference",
        )

        # RestorePointContent deletion cascades to the backup action and restore point.
        self.gateway.delete(ResourceRef(kind=RESTORE_POINT_CONTENT, name=content_name))
        self.gateway.delete(ResourceRef(kind=POLICY, name=request.name, namespace=request.namespace))
        self.echo(f"Backup {request.name} deleted")

    def restore_backup(self, request: CreateRestoreRequest) -> PollOutcome | None:
        ensure_templates([self.materializer.restore_action_template])

        include_namespace = self._resolve_included_namespace(request.from_backup, request.namespace)
        restore_action = self.materializer.build_restore_action(
            name=request.name,
            restore_namespace=include_namespace,
            restore_point=request.from_backup,
        )
        self._submit("restore", RESTORE_ACTION, include_namespace, restore_action)

        if not request.verify:
            return None
        return self.verify_restore(request.name, include_namespace)

    def verify_policy(self, name: str, namespace: str) -> PollOutcome:
        self.echo(f"Verifying creation of policy {name} in namespace {namespace}...")
        outcome = self._await(POLICY, name, namespace)
        self.echo(f"Policy {name} creation succeeded!")
        return outcome

    def verify_backup(self, name: str, namespace: str) -> PollOutcome:
        self.echo(f"Verifying creation of backup {name} in namespace {namespace}...")
        outcome = self._await(BACKUP_ACTION, name, namespace)
        self.echo(f"Backup {name} creation succeeded!")
        return outcome

    def verify_restore(self, name: str, namespace: str) -> PollOutcome:
        self.echo(f"Verifying restore {name} in namespace {namespace}...")
        outcome = self._await(RESTORE_ACTION, name, namespace)
        self.echo(f"Restore {name} succeeded!")
        return outcome

    def _submit(self, label: str, kind: ResourceKind, namespace: str, body: dict[str, Any]) -> ResourceRef:
        self.echo(f"Creating {label}:\n{render_document(body)}")
        return self.gateway.create(kind, namespace, body)

    def _await(self, kind: ResourceKind, name: str, namespace: str) -> PollOutcome:
        outcome = self.poller.await_terminal(kind, name, namespace)
        raise_for_outcome(outcome)
        return outcome

    def _resolve_included_namespace(self, backup_name: str, namespace: str) -> str:
        policy = ResourceRef(kind=POLICY, name=backup_name, namespace=namespace)
        return self._lookup(policy, POLICY_NAMESPACE_PATH, what="included namespace")

    def _lookup(self, ref: ResourceRef, path: tuple[str | int, ...], *, what: str) -> str:
        try:
            document = self.gateway.get(ref)
        except BackupRestoreError as error:
            raise ResourceLookupError(f"Unable to resolve {what} from {ref.kind.kind} {ref.display}: {error}") from error

        value = extract_field(document, path)
        if not value:
            rendered_path = ".".join(str(step) for step in path)
            raise ResourceLookupError(
                f"{ref.kind.kind} {ref.display} has no value at {rendered_path}; cannot resolve {what}"
            )
        return str(value)
