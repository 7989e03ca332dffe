from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
import sys
from typing import Any, Callable, NoReturn, Sequence

from .config import AppConfig
from .errors import BackupRestoreError, UsageError
from .k8s import ResourceGateway, load_kubernetes_clients, resolve_default_namespace
from .logging import bind_context, configure_logging
from .materializer import ResourceMaterializer
from .models import (
    Command,
    CreateBackupRequest,
    CreateRestoreRequest,
    DeleteBackupRequest,
    OperationRequest,
    VerifyRequest,
)
from .operations import BackupRestoreOperator
from .poller import CompletionPoller

PROG = "kasten-backup-restore"


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description="Create, verify, restore and delete Kasten K10 backups through custom resources",
    )
    parser.add_argument("--kubeconfig", help="Path to kubeconfig (default: KBR_KUBECONFIG or KUBECONFIG)")
    parser.add_argument("--context", help="Kubeconfig context to use")
    parser.add_argument("--in-cluster", action="store_true", default=None, help="Use in-cluster service account auth")
    parser.add_argument("--template-dir", help="Directory holding policy/backup/restore YAML templates")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    parser.add_argument("--json-logs", action="store_true", default=None, help="Render log events as JSON")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    backup_parser = subparsers.add_parser(Command.BACKUP.value, help="Create backup")
    backup_parser.add_argument("name", help="Backup name")
    backup_parser.add_argument("-n", "--namespace", default="", help="Namespace in which Kasten should operate")
    backup_parser.add_argument("-i", "--include-namespaces", default="", help="Namespaces to include in the backup")
    backup_parser.add_argument("-s", "--selector", help="Label selector (key=value) for resources to back up")
    backup_parser.add_argument("-r", "--include-resources", help="Resources to include in the backup")
    backup_parser.add_argument("-l", "--snapshot-location", help="Locations where volume snapshots should be stored")
    backup_parser.add_argument("-v", "--verify", action="store_true", help="Verify backup completion")

    delete_parser = subparsers.add_parser(Command.DELETE_BACKUP.value, help="Delete backup")
    delete_parser.add_argument("name", help="Backup name")
    delete_parser.add_argument("-n", "--namespace", default="", help="Namespace in which Kasten should operate")

    restore_parser = subparsers.add_parser(Command.RESTORE.value, help="Restore a backup")
    restore_parser.add_argument("name", help="Restore name")
    restore_parser.add_argument("-f", "--from-backup", required=True, help="Backup to restore from")
    restore_parser.add_argument("-n", "--namespace", default="", help="Namespace in which the backup resides")
    restore_parser.add_argument("-v", "--verify", action="store_true", help="Verify restore completion")

    verify_backup_parser = subparsers.add_parser(Command.VERIFY_BACKUP.value, help="Wait for a backup to complete")
    verify_backup_parser.add_argument("name", help="Backup action name")
    verify_backup_parser.add_argument("namespace", help="Namespace of the backup action")

    verify_restore_parser = subparsers.add_parser(Command.VERIFY_RESTORE.value, help="Wait for a restore to complete")
    verify_restore_parser.add_argument("name", help="Restore action name")
    verify_restore_parser.add_argument("namespace", help="Namespace of the restore action")

    return parser


def build_request(args: argparse.Namespace) -> OperationRequest:
    command = Command(args.command)
    name = (args.name or "").strip()
    if not name:
        raise UsageError(f"{command.value}: name is required")

    if command is Command.BACKUP:
        include_namespaces = (args.include_namespaces or "").strip()
        if not include_namespaces:
            raise UsageError("backup: -i/--include-namespaces is required")
        return CreateBackupRequest(
            name=name,
            namespace=args.namespace.strip(),
            include_namespaces=include_namespaces,
            selector=args.selector or None,
            include_resources=args.include_resources or None,
            snapshot_location=args.snapshot_location or None,
            verify=args.verify,
        )
    if command is Command.DELETE_BACKUP:
        return DeleteBackupRequest(name=name, namespace=args.namespace.strip())
    if command is Command.RESTORE:
        from_backup = (args.from_backup or "").strip()
        if not from_backup:
            raise UsageError("restore: backup name to restore from is required")
        return CreateRestoreRequest(
            name=name,
            from_backup=from_backup,
            namespace=args.namespace.strip(),
            verify=args.verify,
        )
    return VerifyRequest(command=command, name=name, namespace=args.namespace)


def resolve_config(args: argparse.Namespace, base: AppConfig | None = None) -> AppConfig:
    app_config = base if base is not None else AppConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.kubeconfig:
        overrides["kubeconfig_path"] = args.kubeconfig
    if args.context:
        overrides["context"] = args.context
    if args.in_cluster:
        overrides["in_cluster"] = True
    if args.template_dir:
        overrides["template_dir"] = Path(args.template_dir).expanduser()
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.json_logs:
        overrides["json_logs"] = True
    return dataclasses.replace(app_config, **overrides) if overrides else app_config


def resolve_request_namespace(
    request: OperationRequest,
    app_config: AppConfig,
) -> tuple[OperationRequest, AppConfig]:
    """Fill an omitted -n from KBR_NAMESPACE or the active kube context.

    Verify commands take the namespace positionally and are returned as-is.
    """
    if isinstance(request, VerifyRequest) or request.namespace:
        return request, app_config
    if not app_config.namespace:
        app_config = dataclasses.replace(
            app_config,
            namespace=resolve_default_namespace(
                kubeconfig_path=app_config.kubeconfig_path,
                context=app_config.context,
                in_cluster=app_config.in_cluster,
            ),
        )
    return dataclasses.replace(request, namespace=app_config.namespace), app_config


def build_operator(app_config: AppConfig) -> BackupRestoreOperator:
    clients = load_kubernetes_clients(
        kubeconfig_path=app_config.kubeconfig_path,
        context=app_config.context,
        in_cluster=app_config.in_cluster,
    )
    gateway = ResourceGateway(
        custom_api=clients.custom_api,
        request_timeout_seconds=app_config.request_timeout_seconds,
    )
    return BackupRestoreOperator(
        gateway=gateway,
        materializer=ResourceMaterializer(app_config),
        poller=CompletionPoller(status_source=gateway, interval_seconds=app_config.poll_interval_seconds),
    )


_HANDLERS: dict[Command, Callable[[BackupRestoreOperator, Any], object]] = {
    Command.BACKUP: lambda operator, request: operator.create_backup(request),
    Command.DELETE_BACKUP: lambda operator, request: operator.delete_backup(request),
    Command.RESTORE: lambda operator, request: operator.restore_backup(request),
    Command.VERIFY_BACKUP: lambda operator, request: operator.verify_backup(request.name, request.namespace),
    Command.VERIFY_RESTORE: lambda operator, request: operator.verify_restore(request.name, request.namespace),
}


def dispatch(operator: BackupRestoreOperator, request: OperationRequest) -> object:
    return _HANDLERS[request.command](operator, request)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        request = build_request(args)
        app_config = resolve_config(args)
    except UsageError as error:
        return _usage_failure(parser, error)
    except ValueError as error:
        print(f"Error: invalid configuration: {error}", file=sys.stderr)
        return 1

    configure_logging(app_config.log_level, json_logs=app_config.json_logs)
    log = bind_context(command=request.command.value, name=request.name)

    try:
        request, app_config = resolve_request_namespace(request, app_config)
        operator = build_operator(app_config)
        dispatch(operator, request)
    except UsageError as error:
        return _usage_failure(parser, error)
    except BackupRestoreError as error:
        log.error("operation.failed", error_type=error.__class__.__name__)
        print(f"Error: {error}", file=sys.stderr)
        return 1
    log.info("operation.completed")
    return 0


def _usage_failure(parser: argparse.ArgumentParser, error: UsageError) -> int:
    print(f"Error: {error}", file=sys.stderr)
    parser.print_usage(sys.stderr)
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via module entrypoint
    raise SystemExit(main())
