from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException
import structlog

from .errors import BackupRestoreError, OrchestrationError
from .models import ResourceKind, ResourceRef

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_NAMESPACE = "default"
SERVICEACCOUNT_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
T = TypeVar("T")

logger = structlog.get_logger()


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    custom_api: client.CustomObjectsApi


class KubernetesAuthenticationError(BackupRestoreError):
    """Raised when Kubernetes authentication configuration fails."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        custom_api=client.CustomObjectsApi(api_client),
    )


def resolve_default_namespace(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> str:
    """Return the namespace kubectl would use when ``-n`` is omitted.

    In-cluster this is the pod's service account namespace; otherwise the
    namespace of the selected (or current) kubeconfig context. Both fall
    back to ``default``.
    """
    if in_cluster:
        try:
            namespace = SERVICEACCOUNT_NAMESPACE_PATH.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return DEFAULT_NAMESPACE
        return namespace or DEFAULT_NAMESPACE

    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        contexts, active_context = config.list_kube_config_contexts(config_file=expanded)
    except Exception as error:  # pylint: disable=broad-except
        reason = str(error).strip() or error.__class__.__name__
        source = expanded or "default kubeconfig search path"
        raise KubernetesAuthenticationError(
            f"Unable to resolve the default namespace from kubeconfig '{source}': {reason}. "
            "Pass -n/--namespace or set KBR_NAMESPACE."
        ) from error

    selected = active_context
    if context:
        selected = next((entry for entry in contexts or [] if entry.get("name") == context), None)
        if selected is None:
            raise KubernetesAuthenticationError(
                f"Kubeconfig context '{context}' was not found while resolving the default namespace."
            )
    namespace = str(((selected or {}).get("context") or {}).get("namespace") or "").strip()
    return namespace or DEFAULT_NAMESPACE


class ResourceGateway:
    """Synchronous create/get/delete access to Kasten custom resources."""

    def __init__(
        self,
        *,
        custom_api: client.CustomObjectsApi,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        self.custom_api = custom_api
        self.request_timeout_seconds = request_timeout_seconds

    def create(self, kind: ResourceKind, namespace: str | None, body: dict[str, Any]) -> ResourceRef:
        name = str(body.get("metadata", {}).get("name") or "")
        ref = ResourceRef(kind=kind, name=name, namespace=namespace if kind.namespaced else None)
        _require_namespace(ref, operation="create")
        if kind.namespaced:
            self._call(
                operation=f"create {kind.kind} '{ref.display}'",
                hint=_conflict_hint(kind),
                func=lambda: self.custom_api.create_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.plural,
                    body=body,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        else:
            self._call(
                operation=f"create {kind.kind} '{ref.display}'",
                hint=_conflict_hint(kind),
                func=lambda: self.custom_api.create_cluster_custom_object(
                    group=kind.group,
                    version=kind.version,
                    plural=kind.plural,
                    body=body,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        logger.info("resource.created", kind=kind.kind, name=ref.name, namespace=ref.namespace)
        return ref

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        kind = ref.kind
        _require_namespace(ref, operation="get")
        if kind.namespaced:
            return self._call(
                operation=f"get {kind.kind} '{ref.display}'",
                hint=f"Verify the {kind.kind} exists and RBAC allows get on {kind.plural}.{kind.group}.",
                func=lambda: self.custom_api.get_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=ref.namespace,
                    plural=kind.plural,
                    name=ref.name,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        return self._call(
            operation=f"get {kind.kind} '{ref.display}'",
            hint=f"Verify the {kind.kind} exists and RBAC allows get on {kind.plural}.{kind.group}.",
            func=lambda: self.custom_api.get_cluster_custom_object(
                group=kind.group,
                version=kind.version,
                plural=kind.plural,
                name=ref.name,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def delete(self, ref: ResourceRef) -> None:
        kind = ref.kind
        _require_namespace(ref, operation="delete")
        hint = f"Verify the {kind.kind} exists and RBAC allows delete on {kind.plural}.{kind.group}."
        if kind.namespaced:
            self._call(
                operation=f"delete {kind.kind} '{ref.display}'",
                hint=hint,
                func=lambda: self.custom_api.delete_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=ref.namespace,
                    plural=kind.plural,
                    name=ref.name,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        else:
            self._call(
                operation=f"delete {kind.kind} '{ref.display}'",
                hint=hint,
                func=lambda: self.custom_api.delete_cluster_custom_object(
                    group=kind.group,
                    version=kind.version,
                    plural=kind.plural,
                    name=ref.name,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        logger.info("resource.deleted", kind=kind.kind, name=ref.name, namespace=ref.namespace)

    def read_field(self, ref: ResourceRef, path: Sequence[str | int]) -> Any:
        return extract_field(self.get(ref), path)

    def _call(self, *, operation: str, hint: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except ApiException as error:
            raise OrchestrationError(
                _format_api_exception_message(
                    operation=operation,
                    hint=hint,
                    error=error,
                )
            ) from error
        except Exception as error:  # pylint: disable=broad-except
            raise OrchestrationError(
                f"Kubernetes API call failed while trying to {operation}: {error}. {hint}"
            ) from error


def extract_field(document: Any, path: Sequence[str | int]) -> Any:
    current = document
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or step >= len(current):
                return None
            current = current[step]
        else:
            if not isinstance(current, dict) or step not in current:
                return None
            current = current[step]
    return current


def _require_namespace(ref: ResourceRef, *, operation: str) -> None:
    if ref.kind.namespaced and not (ref.namespace or "").strip():
        raise OrchestrationError(
            f"Refusing to {operation} {ref.kind.kind} '{ref.name}' without a namespace; "
            "pass -n/--namespace or set KBR_NAMESPACE."
        )


def _conflict_hint(kind: ResourceKind) -> str:
    return (
        f"If a {kind.kind} with this name already exists, delete it first; existing resources are "
        f"never replaced. Otherwise verify RBAC allows create on {kind.plural}.{kind.group}."
    )


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return (
        f"Kubernetes API call failed while trying to {operation}: "
        f"API status {status} ({reason}). {hint}"
    )


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
