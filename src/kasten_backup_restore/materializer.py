from __future__ import annotations

import copy
from pathlib import Path
import re
from typing import Any, Iterable, Mapping

import structlog
import yaml

from .config import AppConfig
from .errors import InvalidSelectorError, TemplateNotFoundError

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z0-9_-]+)\}")
BACKUP_ACTION_ANCHOR = "backup"

logger = structlog.get_logger()


class ResourceMaterializer:
    """Builds Kasten custom resource documents from YAML templates.

    Templates are parsed once per call into plain dicts, placeholders are
    replaced inside string scalars, and optional filter blocks are attached
    to the document tree rather than spliced into text.
    """

    def __init__(self, config: AppConfig) -> None:
        self.policy_template = config.policy_template
        self.backup_action_template = config.backup_action_template
        self.restore_action_template = config.restore_action_template

    def build_policy(
        self,
        *,
        name: str,
        namespace: str,
        include_namespaces: str,
        selector: str | None = None,
        include_resources: str | None = None,
    ) -> dict[str, Any]:
        # Selector errors surface before any template I/O.
        parsed_selector = parse_selector(selector) if selector else None
        policy = materialize(
            load_template(self.policy_template),
            {
                "policy_name": name,
                "policy_ns": namespace,
                "include_namespaces": include_namespaces,
            },
        )

        filters = _include_resource_filters(
            selector=parsed_selector,
            resources=split_resources(include_resources),
        )
        if filters:
            backup_action = _find_backup_action(policy, template_path=self.policy_template)
            backup_action["backupParameters"] = {"filters": {"includeResources": filters}}
        return policy

    def build_backup_action(self, *, name: str, namespace: str, include_namespaces: str) -> dict[str, Any]:
        return materialize(
            load_template(self.backup_action_template),
            {
                "backup_name": name,
                "policy_name": name,
                "backup_ns": namespace,
                "include_ns": include_namespaces,
            },
        )

    def build_restore_action(self, *, name: str, restore_namespace: str, restore_point: str) -> dict[str, Any]:
        return materialize(
            load_template(self.restore_action_template),
            {
                "restore_name": name,
                "restore_ns": restore_namespace,
                "restore_point": restore_point,
            },
        )


def materialize(template: Mapping[str, Any], bindings: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``template`` with every ``{placeholder}`` substituted.

    Unbound placeholders become empty strings.
    """
    unbound = sorted({name for name in unresolved_placeholders(template) if name not in bindings})
    if unbound:
        logger.warning("template.unbound_placeholders", placeholders=unbound)
    return _substitute(copy.deepcopy(dict(template)), bindings)


def load_template(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise TemplateNotFoundError(f"YAML template '{path}' not found")
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as error:
        raise TemplateNotFoundError(f"YAML template '{path}' could not be read: {error}") from error
    if not isinstance(document, dict):
        raise TemplateNotFoundError(f"YAML template '{path}' does not contain a resource mapping")
    return document


def ensure_templates(paths: Iterable[Path]) -> None:
    for path in paths:
        if not path.is_file():
            raise TemplateNotFoundError(f"YAML template '{path}' not found")


def parse_selector(selector: str) -> tuple[str, str]:
    """Split a ``key=value`` label selector.

    Only a single pair is supported per backup.
    """
    normalized = selector.strip()
    if "=" not in normalized:
        raise InvalidSelectorError(f"Invalid selector '{selector}': expected key=value")
    if "," in normalized:
        raise InvalidSelectorError(
            f"Invalid selector '{selector}': only a single key=value pair is supported"
        )
    key, value = (part.strip() for part in normalized.split("=", 1))
    if not key:
        raise InvalidSelectorError(f"Invalid selector '{selector}': label key is empty")
    return key, value


def split_resources(include_resources: str | None) -> list[str]:
    if not include_resources:
        return []
    return [resource.strip() for resource in include_resources.split(",") if resource.strip()]


def render_document(document: Mapping[str, Any]) -> str:
    return yaml.safe_dump(dict(document), sort_keys=False, default_flow_style=False)


def unresolved_placeholders(document: Any) -> list[str]:
    found: list[str] = []
    if isinstance(document, dict):
        for value in document.values():
            found.extend(unresolved_placeholders(value))
    elif isinstance(document, list):
        for item in document:
            found.extend(unresolved_placeholders(item))
    elif isinstance(document, str):
        found.extend(PLACEHOLDER_PATTERN.findall(document))
    return found


def _substitute(node: Any, bindings: Mapping[str, str]) -> Any:
    if isinstance(node, dict):
        return {key: _substitute(value, bindings) for key, value in node.items()}
    if isinstance(node, list):
        return [_substitute(item, bindings) for item in node]
    if isinstance(node, str):
        return PLACEHOLDER_PATTERN.sub(lambda match: bindings.get(match.group(1)) or "", node)
    return node


def _include_resource_filters(
    *,
    selector: tuple[str, str] | None,
    resources: list[str],
) -> list[dict[str, Any]]:
    filters: list[dict[str, Any]] = []
    if selector is not None:
        key, value = selector
        filters.append({"matchExpressions": [{"key": key, "operator": "In", "values": [value]}]})
    filters.extend({"resource": resource} for resource in resources)
    return filters


def _find_backup_action(policy: dict[str, Any], *, template_path: Path) -> dict[str, Any]:
    spec = policy.get("spec")
    actions = spec.get("actions") if isinstance(spec, dict) else None
    for action in actions or []:
        if isinstance(action, dict) and action.get("action") == BACKUP_ACTION_ANCHOR:
            return action
    raise TemplateNotFoundError(
        f"YAML template '{template_path}' has no 'action: {BACKUP_ACTION_ANCHOR}' entry under spec.actions"
    )
