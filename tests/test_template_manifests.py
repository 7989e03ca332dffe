from __future__ import annotations

from pathlib import Path

import yaml

from kasten_backup_restore.config import DEFAULT_TEMPLATE_DIR
from kasten_backup_restore.materializer import unresolved_placeholders


def _read_yaml_document(file_name: str) -> dict:
    return yaml.safe_load((DEFAULT_TEMPLATE_DIR / file_name).read_text(encoding="utf-8"))


def test_template_dir_with_packaged_templates_ships_all_three_documents() -> None:
    names = sorted(path.name for path in Path(DEFAULT_TEMPLATE_DIR).glob("*.yaml"))

    assert names == ["backup_action.yaml", "policy.yaml", "restore_action.yaml"]


def test_policy_template_with_placeholders_parses_as_on_demand_policy() -> None:
    policy = _read_yaml_document("policy.yaml")

    assert policy["apiVersion"] == "config.kio.kasten.io/v1alpha1"
    assert policy["kind"] == "Policy"
    assert policy["spec"]["frequency"] == "@onDemand"
    assert {"action": "backup"} in policy["spec"]["actions"]
    assert sorted(set(unresolved_placeholders(policy))) == ["include_namespaces", "policy_name", "policy_ns"]


def test_policy_template_with_namespace_selector_keeps_lookup_path_stable() -> None:
    expression = _read_yaml_document("policy.yaml")["spec"]["selector"]["matchExpressions"][0]

    assert expression["operator"] == "In"
    assert expression["values"] == ["{include_namespaces}"]


def test_backup_action_template_with_placeholders_names_policy_labels() -> None:
    backup_action = _read_yaml_document("backup_action.yaml")

    assert backup_action["apiVersion"] == "actions.kio.kasten.io/v1alpha1"
    assert backup_action["kind"] == "BackupAction"
    assert backup_action["metadata"]["labels"]["k10.kasten.io/policyName"] == "{policy_name}"
    assert sorted(set(unresolved_placeholders(backup_action))) == [
        "backup_name",
        "backup_ns",
        "include_ns",
        "policy_name",
    ]


def test_restore_action_template_with_placeholders_targets_restore_point() -> None:
    restore_action = _read_yaml_document("restore_action.yaml")

    assert restore_action["kind"] == "RestoreAction"
    assert restore_action["spec"]["subject"]["kind"] == "RestorePoint"
    assert sorted(set(unresolved_placeholders(restore_action))) == ["restore_name", "restore_ns", "restore_point"]
