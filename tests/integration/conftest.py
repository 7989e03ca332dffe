from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
import os
import shlex
import shutil
import subprocess
import uuid

import pytest

_ENV_RUN_FLAG = "KBR_RUN_KASTEN_INTEGRATION"
_ENV_KUBECONFIG = "KBR_INTEGRATION_KUBECONFIG"
_ENV_KASTEN_NAMESPACE = "KBR_INTEGRATION_KASTEN_NAMESPACE"
_MANIFEST_PATH = Path(__file__).parent / "manifests" / "smoke-app.yaml"
_REQUIRED_BINARIES = ("kubectl",)
_REQUIRED_CRDS = (
    "policies.config.kio.kasten.io",
    "backupactions.actions.kio.kasten.io",
    "restoreactions.actions.kio.kasten.io",
    "restorepoints.apps.kio.kasten.io",
)


def _flag_enabled(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _render_command(command: list[str]) -> str:
    return " ".join(shlex.quote(token) for token in command)


def _run_command(
    command: list[str],
    *,
    timeout_seconds: int,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    completed = subprocess.run(
        command,
        check=False,
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
    )

    if check and completed.returncode != 0:
        stdout = completed.stdout.strip() or "<empty>"
        stderr = completed.stderr.strip() or "<empty>"
        raise RuntimeError(
            f"Command failed with exit code {completed.returncode}: {_render_command(command)}\n"
            f"stdout:\n{stdout}\n"
            f"stderr:\n{stderr}"
        )

    return completed


def _kubectl_base() -> list[str]:
    kubeconfig = (os.getenv(_ENV_KUBECONFIG) or "").strip()
    if kubeconfig:
        return ["kubectl", "--kubeconfig", kubeconfig]
    return ["kubectl"]


def _verify_prerequisites() -> None:
    if not _flag_enabled(os.getenv(_ENV_RUN_FLAG)):
        pytest.skip(
            "Kasten integration tests are disabled by default. "
            f"Set {_ENV_RUN_FLAG}=1 to run them against a cluster with K10 installed.",
            allow_module_level=True,
        )

    missing = [binary for binary in _REQUIRED_BINARIES if shutil.which(binary) is None]
    if missing:
        pytest.skip(
            f"Kasten integration prerequisites are missing: {', '.join(sorted(missing))}.",
            allow_module_level=True,
        )

    crds = _run_command(
        [*_kubectl_base(), "get", "crd", *_REQUIRED_CRDS, "-o", "name"],
        timeout_seconds=60,
        check=False,
    )
    if crds.returncode != 0:
        stderr = crds.stderr.strip() or crds.stdout.strip() or "unknown kubectl error"
        pytest.skip(
            f"Kasten K10 custom resource definitions are not reachable: {stderr}.",
            allow_module_level=True,
        )


@dataclass(frozen=True)
class KastenClusterContext:
    kubeconfig_path: str | None
    kasten_namespace: str
    app_namespace: str
    config_map_name: str

    def run_kubectl(
        self,
        *args: str,
        timeout_seconds: int = 120,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return _run_command(
            [*_kubectl_base(), *args],
            timeout_seconds=timeout_seconds,
            check=check,
        )

    def cli_args(self, *args: str) -> list[str]:
        prefix = ["--kubeconfig", self.kubeconfig_path] if self.kubeconfig_path else []
        return [*prefix, *args]

    def collect_diagnostics(self) -> str:
        diagnostic_commands: tuple[tuple[str, list[str]], ...] = (
            ("policies", ["-n", self.kasten_namespace, "get", "policies.config.kio.kasten.io", "-o", "wide"]),
            ("backupactions", ["-n", self.app_namespace, "get", "backupactions.actions.kio.kasten.io", "-o", "yaml"]),
            ("restoreactions", ["-n", self.app_namespace, "get", "restoreactions.actions.kio.kasten.io", "-o", "yaml"]),
            ("restorepoints", ["-n", self.app_namespace, "get", "restorepoints.apps.kio.kasten.io", "-o", "wide"]),
            ("events", ["-n", self.app_namespace, "get", "events", "--sort-by=.lastTimestamp"]),
        )

        sections: list[str] = []
        for title, args in diagnostic_commands:
            completed = self.run_kubectl(*args, timeout_seconds=60, check=False)
            output = completed.stdout.strip() or completed.stderr.strip() or "<no output>"
            sections.append(f"[{title}]\n{output}")

        return "\n\n".join(sections)


@pytest.fixture(scope="session")
def kasten_cluster() -> Iterator[KastenClusterContext]:
    _verify_prerequisites()
    if not _MANIFEST_PATH.exists():
        raise RuntimeError(f"Expected Kasten integration manifest at {_MANIFEST_PATH}.")

    suffix = uuid.uuid4().hex[:8]
    cluster = KastenClusterContext(
        kubeconfig_path=(os.getenv(_ENV_KUBECONFIG) or "").strip() or None,
        kasten_namespace=(os.getenv(_ENV_KASTEN_NAMESPACE) or "kasten-io").strip(),
        app_namespace=f"kbr-it-{suffix}",
        config_map_name="kbr-smoke-data",
    )

    try:
        cluster.run_kubectl("create", "namespace", cluster.app_namespace, timeout_seconds=60)
        cluster.run_kubectl("-n", cluster.app_namespace, "apply", "-f", str(_MANIFEST_PATH), timeout_seconds=120)
        yield cluster
    finally:
        cluster.run_kubectl(
            "delete",
            "namespace",
            cluster.app_namespace,
            "--wait=false",
            timeout_seconds=120,
            check=False,
        )
