from __future__ import annotations

import copy
from typing import Any, Sequence

import pytest

from kasten_backup_restore.errors import OrchestrationError
from kasten_backup_restore.k8s import extract_field
from kasten_backup_restore.models import ResourceKind, ResourceRef


class FakeGateway:
    """In-memory stand-in for ResourceGateway with scripted status updates."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str | None], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str, str | None]] = []
        self._status_scripts: dict[tuple[str, str, str | None], list[dict[str, Any]]] = {}

    def seed(self, kind: ResourceKind, name: str, namespace: str | None, body: dict[str, Any]) -> None:
        self.objects[_key(kind, name, namespace)] = copy.deepcopy(body)

    def script_status(self, kind: ResourceKind, name: str, namespace: str | None, *statuses: dict[str, Any]) -> None:
        self._status_scripts[_key(kind, name, namespace)] = list(statuses)

    def create(self, kind: ResourceKind, namespace: str | None, body: dict[str, Any]) -> ResourceRef:
        name = body["metadata"]["name"]
        ref = ResourceRef(kind=kind, name=name, namespace=namespace if kind.namespaced else None)
        key = _key(kind, name, ref.namespace)
        self.calls.append(("create", kind.kind, name, ref.namespace))
        if key in self.objects:
            raise OrchestrationError(f"create {kind.kind} '{ref.display}': API status 409 (Conflict)")
        self.objects[key] = copy.deepcopy(body)
        return ref

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        key = _key(ref.kind, ref.name, ref.namespace)
        self.calls.append(("get", ref.kind.kind, ref.name, ref.namespace))
        if key not in self.objects:
            raise OrchestrationError(f"get {ref.kind.kind} '{ref.display}': API status 404 (Not Found)")
        document = self.objects[key]
        script = self._status_scripts.get(key)
        if script:
            document["status"] = script.pop(0) if len(script) > 1 else script[0]
        return document

    def delete(self, ref: ResourceRef) -> None:
        key = _key(ref.kind, ref.name, ref.namespace)
        self.calls.append(("delete", ref.kind.kind, ref.name, ref.namespace))
        if key not in self.objects:
            raise OrchestrationError(f"delete {ref.kind.kind} '{ref.display}': API status 404 (Not Found)")
        del self.objects[key]

    def read_field(self, ref: ResourceRef, path: Sequence[str | int]) -> Any:
        return extract_field(self.get(ref), path)

    def calls_of(self, operation: str) -> list[tuple[str, str, str | None]]:
        return [call[1:] for call in self.calls if call[0] == operation]

    def find(self, kind: ResourceKind, name: str, namespace: str | None) -> dict[str, Any] | None:
        return self.objects.get(_key(kind, name, namespace))


def _key(kind: ResourceKind, name: str, namespace: str | None) -> tuple[str, str, str | None]:
    return (kind.kind, name, namespace if kind.namespaced else None)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    sleeps: list[float] = []
    monkeypatch.setattr("kasten_backup_restore.poller.time.sleep", sleeps.append)
    return sleeps
