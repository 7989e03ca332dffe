from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import os

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"
POLICY_TEMPLATE_NAME = "policy.yaml"
BACKUP_ACTION_TEMPLATE_NAME = "backup_action.yaml"
RESTORE_ACTION_TEMPLATE_NAME = "restore_action.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    template_dir: Path = DEFAULT_TEMPLATE_DIR
    kubeconfig_path: str | None = None
    context: str | None = None
    namespace: str | None = None
    in_cluster: bool = False
    poll_interval_seconds: int = 5
    request_timeout_seconds: int = 30
    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if self.log_level.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"log_level must be a standard logging level name, got {self.log_level!r}")

    @classmethod
    def from_env(cls) -> AppConfig:
        return cls(
            template_dir=Path(os.getenv("KBR_TEMPLATE_DIR") or DEFAULT_TEMPLATE_DIR).expanduser(),
            kubeconfig_path=os.getenv("KBR_KUBECONFIG") or os.getenv("KUBECONFIG") or None,
            context=os.getenv("KBR_CONTEXT") or None,
            namespace=(os.getenv("KBR_NAMESPACE") or "").strip() or None,
            in_cluster=_flag_enabled(os.getenv("KBR_IN_CLUSTER")),
            poll_interval_seconds=int(os.getenv("KBR_POLL_INTERVAL_SECONDS", "5")),
            request_timeout_seconds=int(os.getenv("KBR_REQUEST_TIMEOUT_SECONDS", "30")),
            log_level=os.getenv("KBR_LOG_LEVEL", "INFO").upper(),
            json_logs=_flag_enabled(os.getenv("KBR_JSON_LOGS")),
        )

    @property
    def policy_template(self) -> Path:
        return self.template_dir / POLICY_TEMPLATE_NAME

    @property
    def backup_action_template(self) -> Path:
        return self.template_dir / BACKUP_ACTION_TEMPLATE_NAME

    @property
    def restore_action_template(self) -> Path:
        return self.template_dir / RESTORE_ACTION_TEMPLATE_NAME


def _flag_enabled(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES
