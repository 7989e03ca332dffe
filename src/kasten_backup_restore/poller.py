from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Protocol, Sequence

import structlog

from .errors import BackupRestoreError, CompletionTimeoutError, TerminalFailureError
from .models import BACKUP_ACTION, POLICY, RESTORE_ACTION, PollOutcome, PollStatus, ResourceKind, ResourceRef

DEFAULT_POLL_INTERVAL_SECONDS = 5

logger = structlog.get_logger()


class StatusSource(Protocol):
    def read_field(self, ref: ResourceRef, path: Sequence[str | int]) -> Any: ...


@dataclass(frozen=True)
class CompletionRule:
    state_path: tuple[str, ...]
    error_path: tuple[str, ...] | None
    success_state: str
    failure_state: str
    timeout_seconds: int


COMPLETION_RULES: dict[ResourceKind, CompletionRule] = {
    POLICY: CompletionRule(
        state_path=("status", "validation"),
        error_path=None,
        success_state="Success",
        failure_state="Failed",
        timeout_seconds=60,
    ),
    BACKUP_ACTION: CompletionRule(
        state_path=("status", "state"),
        error_path=("status", "error", "cause"),
        success_state="Complete",
        failure_state="Failed",
        timeout_seconds=120,
    ),
    RESTORE_ACTION: CompletionRule(
        state_path=("status", "state"),
        error_path=("status", "error", "cause"),
        success_state="Complete",
        failure_state="Failed",
        timeout_seconds=120,
    ),
}


class CompletionPoller:
    """Waits for a submitted Kasten resource to reach a terminal state.

    Every call is an independent poll session: the status field is read at a
    fixed interval until it matches the kind's success or failure token, or
    until the kind's timeout budget is used up. Elapsed time is counted in
    whole intervals, so a 60 second budget at a 5 second interval is exactly
    12 status reads.
    """

    def __init__(
        self,
        *,
        status_source: StatusSource,
        interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        rules: dict[ResourceKind, CompletionRule] | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.status_source = status_source
        self.interval_seconds = interval_seconds
        self.rules = rules if rules is not None else COMPLETION_RULES

    def await_terminal(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str,
        *,
        timeout_seconds: int | None = None,
    ) -> PollOutcome:
        rule = self.rules.get(kind)
        if rule is None:
            raise ValueError(f"no completion rule defined for {kind.kind}")

        target = ResourceRef(kind=kind, name=name, namespace=namespace)
        budget = rule.timeout_seconds if timeout_seconds is None else timeout_seconds
        log = logger.bind(kind=kind.kind, name=name, namespace=namespace)
        log.info("poll.started", expected_state=rule.success_state, timeout_seconds=budget)

        elapsed = 0
        attempts = 0
        state: str | None = None
        while elapsed < budget:
            attempts += 1
            state = self._read_state(target, rule)
            if state == rule.success_state:
                log.info("poll.succeeded", state=state, attempts=attempts)
                return PollOutcome(
                    status=PollStatus.SUCCESS,
                    target=target,
                    attempts=attempts,
                    expected_state=rule.success_state,
                    timeout_seconds=budget,
                    last_state=state,
                )
            if state == rule.failure_state:
                cause = self._read_error_cause(target, rule)
                log.error("poll.failed", state=state, attempts=attempts, cause=cause)
                return PollOutcome(
                    status=PollStatus.FAILURE,
                    target=target,
                    attempts=attempts,
                    expected_state=rule.success_state,
                    timeout_seconds=budget,
                    last_state=state,
                    cause=cause,
                )

            log.info(
                "poll.waiting",
                expected_state=rule.success_state,
                state=state or "",
                elapsed_seconds=elapsed,
            )
            time.sleep(self.interval_seconds)
            elapsed += self.interval_seconds

        log.error("poll.timed_out", attempts=attempts, last_state=state or "", timeout_seconds=budget)
        return PollOutcome(
            status=PollStatus.TIMED_OUT,
            target=target,
            attempts=attempts,
            expected_state=rule.success_state,
            timeout_seconds=budget,
            last_state=state,
        )

    def _read_state(self, target: ResourceRef, rule: CompletionRule) -> str | None:
        try:
            value = self.status_source.read_field(target, rule.state_path)
        except BackupRestoreError as error:
            # The controller may not have observed the resource yet.
            logger.debug("poll.status_unavailable", name=target.name, reason=str(error))
            return None
        return str(value) if value is not None else None

    def _read_error_cause(self, target: ResourceRef, rule: CompletionRule) -> str:
        if rule.error_path is None:
            return ""
        try:
            value = self.status_source.read_field(target, rule.error_path)
        except BackupRestoreError as error:
            logger.warning("poll.error_detail_unavailable", name=target.name, reason=str(error))
            return ""
        return str(value) if value is not None else ""


def raise_for_outcome(outcome: PollOutcome) -> None:
    if outcome.succeeded:
        return
    if outcome.status is PollStatus.FAILURE:
        raise TerminalFailureError(target=outcome.target, cause=outcome.cause)
    raise CompletionTimeoutError(
        target=outcome.target,
        timeout_seconds=outcome.timeout_seconds,
        expected_state=outcome.expected_state,
        last_state=outcome.last_state,
    )
