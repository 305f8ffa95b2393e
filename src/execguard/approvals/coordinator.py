"""Approval coordinator: assess, escalate, execute and retry one proposed command."""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from collections.abc import Callable, Sequence
from typing import assert_never

from execguard.approvals.assessor import APPLY_PATCH_COMMAND, SafetyAssessor, assess
from execguard.approvals.memo import ApprovedCommandMemo
from execguard.approvals.models import (
    AlwaysApprove,
    ApprovalPolicy,
    Approve,
    AskUser,
    AutoApprove,
    CommandOutcome,
    DenyAndContinue,
    DenyAndStop,
    ExecutionOutcome,
    ExecutionRequest,
    MessageItem,
    PatchPayload,
    Reject,
    ReviewDecision,
    SafetyVerdict,
    SandboxBackend,
)
from execguard.approvals.review import ConfirmationChannel
from execguard.approvals.sandbox import (
    PlatformDescriptor,
    SandboxStrategy,
    default_sandbox_strategy,
    sandbox_strategy_for,
)
from execguard.execution import execute_command, execute_patch

LOGGER = logging.getLogger(__name__)

CommandExecutor = Callable[
    [ExecutionRequest, SandboxBackend, threading.Event | None, object], ExecutionOutcome
]
PatchExecutor = Callable[[str, str], ExecutionOutcome]
WorkdirProbe = Callable[[str], bool]

ABORTED_OUTPUT = "aborted"
CANCELLED_OUTPUT = "cancelled"
REJECTED_METADATA = {
    "error": "command rejected",
    "reason": "Command rejected by auto-approval system.",
}
STOP_MESSAGE = "No, don't do that — stop for now."
CONTINUE_MESSAGE = "No, don't do that — keep going though."


def workdir_accessible(path: str) -> bool:
    return os.access(path, os.F_OK)


class ApprovalCoordinator:
    """Runs the assess -> confirm -> execute -> retry state machine.

    The memo is owned by the surrounding session and shared by reference; the
    sandbox strategy is fixed for the coordinator's lifetime while its
    isolation probe runs on every selection.
    """

    def __init__(
        self,
        *,
        memo: ApprovedCommandMemo,
        confirmation: ConfirmationChannel,
        sandbox_strategy: SandboxStrategy | None = None,
        platform_descriptor: PlatformDescriptor | None = None,
        assessor: SafetyAssessor = assess,
        command_executor: CommandExecutor = execute_command,
        patch_executor: PatchExecutor = execute_patch,
        workdir_probe: WorkdirProbe = workdir_accessible,
        current_directory: Callable[[], str] = os.getcwd,
    ) -> None:
        self.memo = memo
        self.confirmation = confirmation
        if sandbox_strategy is None:
            sandbox_strategy = (
                sandbox_strategy_for(platform_descriptor)
                if platform_descriptor is not None
                else default_sandbox_strategy()
            )
        self.sandbox_strategy = sandbox_strategy
        self.assessor = assessor
        self.command_executor = command_executor
        self.patch_executor = patch_executor
        self.workdir_probe = workdir_probe
        self.current_directory = current_directory

    def handle_execution(
        self,
        request: ExecutionRequest,
        config: object,
        policy: ApprovalPolicy,
        additional_writable_roots: Sequence[str] = (),
        cancel_event: threading.Event | None = None,
    ) -> CommandOutcome:
        workdir, writable_roots = self._resolve_workdir(request, additional_writable_roots)
        resolved = dataclasses.replace(request, workdir=workdir, writable_roots=writable_roots)

        if self.memo.is_approved(request.command):
            LOGGER.info("command_preapproved", extra={"argv_length": len(request.command)})
            return self._execute(
                resolved,
                config,
                run_in_sandbox=False,
                patch=_memoized_patch(request.command),
                cancel_event=cancel_event,
            )

        verdict = self._checked_verdict(
            self.assessor(request.command, workdir, policy, writable_roots)
        )
        LOGGER.info(
            "verdict_assessed",
            extra={
                "verdict": type(verdict).__name__,
                "group": verdict.group,
                "reason": verdict.reason,
                "policy": policy,
            },
        )

        if isinstance(verdict, Reject):
            return CommandOutcome(output_text=ABORTED_OUTPUT, metadata=dict(REJECTED_METADATA))
        if isinstance(verdict, AutoApprove):
            return self._execute(
                resolved,
                config,
                run_in_sandbox=verdict.run_in_sandbox,
                patch=verdict.patch,
                cancel_event=cancel_event,
            )
        if isinstance(verdict, AskUser):
            denial = self._escalate(request.command, verdict.patch)
            if denial is not None:
                return denial
            return self._execute(
                resolved,
                config,
                run_in_sandbox=False,
                patch=verdict.patch,
                cancel_event=cancel_event,
            )
        assert_never(verdict)

    def _resolve_workdir(
        self,
        request: ExecutionRequest,
        additional_writable_roots: Sequence[str],
    ) -> tuple[str, tuple[str, ...]]:
        roots = [*request.writable_roots]
        roots.extend(root for root in additional_writable_roots if root not in roots)
        if request.workdir is None:
            return self.current_directory(), tuple(roots)
        if self.workdir_probe(request.workdir):
            return request.workdir, tuple(roots)

        fallback = self.current_directory()
        LOGGER.info(
            "workdir_fallback",
            extra={"requested": request.workdir, "fallback": fallback},
        )
        if fallback not in roots:
            roots.append(fallback)
        return fallback, tuple(roots)

    def _checked_verdict(self, verdict: object) -> SafetyVerdict:
        if isinstance(verdict, Reject):
            if getattr(verdict, "patch", None) is not None:
                LOGGER.warning("malformed_verdict", extra={"detail": "reject_with_patch"})
            return verdict
        if isinstance(verdict, (AutoApprove, AskUser)):
            return verdict
        LOGGER.warning("malformed_verdict", extra={"detail": type(verdict).__name__})
        return Reject(reason="Assessor returned an unrecognized verdict", group="Invalid")

    def _escalate(
        self,
        command: tuple[str, ...],
        patch: PatchPayload | None,
    ) -> CommandOutcome | None:
        """Ask the reviewer; return the abort outcome on denial, ``None`` to proceed."""
        decision: ReviewDecision = self.confirmation.confirm(command, patch)
        LOGGER.info("review_decision", extra={"decision": type(decision).__name__})
        if isinstance(decision, Approve):
            return None
        if isinstance(decision, AlwaysApprove):
            self.memo.record_approved(command)
            return None
        if isinstance(decision, DenyAndStop):
            return _denied(STOP_MESSAGE)
        if isinstance(decision, DenyAndContinue):
            custom = (decision.custom_message or "").strip()
            return _denied(custom or CONTINUE_MESSAGE)
        assert_never(decision)

    def _execute(
        self,
        request: ExecutionRequest,
        config: object,
        *,
        run_in_sandbox: bool,
        patch: PatchPayload | None,
        cancel_event: threading.Event | None,
    ) -> CommandOutcome:
        backend = self.sandbox_strategy.select_backend(run_in_sandbox)
        outcome = self._run_once(request, config, backend, patch, cancel_event)
        if outcome.cancelled:
            return _cancelled(outcome)

        if (
            backend is not SandboxBackend.NONE
            and outcome.exit_code != 0
            and _ask_on_sandbox_failure(config)
        ):
            LOGGER.info(
                "sandbox_failure_escalated",
                extra={"exit_code": outcome.exit_code, "backend": backend.value},
            )
            denial = self._escalate(request.command, None)
            if denial is not None:
                return denial
            outcome = self._run_once(request, config, SandboxBackend.NONE, patch, cancel_event)
            if outcome.cancelled:
                return _cancelled(outcome)

        return _summarize(outcome)

    def _run_once(
        self,
        request: ExecutionRequest,
        config: object,
        backend: SandboxBackend,
        patch: PatchPayload | None,
        cancel_event: threading.Event | None,
    ) -> ExecutionOutcome:
        if patch is not None:
            return self.patch_executor(patch.patch, request.workdir or self.current_directory())
        return self.command_executor(request, backend, cancel_event, config)


def handle_execution(
    request: ExecutionRequest,
    config: object,
    policy: ApprovalPolicy,
    additional_writable_roots: Sequence[str],
    confirmation_channel: ConfirmationChannel,
    cancel_event: threading.Event | None = None,
    *,
    memo: ApprovedCommandMemo,
    sandbox_strategy: SandboxStrategy | None = None,
) -> CommandOutcome:
    """Decide on and run one proposed command with the default collaborators."""
    coordinator = ApprovalCoordinator(
        memo=memo,
        confirmation=confirmation_channel,
        sandbox_strategy=sandbox_strategy,
    )
    return coordinator.handle_execution(
        request,
        config,
        policy,
        additional_writable_roots,
        cancel_event,
    )


def _ask_on_sandbox_failure(config: object) -> bool:
    return bool(getattr(config, "ask_on_sandbox_failure", False))


def _summarize(outcome: ExecutionOutcome) -> CommandOutcome:
    metadata: dict[str, object] = {"duration_seconds": round(outcome.duration_seconds, 4)}
    if outcome.exit_code == 0:
        return CommandOutcome(output_text=outcome.stdout, metadata=metadata)
    metadata["exit_code"] = outcome.exit_code
    if outcome.timed_out:
        metadata["timed_out"] = True
    return CommandOutcome(output_text=outcome.stderr, metadata=metadata)


def _denied(message: str) -> CommandOutcome:
    return CommandOutcome(output_text=ABORTED_OUTPUT, additional_items=[MessageItem(text=message)])


def _cancelled(outcome: ExecutionOutcome) -> CommandOutcome:
    return CommandOutcome(
        output_text=CANCELLED_OUTPUT,
        metadata={"cancelled": True, "duration_seconds": round(outcome.duration_seconds, 4)},
        cancelled=True,
    )


def _memoized_patch(command: tuple[str, ...]) -> PatchPayload | None:
    # A blanket-approved apply_patch still has to go through the patch backend.
    if len(command) == 2 and command[0] == APPLY_PATCH_COMMAND:
        return PatchPayload(patch=command[1])
    return None
