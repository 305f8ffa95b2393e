"""Confirmation channel port and the implementations shipped with execguard."""

from __future__ import annotations

import shlex
from collections.abc import Callable, Sequence
from typing import Protocol

from execguard.approvals.models import (
    AlwaysApprove,
    Approve,
    DenyAndContinue,
    DenyAndStop,
    PatchPayload,
    ReviewDecision,
)

PromptInput = Callable[[str], str]
PromptOutput = Callable[[str], None]


class ConfirmationChannel(Protocol):
    """Asks a reviewer whether a proposed command may run."""

    def confirm(self, command: Sequence[str], patch: PatchPayload | None) -> ReviewDecision:
        ...


class StaticConfirmationChannel:
    """Answers every escalation with the same decision."""

    def __init__(self, decision: ReviewDecision) -> None:
        self.decision = decision

    def confirm(self, command: Sequence[str], patch: PatchPayload | None) -> ReviewDecision:
        return self.decision


class TerminalConfirmationChannel:
    """Interactive prompt on the controlling terminal."""

    def __init__(
        self,
        *,
        input_func: PromptInput = input,
        output_func: PromptOutput = print,
    ) -> None:
        self.input_func = input_func
        self.output_func = output_func

    def confirm(self, command: Sequence[str], patch: PatchPayload | None) -> ReviewDecision:
        if patch is not None:
            self.output_func("\n=== PATCH CONFIRMATION ===")
            self.output_func(patch.patch.rstrip())
        else:
            self.output_func("\n=== COMMAND CONFIRMATION ===")
            self.output_func(f"Command: {_render_command(command)}")
        self.output_func("==========================")
        choice = (
            self.input_func(
                "Allow? [y]es / [a]lways this session / [n]o, keep going / [s]top (default): "
            )
            .strip()
            .lower()
        )
        if choice in {"y", "yes"}:
            return Approve()
        if choice in {"a", "always"}:
            return AlwaysApprove()
        if choice in {"n", "no"}:
            message = self.input_func("Tell the agent what to do instead (optional): ").strip()
            return DenyAndContinue(custom_message=message or None)
        return DenyAndStop()


def _render_command(command: Sequence[str]) -> str:
    return shlex.join(command)
