from __future__ import annotations

import pytest

from execguard.approvals.models import (
    AlwaysApprove,
    Approve,
    DenyAndContinue,
    DenyAndStop,
    PatchPayload,
)
from execguard.approvals.review import StaticConfirmationChannel, TerminalConfirmationChannel


class ScriptedInput:
    def __init__(self, *answers: str) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answers.pop(0)


@pytest.mark.parametrize(
    ("answer", "expected"),
    [
        ("y", Approve()),
        ("YES", Approve()),
        ("a", AlwaysApprove()),
        ("s", DenyAndStop()),
        ("", DenyAndStop()),
        ("whatever", DenyAndStop()),
    ],
)
def test_terminal_channel_maps_answers(answer: str, expected: object) -> None:
    printed: list[str] = []
    channel = TerminalConfirmationChannel(
        input_func=ScriptedInput(answer), output_func=printed.append
    )

    decision = channel.confirm(("rm", "-rf", "build dir"), None)

    assert decision == expected
    assert "Command: rm -rf 'build dir'" in printed


def test_terminal_channel_collects_custom_deny_message() -> None:
    answers = ScriptedInput("n", "  use a temp dir  ")
    channel = TerminalConfirmationChannel(input_func=answers, output_func=lambda _line: None)

    decision = channel.confirm(("make", "install"), None)

    assert decision == DenyAndContinue(custom_message="use a temp dir")
    assert len(answers.prompts) == 2


def test_terminal_channel_deny_without_message() -> None:
    channel = TerminalConfirmationChannel(
        input_func=ScriptedInput("no", ""), output_func=lambda _line: None
    )

    assert channel.confirm(("make",), None) == DenyAndContinue(custom_message=None)


def test_terminal_channel_shows_patch_body() -> None:
    printed: list[str] = []
    patch = PatchPayload(patch="*** Begin Patch\n*** Add File: a\n+x\n*** End Patch\n")
    channel = TerminalConfirmationChannel(input_func=ScriptedInput("y"), output_func=printed.append)

    channel.confirm(("apply_patch", patch.patch), patch)

    assert "=== PATCH CONFIRMATION ===" in printed
    assert patch.patch.rstrip() in printed


def test_static_channel_always_returns_its_decision() -> None:
    channel = StaticConfirmationChannel(DenyAndStop())

    assert channel.confirm(("a",), None) == DenyAndStop()
    assert channel.confirm(("b",), None) == DenyAndStop()
