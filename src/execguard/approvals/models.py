"""Data models shared by the approval engine and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, TypeAlias

ApprovalPolicy = Literal["suggest", "auto-edit", "full-auto"]
APPROVAL_POLICIES: tuple[ApprovalPolicy, ...] = ("suggest", "auto-edit", "full-auto")


class SandboxBackend(str, Enum):
    """Isolation layer a command runs under."""

    NONE = "none"
    PLATFORM_ISOLATION = "platform_isolation"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """A proposed command plus where and how long it may run."""

    command: tuple[str, ...]
    workdir: str | None = None
    timeout: float | None = None
    writable_roots: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the request hashable.
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "writable_roots", tuple(self.writable_roots))


@dataclass(frozen=True, slots=True)
class PatchPayload:
    """Body of an ``apply_patch`` proposal."""

    patch: str


@dataclass(frozen=True, slots=True)
class AutoApprove:
    run_in_sandbox: bool
    reason: str
    group: str
    patch: PatchPayload | None = None


@dataclass(frozen=True, slots=True)
class AskUser:
    reason: str
    group: str
    patch: PatchPayload | None = None


@dataclass(frozen=True, slots=True)
class Reject:
    reason: str
    group: str


SafetyVerdict: TypeAlias = AutoApprove | AskUser | Reject


@dataclass(frozen=True, slots=True)
class Approve:
    pass


@dataclass(frozen=True, slots=True)
class AlwaysApprove:
    pass


@dataclass(frozen=True, slots=True)
class DenyAndStop:
    pass


@dataclass(frozen=True, slots=True)
class DenyAndContinue:
    custom_message: str | None = None


ReviewDecision: TypeAlias = Approve | AlwaysApprove | DenyAndStop | DenyAndContinue


@dataclass(slots=True)
class ExecutionOutcome:
    """Raw result of one execution attempt."""

    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class MessageItem:
    """Synthetic conversation message handed back to the agent transcript."""

    text: str
    role: str = "user"

    def to_dict(self) -> dict[str, object]:
        return {
            "type": "message",
            "role": self.role,
            "content": [{"type": "input_text", "text": self.text}],
        }


@dataclass(slots=True)
class CommandOutcome:
    """Value returned to the caller of the approval engine."""

    output_text: str
    metadata: dict[str, object] = field(default_factory=dict)
    additional_items: list[MessageItem] = field(default_factory=list)
    cancelled: bool = False
