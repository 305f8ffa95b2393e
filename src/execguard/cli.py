"""Command-line interface for execguard."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from pathlib import Path
from types import FrameType
from typing import cast

from .approvals.coordinator import ApprovalCoordinator
from .approvals.memo import ApprovedCommandMemo
from .approvals.models import APPROVAL_POLICIES, CommandOutcome, ExecutionRequest
from .approvals.review import TerminalConfirmationChannel
from .config import AppConfig, policy_value

LOGGER = logging.getLogger(__name__)

EXIT_ABORTED = 1
EXIT_CANCELLED = 130


class CLIArgs(argparse.Namespace):
    working_directory: str | None
    policy: str | None
    writable_roots: list[str]
    timeout: float | None
    patch_file: str | None
    ask_on_sandbox_failure: bool | None
    verbose: bool
    command: list[str]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="execguard",
        description="Approve, sandbox and run agent-proposed commands",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Working directory for the command. "
            "Takes precedence over config/env cwd values."
        ),
    )
    parser.add_argument(
        "--policy",
        choices=APPROVAL_POLICIES,
        help="Approval policy; defaults to the configured policy.",
    )
    parser.add_argument(
        "--writable-root",
        dest="writable_roots",
        action="append",
        default=[],
        help="Extra directory the command may modify. Repeatable.",
    )
    parser.add_argument("--timeout", type=float, help="Kill the command after this many seconds.")
    parser.add_argument(
        "--patch",
        dest="patch_file",
        help="Apply this apply_patch body instead of running a command.",
    )
    parser.add_argument(
        "--ask-on-sandbox-failure",
        dest="ask_on_sandbox_failure",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Offer an unsandboxed retry when a sandboxed run fails.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log engine decisions to stderr.")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments to run")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    config = AppConfig.from_env()
    if args.policy is not None:
        config.approval_policy = policy_value(args.policy)
    if args.ask_on_sandbox_failure is not None:
        config.ask_on_sandbox_failure = args.ask_on_sandbox_failure

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if args.patch_file is not None:
        patch_path = Path(args.patch_file)
        if not patch_path.is_file():
            print(f"Patch file not found: {args.patch_file}")
            return 2
        command = ["apply_patch", patch_path.read_text(encoding="utf-8")]
    if not command:
        print("No command provided.")
        return 2

    workdir = args.working_directory or config.working_directory
    if workdir is not None:
        workdir = str(Path(workdir).expanduser())
    request = ExecutionRequest(command=tuple(command), workdir=workdir, timeout=args.timeout)

    coordinator = ApprovalCoordinator(
        memo=ApprovedCommandMemo(),
        confirmation=TerminalConfirmationChannel(),
    )
    cancel_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, _cancel_on_interrupt(cancel_event))
    try:
        outcome = coordinator.handle_execution(
            request,
            config,
            config.approval_policy,
            [*config.writable_roots, *args.writable_roots],
            cancel_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(render_outcome(outcome))
    LOGGER.debug("command_finished", extra={"cancelled": outcome.cancelled})
    return exit_code_for(outcome)


def _cancel_on_interrupt(cancel_event: threading.Event):
    def handler(signum: int, frame: FrameType | None) -> None:
        cancel_event.set()

    return handler


def exit_code_for(outcome: CommandOutcome) -> int:
    if outcome.cancelled:
        return EXIT_CANCELLED
    exit_code = outcome.metadata.get("exit_code")
    if isinstance(exit_code, int):
        return exit_code
    if "error" in outcome.metadata or outcome.additional_items:
        return EXIT_ABORTED
    return 0


def render_outcome(outcome: CommandOutcome) -> str:
    lines: list[str] = []
    output = outcome.output_text.rstrip()
    if output:
        lines.append(output)
    reason = outcome.metadata.get("reason")
    if isinstance(reason, str):
        lines.append(f"[rejected] {reason}")
    for item in outcome.additional_items:
        lines.append(f"[message to agent] {item.text}")
    return "\n".join(lines)


if __name__ == "__main__":
    raise SystemExit(main())
