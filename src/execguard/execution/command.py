"""Run an approved command as a subprocess."""

from __future__ import annotations

import os
import signal
import subprocess
import threading

from execguard.approvals.models import ExecutionOutcome, ExecutionRequest, SandboxBackend

from .base import (
    EXIT_CANCELLED,
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    EXIT_TIMED_OUT,
    log_request,
    log_result,
    monotonic_now,
    normalize_output,
    output_limits,
    truncate_output,
)
from .seatbelt import seatbelt_command

POLL_INTERVAL_SECONDS = 0.05
_OWN_PROCESS_GROUP = os.name == "posix"


def execute_command(
    request: ExecutionRequest,
    backend: SandboxBackend,
    cancel_event: threading.Event | None = None,
    config: object | None = None,
) -> ExecutionOutcome:
    """Execute ``request`` under ``backend`` and return its captured output.

    Spawn failures, timeouts and cancellation come back as outcomes rather
    than exceptions. ``config`` is read only for its output limits.
    """
    log_request(
        request.command,
        backend=backend.value,
        workdir=request.workdir,
        timeout=request.timeout,
    )
    started = monotonic_now()
    if not request.command:
        outcome = ExecutionOutcome(stdout="", stderr="empty command", exit_code=EXIT_NOT_FOUND)
        log_result(outcome, backend=backend.value)
        return outcome

    argv = list(request.command)
    if backend is SandboxBackend.PLATFORM_ISOLATION:
        roots = list(request.writable_roots)
        if request.workdir:
            roots.insert(0, request.workdir)
        argv = seatbelt_command(argv, roots)

    try:
        process = subprocess.Popen(
            argv,
            cwd=request.workdir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=_OWN_PROCESS_GROUP,
        )
    except FileNotFoundError:
        outcome = ExecutionOutcome(
            stdout="",
            stderr=f"command not found: {argv[0]}",
            exit_code=EXIT_NOT_FOUND,
            duration_seconds=monotonic_now() - started,
        )
        log_result(outcome, backend=backend.value)
        return outcome
    except OSError as exc:
        outcome = ExecutionOutcome(
            stdout="",
            stderr=f"failed to start {argv[0]}: {exc}",
            exit_code=EXIT_NOT_EXECUTABLE,
            duration_seconds=monotonic_now() - started,
        )
        log_result(outcome, backend=backend.value)
        return outcome

    deadline = None if request.timeout is None else started + request.timeout
    timed_out = False
    cancelled = False
    while True:
        try:
            stdout, stderr = process.communicate(timeout=POLL_INTERVAL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
            elif deadline is not None and monotonic_now() >= deadline:
                timed_out = True
            else:
                continue
        _kill_process_group(process)
        stdout, stderr = process.communicate()
        break

    max_bytes, max_lines = output_limits(config)
    exit_code = process.returncode
    if cancelled:
        exit_code = EXIT_CANCELLED
    elif timed_out:
        exit_code = EXIT_TIMED_OUT
    outcome = ExecutionOutcome(
        stdout=truncate_output(normalize_output(stdout), max_bytes=max_bytes, max_lines=max_lines),
        stderr=truncate_output(normalize_output(stderr), max_bytes=max_bytes, max_lines=max_lines),
        exit_code=exit_code,
        duration_seconds=monotonic_now() - started,
        timed_out=timed_out,
        cancelled=cancelled,
    )
    log_result(outcome, backend=backend.value)
    return outcome


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    # Grandchildren hold the output pipes open, so the whole group has to go.
    if not _OWN_PROCESS_GROUP:
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
