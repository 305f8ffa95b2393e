"""Helpers shared by the command and patch execution backends."""

from __future__ import annotations

import locale
import logging
import re
import shlex
import time
from collections.abc import Sequence

from execguard.approvals.models import ExecutionOutcome

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024
DEFAULT_MAX_OUTPUT_LINES = 256

EXIT_TIMED_OUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
EXIT_CANCELLED = 130

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


def log_request(
    command: Sequence[str],
    *,
    backend: str,
    workdir: str | None,
    timeout: float | None,
) -> None:
    LOGGER.info(
        "command_request",
        extra={
            "backend": backend,
            "command": sanitize_command(command),
            "workdir": workdir,
            "timeout": timeout,
        },
    )


def log_result(outcome: ExecutionOutcome, *, backend: str) -> None:
    LOGGER.info(
        "command_result",
        extra={
            "backend": backend,
            "exit_code": outcome.exit_code,
            "timed_out": outcome.timed_out,
            "cancelled": outcome.cancelled,
            "duration_seconds": round(outcome.duration_seconds, 4),
            "stdout_length": len(outcome.stdout),
            "stderr_length": len(outcome.stderr),
        },
    )


def sanitize_command(command: Sequence[str]) -> str:
    sanitized = shlex.join(command)
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


def monotonic_now() -> float:
    return time.monotonic()


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "cp1252"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")


def truncate_output(text: str, *, max_bytes: int, max_lines: int) -> str:
    """Cap output by line count and encoded size, noting what was dropped."""
    lines = text.splitlines(keepends=True)
    kept: list[str] = []
    size = 0
    for line in lines[:max_lines]:
        encoded = len(line.encode("utf-8"))
        if size + encoded > max_bytes:
            break
        kept.append(line)
        size += encoded
    if len(kept) == len(lines):
        return text
    omitted = len(lines) - len(kept)
    return "".join(kept) + f"\n[Output truncated: {omitted} lines omitted]"


def output_limits(config: object | None) -> tuple[int, int]:
    """Read the pass-through output limits from whatever config the caller handed in."""
    max_bytes = getattr(config, "max_output_bytes", None)
    max_lines = getattr(config, "max_output_lines", None)
    return (
        max_bytes if isinstance(max_bytes, int) and max_bytes > 0 else DEFAULT_MAX_OUTPUT_BYTES,
        max_lines if isinstance(max_lines, int) and max_lines > 0 else DEFAULT_MAX_OUTPUT_LINES,
    )
