"""Wrap commands in a macOS ``sandbox-exec`` (Seatbelt) profile."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Sequence

PATH_TO_SEATBELT_EXECUTABLE = "/usr/bin/sandbox-exec"

READ_ONLY_SEATBELT_POLICY = """
(version 1)

(deny default)

; child processes inherit the policy of their parent
(allow process-exec)
(allow process-fork)
(allow signal (target self))

(allow file-read*)

(allow file-write-data
  (require-all
    (path "/dev/null")
    (vnode-type CHARACTER-DEVICE)))

(allow sysctl-read)
(allow mach-lookup
  (global-name "com.apple.system.opendirectoryd.libinfo")
  (global-name "com.apple.system.logger"))
(allow ipc-posix-sem)
(allow pseudo-tty)
(allow file-read* file-write* file-ioctl (literal "/dev/ptmx"))
""".strip()


def seatbelt_command(
    command: Sequence[str],
    writable_roots: Sequence[str],
    *,
    executable: str = PATH_TO_SEATBELT_EXECUTABLE,
) -> list[str]:
    """Return the argv that runs ``command`` under the read-only profile.

    Every writable root becomes a ``WRITABLE_ROOT_<n>`` profile parameter so
    paths are never spliced into the policy text itself.
    """
    roots = _dedupe([*writable_roots, tempfile.gettempdir()])
    policy = READ_ONLY_SEATBELT_POLICY
    params: list[str] = []
    if roots:
        subpaths = " ".join(
            f'(subpath (param "WRITABLE_ROOT_{index}"))' for index in range(len(roots))
        )
        policy = f"{policy}\n(allow file-write*\n  {subpaths})"
        params = [f"-DWRITABLE_ROOT_{index}={root}" for index, root in enumerate(roots)]
    return [executable, "-p", policy, *params, "--", *command]


def _dedupe(paths: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for path in paths:
        normalized = os.path.realpath(path)
        if normalized in seen:
            continue
        seen.add(normalized)
        unique.append(normalized)
    return unique
