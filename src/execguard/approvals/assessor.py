"""Default safety assessment for proposed commands.

``assess`` is a pure function: it never touches the filesystem, never raises
and always returns the same verdict for the same inputs. Callers that want a
different rule table can hand the coordinator any callable with the same
signature.
"""

from __future__ import annotations

import os
import re
import shlex
from collections.abc import Callable, Sequence

from execguard.approvals.models import (
    ApprovalPolicy,
    AskUser,
    AutoApprove,
    PatchPayload,
    Reject,
    SafetyVerdict,
)

SafetyAssessor = Callable[[Sequence[str], str, ApprovalPolicy, Sequence[str]], SafetyVerdict]

APPLY_PATCH_COMMAND = "apply_patch"
PATCH_BEGIN_MARKER = "*** Begin Patch"

_PATCH_PATH_PATTERN = re.compile(
    r"^\*\*\* (?:Add File|Delete File|Update File|Move to): (?P<path>.+)$", re.MULTILINE
)

_SHELL_WRAPPERS = {"bash", "sh", "zsh"}
_SHELL_SCRIPT_FLAGS = {"-c", "-lc"}
_SCRIPT_OPERATORS = {"&&", "||", ";", "|"}

_DESTRUCTIVE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)\b",
        r"\bmkfs(\.\w+)?\b",
        r"\bdd\b.*\bof=/dev/",
        r"\bshred\b",
        r"\bchmod\s+-R\s+777\b",
        r"\bgit\s+(reset\s+--hard|clean\s+-[a-z]*f|push\s+.*--force)\b",
        r"\bdrop\s+(table|database)\b",
        r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;",
    )
]

_ELEVATION_PATTERN = re.compile(r"(^|[;&|(]\s*)(sudo|doas|su)\b", re.IGNORECASE | re.MULTILINE)
_ELEVATION_PROGRAMS = {"sudo", "doas", "su", "pkexec"}
_COMMAND_LAUNCHERS = {"env", "nohup", "nice", "time", "command", "exec", "timeout", "stdbuf"}
_ASSIGNMENT_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_LAUNCHER_ARGUMENT_PATTERN = re.compile(r"^\d+(\.\d+)?[smhd]?$")

_SAFE_COMMANDS: dict[str, tuple[str, str]] = {
    "cd": ("Navigating", "Change directory"),
    "pwd": ("Navigating", "Print working directory"),
    "ls": ("Searching", "List directory"),
    "tree": ("Searching", "List directory tree"),
    "rg": ("Searching", "Ripgrep search"),
    "grep": ("Searching", "Text search"),
    "cat": ("Reading files", "View file contents"),
    "nl": ("Reading files", "View file with line numbers"),
    "head": ("Reading files", "Show file head"),
    "tail": ("Reading files", "Show file tail"),
    "wc": ("Reading files", "Word count"),
    "stat": ("Reading files", "Show file status"),
    "echo": ("Printing", "Echo string"),
    "which": ("Searching", "Locate command"),
    "true": ("Utility", "No-op"),
}

_UNSAFE_FIND_OPTIONS = {
    "-exec",
    "-execdir",
    "-ok",
    "-okdir",
    "-delete",
    "-fls",
    "-fprint",
    "-fprint0",
    "-fprintf",
}
_UNSAFE_RG_OPTIONS = {"--pre", "--hostname-bin", "--search-zip", "-z"}
_SAFE_GIT_SUBCOMMANDS = {"status", "log", "diff", "show", "branch", "rev-parse", "blame"}


def assess(
    command: Sequence[str],
    workdir: str,
    policy: ApprovalPolicy,
    writable_roots: Sequence[str],
) -> SafetyVerdict:
    argv = tuple(command)
    if not argv or not argv[0].strip():
        return Reject(reason="Empty command", group="Invalid")

    if argv[0] == APPLY_PATCH_COMMAND:
        return _assess_patch(argv, workdir, policy, writable_roots)

    safe = _known_safe(argv)
    if safe is not None:
        group, reason = safe
        return AutoApprove(run_in_sandbox=False, reason=reason, group=group)

    if policy != "full-auto":
        return AskUser(
            reason="Command is not on the read-only allowlist",
            group="Running command",
        )

    if _requests_elevation(argv):
        return AskUser(reason="Command requests elevated privileges", group="Running command")
    rendered = _command_text(argv)
    if any(pattern.search(rendered) for pattern in _DESTRUCTIVE_PATTERNS):
        return AskUser(reason="Command looks destructive", group="Running command")
    return AutoApprove(
        run_in_sandbox=True,
        reason="Full-auto mode runs commands inside the sandbox",
        group="Running command",
    )


def patch_paths(patch_text: str) -> list[str]:
    """Return every path an ``apply_patch`` body adds, deletes, updates or moves to."""
    return [match.group("path").strip() for match in _PATCH_PATH_PATTERN.finditer(patch_text)]


def is_path_writable(path: str, workdir: str, writable_roots: Sequence[str]) -> bool:
    """Lexically check that ``path`` resolves under the workdir or a writable root."""
    target = _normalize(path, workdir)
    for root in (workdir, *writable_roots):
        if not root:
            continue
        base = _normalize(root, workdir)
        if target == base or target.startswith(base.rstrip(os.sep) + os.sep):
            return True
    return False


def _assess_patch(
    argv: tuple[str, ...],
    workdir: str,
    policy: ApprovalPolicy,
    writable_roots: Sequence[str],
) -> SafetyVerdict:
    if len(argv) != 2:
        return Reject(reason="apply_patch takes exactly one patch argument", group="Invalid")
    patch_text = argv[1]
    if PATCH_BEGIN_MARKER not in patch_text:
        return Reject(reason="apply_patch body is missing the patch envelope", group="Invalid")
    paths = patch_paths(patch_text)
    if not paths:
        return Reject(reason="apply_patch body has no file operations", group="Invalid")

    payload = PatchPayload(patch=patch_text)
    if policy == "suggest":
        return AskUser(reason="Suggest mode reviews every edit", group="Editing", patch=payload)
    if all(is_path_writable(path, workdir, writable_roots) for path in paths):
        return AutoApprove(
            run_in_sandbox=False,
            reason="Patch only touches writable paths",
            group="Editing",
            patch=payload,
        )
    return AskUser(
        reason="Patch touches paths outside the writable roots",
        group="Editing",
        patch=payload,
    )


def _known_safe(argv: tuple[str, ...]) -> tuple[str, str] | None:
    if _is_shell_script(argv):
        return _known_safe_script(argv[2])
    return _known_safe_argv(argv)


def _known_safe_script(script: str) -> tuple[str, str] | None:
    if "`" in script or "$(" in script:
        return None
    segments = _script_segments(script, strict=True)
    if not segments:
        return None

    first: tuple[str, str] | None = None
    for segment in segments:
        verdict = _known_safe_argv(tuple(segment))
        if verdict is None:
            return None
        first = first or verdict
    return first


def _script_segments(script: str, *, strict: bool) -> list[list[str]] | None:
    """Split a shell script into the argv of each simple command it runs.

    Newlines separate commands just like ``;`` does. In strict mode any
    redirection, subshell or background job makes the script unsplittable.
    """
    segments: list[list[str]] = []
    for line in script.splitlines():
        lexer = shlex.shlex(line, posix=True, punctuation_chars=True)
        lexer.whitespace_split = True
        try:
            tokens = list(lexer)
        except ValueError:
            return None
        if not tokens:
            continue

        line_segments: list[list[str]] = [[]]
        for token in tokens:
            if token in _SCRIPT_OPERATORS:
                line_segments.append([])
                continue
            if set(token) <= set("();<>|&"):
                if strict:
                    # Redirections, subshells and background jobs are never auto-approved.
                    return None
                line_segments.append([])
                continue
            line_segments[-1].append(token)

        if strict and any(not segment for segment in line_segments):
            return None
        segments.extend(segment for segment in line_segments if segment)
    return segments


def _requests_elevation(argv: tuple[str, ...]) -> bool:
    if _ELEVATION_PATTERN.search(_command_text(argv)):
        return True
    if _is_shell_script(argv):
        segments = _script_segments(argv[2], strict=False) or []
    else:
        segments = [list(argv)]
    return any(_program_name(segment) in _ELEVATION_PROGRAMS for segment in segments)


def _program_name(segment: Sequence[str]) -> str:
    """Return the program a segment really runs, looking through ``env``-style launchers."""
    for token in segment:
        name = os.path.basename(token)
        if name in _COMMAND_LAUNCHERS or token.startswith("-"):
            continue
        if _ASSIGNMENT_PATTERN.match(token) or _LAUNCHER_ARGUMENT_PATTERN.match(token):
            continue
        return name
    return ""


def _known_safe_argv(argv: tuple[str, ...]) -> tuple[str, str] | None:
    if not argv:
        return None
    program = argv[0]
    args = argv[1:]
    if program == "git":
        if args and args[0] in _SAFE_GIT_SUBCOMMANDS:
            return "Versioning", f"git {args[0]}"
        return None
    if program == "find":
        if any(arg in _UNSAFE_FIND_OPTIONS for arg in args):
            return None
        return "Searching", "Find files"
    if program == "rg" and any(
        arg in _UNSAFE_RG_OPTIONS or arg.startswith("--pre=") for arg in args
    ):
        return None
    return _SAFE_COMMANDS.get(program)


def _command_text(argv: tuple[str, ...]) -> str:
    if _is_shell_script(argv):
        return argv[2]
    return " ".join(argv)


def _normalize(path: str, workdir: str) -> str:
    if not os.path.isabs(path):
        path = os.path.join(workdir or os.sep, path)
    return os.path.normpath(path)


def _is_shell_script(argv: tuple[str, ...]) -> bool:
    return (
        len(argv) == 3
        and os.path.basename(argv[0]) in _SHELL_WRAPPERS
        and argv[1] in _SHELL_SCRIPT_FLAGS
    )
