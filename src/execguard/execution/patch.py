"""Parse and apply ``*** Begin Patch`` bodies proposed by the agent.

The format is a file-oriented diff::

    *** Begin Patch
    *** Add File: docs/notes.md
    +first line
    *** Update File: src/app.py
    *** Move to: src/main.py
    @@ def main():
    -    print("hi")
    +    print("hello")
    *** Delete File: old.txt
    *** End Patch

Hunks are matched and new contents are staged beside their targets before any
existing file is replaced, so a hunk that fails to match or a write that fails
leaves existing files untouched. Line endings of updated files are preserved.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from execguard.approvals.models import ExecutionOutcome

from .base import log_result, monotonic_now

LOGGER = logging.getLogger(__name__)

BEGIN_PATCH = "*** Begin Patch"
END_PATCH = "*** End Patch"
ADD_FILE = "*** Add File: "
DELETE_FILE = "*** Delete File: "
UPDATE_FILE = "*** Update File: "
MOVE_TO = "*** Move to: "
END_OF_FILE = "*** End of File"
HUNK_MARKER = "@@"

ChangeKind = Literal["add", "delete", "update"]


class PatchError(ValueError):
    """Raised when a patch body is malformed or does not match the tree."""


@dataclass(slots=True)
class Hunk:
    context: str | None = None
    old_lines: list[str] = field(default_factory=list)
    new_lines: list[str] = field(default_factory=list)
    end_of_file: bool = False


@dataclass(slots=True)
class FileChange:
    kind: ChangeKind
    path: str
    content: str = ""
    move_to: str | None = None
    hunks: list[Hunk] = field(default_factory=list)


def parse_patch(text: str) -> list[FileChange]:
    lines = text.strip().splitlines()
    if not lines or lines[0].strip() != BEGIN_PATCH:
        raise PatchError("patch must start with '*** Begin Patch'")
    if lines[-1].strip() != END_PATCH:
        raise PatchError("patch must end with '*** End Patch'")

    body = lines[1:-1]
    changes: list[FileChange] = []
    index = 0
    while index < len(body):
        line = body[index]
        if line.startswith(ADD_FILE):
            index, change = _parse_add(body, index + 1, line[len(ADD_FILE):].strip())
        elif line.startswith(DELETE_FILE):
            change = FileChange(kind="delete", path=line[len(DELETE_FILE):].strip())
            index += 1
        elif line.startswith(UPDATE_FILE):
            index, change = _parse_update(body, index + 1, line[len(UPDATE_FILE):].strip())
        elif not line.strip():
            index += 1
            continue
        else:
            raise PatchError(f"unexpected line in patch: {line!r}")
        if not change.path:
            raise PatchError("file operation is missing a path")
        changes.append(change)

    if not changes:
        raise PatchError("patch contains no file operations")
    return changes


def apply_patch(text: str, workdir: str | Path) -> list[str]:
    """Apply ``text`` under ``workdir`` and return ``A``/``M``/``D`` summary lines."""
    root = Path(workdir)
    writes: dict[Path, str] = {}
    removals: list[Path] = []
    summary: list[str] = []

    for change in parse_patch(text):
        target = _resolve(root, change.path)
        if change.kind == "add":
            writes[target] = change.content
            summary.append(f"A {change.path}")
        elif change.kind == "delete":
            if not target.is_file():
                raise PatchError(f"cannot delete missing file: {change.path}")
            removals.append(target)
            summary.append(f"D {change.path}")
        else:
            original = writes.get(target)
            if original is None:
                if not target.is_file():
                    raise PatchError(f"cannot update missing file: {change.path}")
                original = target.read_bytes().decode("utf-8")
            updated = _apply_hunks(original, change.hunks, change.path)
            if change.move_to:
                destination = _resolve(root, change.move_to)
                writes[destination] = updated
                removals.append(target)
                summary.append(f"M {change.move_to}")
            else:
                writes[target] = updated
                summary.append(f"M {change.path}")

    staged: list[tuple[Path, Path]] = []
    try:
        for path, content in writes.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            temp = path.with_name(f".{path.name}.execguard-tmp")
            staged.append((temp, path))
            temp.write_text(content, encoding="utf-8", newline="")
    except OSError:
        for temp, _path in staged:
            temp.unlink(missing_ok=True)
        raise
    for temp, path in staged:
        os.replace(temp, path)
    for path in removals:
        if path not in writes:
            path.unlink(missing_ok=True)
    return summary


def execute_patch(patch_text: str, workdir: str | Path) -> ExecutionOutcome:
    """Patch backend: apply and report the result as an execution outcome."""
    started = monotonic_now()
    try:
        summary = apply_patch(patch_text, workdir)
    except (PatchError, OSError, UnicodeDecodeError) as exc:
        outcome = ExecutionOutcome(
            stdout="",
            stderr=f"apply_patch failed: {exc}",
            exit_code=1,
            duration_seconds=monotonic_now() - started,
        )
    else:
        LOGGER.info("patch_applied", extra={"files": len(summary), "workdir": str(workdir)})
        outcome = ExecutionOutcome(
            stdout="Success. Updated the following files:\n" + "\n".join(summary) + "\n",
            stderr="",
            exit_code=0,
            duration_seconds=monotonic_now() - started,
        )
    log_result(outcome, backend="apply_patch")
    return outcome


def _parse_add(body: list[str], index: int, path: str) -> tuple[int, FileChange]:
    content: list[str] = []
    while index < len(body) and not body[index].startswith("*** "):
        line = body[index]
        if not line.startswith("+"):
            raise PatchError(f"added file lines must start with '+': {line!r}")
        content.append(line[1:])
        index += 1
    text = "\n".join(content) + "\n" if content else ""
    return index, FileChange(kind="add", path=path, content=text)


def _parse_update(body: list[str], index: int, path: str) -> tuple[int, FileChange]:
    change = FileChange(kind="update", path=path)
    if index < len(body) and body[index].startswith(MOVE_TO):
        change.move_to = body[index][len(MOVE_TO):].strip()
        index += 1

    hunk: Hunk | None = None
    while index < len(body):
        line = body[index]
        if line.strip() == END_OF_FILE:
            if hunk is None:
                raise PatchError(f"'*** End of File' before any hunk in {path}")
            hunk.end_of_file = True
            index += 1
            continue
        if line.startswith("*** "):
            break
        if line.startswith(HUNK_MARKER):
            header = line[len(HUNK_MARKER):].strip()
            hunk = Hunk(context=header or None)
            change.hunks.append(hunk)
        else:
            if hunk is None:
                hunk = Hunk()
                change.hunks.append(hunk)
            _add_hunk_line(hunk, line)
        index += 1

    if not change.hunks and change.move_to is None:
        raise PatchError(f"update for {path} has no hunks")
    return index, change


def _add_hunk_line(hunk: Hunk, line: str) -> None:
    if line.startswith("+"):
        hunk.new_lines.append(line[1:])
    elif line.startswith("-"):
        hunk.old_lines.append(line[1:])
    elif line.startswith(" ") or not line:
        hunk.old_lines.append(line[1:])
        hunk.new_lines.append(line[1:])
    else:
        raise PatchError(f"hunk lines must start with ' ', '+' or '-': {line!r}")


def _apply_hunks(original: str, hunks: list[Hunk], path: str) -> str:
    newline = "\r\n" if "\r\n" in original else "\n"
    lines = original.split(newline)
    if lines and lines[-1] == "":
        lines.pop()

    replacements: list[tuple[int, int, list[str]]] = []
    cursor = 0
    for hunk in hunks:
        if hunk.context is not None:
            anchor = _seek(lines, [hunk.context], cursor, end_of_file=False)
            if anchor is None:
                raise PatchError(f"context {hunk.context!r} not found in {path}")
            cursor = anchor + 1
        if not hunk.old_lines:
            insert_at = cursor if hunk.context is not None else len(lines)
            replacements.append((insert_at, 0, list(hunk.new_lines)))
            continue
        start = _seek(lines, hunk.old_lines, cursor, end_of_file=hunk.end_of_file)
        if start is None:
            snippet = "\n".join(hunk.old_lines)
            raise PatchError(f"hunk does not match {path}:\n{snippet}")
        replacements.append((start, len(hunk.old_lines), list(hunk.new_lines)))
        cursor = start + len(hunk.old_lines)

    for start, length, new_lines in sorted(replacements, key=lambda item: item[0], reverse=True):
        lines[start:start + length] = new_lines
    return newline.join(lines) + newline


_MATCHERS: tuple[Callable[[str], str], ...] = (
    lambda value: value,
    str.rstrip,
    str.strip,
)


def _seek(lines: list[str], pattern: list[str], start: int, *, end_of_file: bool) -> int | None:
    """Find ``pattern`` in ``lines`` at or after ``start``, loosening whitespace on each pass."""
    span = len(pattern)
    if span > len(lines):
        return None
    candidates = range(start, len(lines) - span + 1)
    if end_of_file:
        candidates = range(len(lines) - span, len(lines) - span + 1)
    for normalize in _MATCHERS:
        wanted = [normalize(line) for line in pattern]
        for offset in candidates:
            if [normalize(line) for line in lines[offset:offset + span]] == wanted:
                return offset
    return None


def _resolve(root: Path, path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else root / candidate
