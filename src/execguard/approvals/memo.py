"""Session-scoped record of commands the user approved for good."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)


class ApprovedCommandMemo:
    """Thread-safe set of blanket-approved argument vectors.

    Entries are compared by the full argument vector and are never evicted.
    The owning session creates one memo and hands it to every coordinator
    that should share approvals.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commands: set[tuple[str, ...]] = set()

    def is_approved(self, command: Sequence[str]) -> bool:
        key = tuple(command)
        with self._lock:
            return key in self._commands

    def record_approved(self, command: Sequence[str]) -> None:
        key = tuple(command)
        with self._lock:
            added = key not in self._commands
            self._commands.add(key)
        if added:
            LOGGER.info("command_memoized", extra={"argv_length": len(key)})

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)
