"""Pick the isolation backend a command runs under."""

from __future__ import annotations

import abc
import functools
import logging
import platform
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from execguard.approvals.models import SandboxBackend

LOGGER = logging.getLogger(__name__)

IsolationProbe = Callable[[], bool]

_CONTAINER_MARKERS = ("/.dockerenv", "/run/.containerenv")
_CONTAINER_CGROUP_TOKENS = ("docker", "containerd", "kubepods", "lxc", "podman")


def probe_isolation_presence() -> bool:
    """Return true when this process already runs inside a container."""
    if any(Path(marker).exists() for marker in _CONTAINER_MARKERS):
        return True
    try:
        cgroup = Path("/proc/1/cgroup").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return any(token in cgroup for token in _CONTAINER_CGROUP_TOKENS)


@dataclass(frozen=True, slots=True)
class PlatformDescriptor:
    """The host facts the sandbox strategy is chosen from."""

    system: str

    @classmethod
    def current(cls) -> PlatformDescriptor:
        return cls(system=platform.system())

    @property
    def has_native_isolation(self) -> bool:
        return self.system.strip().lower() == "darwin"


class SandboxStrategy(abc.ABC):
    """Maps a sandbox wish onto a concrete backend for one platform."""

    @abc.abstractmethod
    def select_backend(self, wants_sandbox: bool) -> SandboxBackend:
        """Return the backend for the next execution attempt."""


class NativeIsolationStrategy(SandboxStrategy):
    """Platforms that ship their own process isolation facility."""

    def select_backend(self, wants_sandbox: bool) -> SandboxBackend:
        if not wants_sandbox:
            return SandboxBackend.NONE
        LOGGER.info("sandbox_selected", extra={"backend": SandboxBackend.PLATFORM_ISOLATION.value})
        return SandboxBackend.PLATFORM_ISOLATION


class ContainerProbeStrategy(SandboxStrategy):
    """Platforms without native isolation; a surrounding container may stand in."""

    def __init__(self, probe: IsolationProbe = probe_isolation_presence) -> None:
        self.probe = probe

    def select_backend(self, wants_sandbox: bool) -> SandboxBackend:
        if not wants_sandbox:
            return SandboxBackend.NONE
        # Environment can change between calls; never cache the probe.
        if self.probe():
            LOGGER.info(
                "sandbox_selected",
                extra={"backend": SandboxBackend.NONE.value, "reason": "already_isolated"},
            )
        else:
            LOGGER.warning(
                "sandbox_selected",
                extra={"backend": SandboxBackend.NONE.value, "reason": "no_isolation_available"},
            )
        return SandboxBackend.NONE


def sandbox_strategy_for(
    descriptor: PlatformDescriptor,
    *,
    probe: IsolationProbe = probe_isolation_presence,
) -> SandboxStrategy:
    if descriptor.has_native_isolation:
        return NativeIsolationStrategy()
    return ContainerProbeStrategy(probe)


@functools.cache
def default_sandbox_strategy() -> SandboxStrategy:
    """Strategy for the running host, chosen once per process."""
    return sandbox_strategy_for(PlatformDescriptor.current())


def select_backend(
    wants_sandbox: bool,
    platform_probe: IsolationProbe = probe_isolation_presence,
    *,
    descriptor: PlatformDescriptor | None = None,
) -> SandboxBackend:
    """One-shot selection for callers that do not hold a strategy."""
    strategy = sandbox_strategy_for(
        descriptor or PlatformDescriptor.current(),
        probe=platform_probe,
    )
    return strategy.select_backend(wants_sandbox)
