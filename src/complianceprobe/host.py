"""Host facts read once per agent run."""

from __future__ import annotations

import getpass
import os
import platform
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from complianceprobe.errors import HostDetectionError

_OS_TAGS = {
    "linux": "linux",
    "windows": "windows",
    "darwin": "mac",
}

_ARCH_TAGS = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8": "arm64",
    "armv8l": "arm64",
}


@dataclass(frozen=True)
class HostFacts:
    """Immutable description of the machine the agent runs on.

    Attributes:
        os: One of "linux", "windows", "mac".
        arch: One of "amd64", "arm64".
        user: Name of the user executing the agent (may be empty).
        cwd: Working directory of the agent process.
        env: Read-only copy of the process environment.
    """

    os: str
    arch: str
    user: str
    cwd: str
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, str]:
        return {"os": self.os, "arch": self.arch, "user": self.user, "cwd": self.cwd}


def detect_os(system: str) -> str:
    tag = _OS_TAGS.get(system.strip().lower())
    if tag is None:
        raise HostDetectionError(f"Unsupported operating system: {system!r}")
    return tag


def detect_arch(machine: str) -> str:
    tag = _ARCH_TAGS.get(machine.strip().lower())
    if tag is None:
        raise HostDetectionError(f"Unsupported CPU architecture: {machine!r}")
    return tag


def _detect_user(environ: Mapping[str, str]) -> str:
    user = environ.get("USER") or environ.get("USERNAME")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError, ImportError):
        return ""


class HostContextProvider:
    """Builds :class:`HostFacts` from the running process.

    Every argument overrides the matching probe of the real host, which is
    how tests pin a platform without monkeypatching ``platform``.
    """

    def __init__(
        self,
        system: str | None = None,
        machine: str | None = None,
        environ: Mapping[str, str] | None = None,
        cwd: str | None = None,
        user: str | None = None,
    ) -> None:
        self.system = system
        self.machine = machine
        self.environ = environ
        self.cwd = cwd
        self.user = user

    def build(self) -> HostFacts:
        system = self.system if self.system is not None else platform.system()
        machine = self.machine if self.machine is not None else platform.machine()
        environ = dict(self.environ if self.environ is not None else os.environ)

        os_tag = detect_os(system)
        arch_tag = detect_arch(machine)
        user = self.user if self.user is not None else _detect_user(environ)
        cwd = self.cwd if self.cwd is not None else os.getcwd()

        return HostFacts(
            os=os_tag,
            arch=arch_tag,
            user=user,
            cwd=cwd,
            env=MappingProxyType(environ),
        )
