"""Assertion context store and the per-invocation script context."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping

from complianceprobe.host import HostFacts


class AssertionContext:
    """Mutable string-keyed store scoped to one playbook run or group.

    Only the gather pipeline writes to it. Everything else receives
    :meth:`snapshot` copies.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError(f"Context keys must be non-empty strings, got {key!r}")
        self._values[key] = value if isinstance(value, str) else str(value)

    def snapshot(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self._values))

    def child_scope(self) -> AssertionContext:
        """New store seeded with the current entries; writes stay in the child."""
        return AssertionContext(self._values)

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._values))

    def __repr__(self) -> str:
        return f"AssertionContext({self._values!r})"


@dataclass(frozen=True)
class ScriptContext:
    """Read-only view handed to script generators."""

    assertion_context: Mapping[str, str]
    host: HostFacts

    @property
    def env(self) -> Mapping[str, str]:
        return self.host.env

    @property
    def os(self) -> str:
        return self.host.os

    @property
    def arch(self) -> str:
        return self.host.arch

    @property
    def user(self) -> str:
        return self.host.user

    @property
    def cwd(self) -> str:
        return self.host.cwd


def build_script_context(store: AssertionContext, host: HostFacts) -> ScriptContext:
    return ScriptContext(assertion_context=store.snapshot(), host=host)
