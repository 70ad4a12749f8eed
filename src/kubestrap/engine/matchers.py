# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/matchers.py
"""
Named success matchers.

A step's action returns a CommandResult; by default the step succeeded when the
exit code is 0. Steps that poll cluster state ("until 'ok' in stdout") attach
one of these instead, so the check is a value that can be tested on its own.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Protocol, Tuple

from kubestrap.runners.interface import CommandResult


class SuccessMatcher(Protocol):
    def matches(self, result: CommandResult) -> bool: ...

    def describe(self) -> str: ...


@dataclass(frozen=True)
class ExitCode:
    codes: FrozenSet[int] = frozenset({0})

    def matches(self, result: CommandResult) -> bool:
        return result.exit_code in self.codes

    def describe(self) -> str:
        return "exit code in " + ",".join(str(c) for c in sorted(self.codes))


@dataclass(frozen=True)
class StdoutContains:
    text: str
    require_zero_exit: bool = True

    def matches(self, result: CommandResult) -> bool:
        if self.require_zero_exit and not result.ok:
            return False
        return self.text in result.stdout

    def describe(self) -> str:
        return f"stdout contains {self.text!r}"


@dataclass(frozen=True)
class StdoutNotContains:
    text: str
    require_zero_exit: bool = True

    def matches(self, result: CommandResult) -> bool:
        if self.require_zero_exit and not result.ok:
            return False
        return self.text not in result.stdout

    def describe(self) -> str:
        return f"stdout does not contain {self.text!r}"


@dataclass(frozen=True)
class StdoutMatches:
    pattern: str
    require_zero_exit: bool = True

    def matches(self, result: CommandResult) -> bool:
        if self.require_zero_exit and not result.ok:
            return False
        return re.search(self.pattern, result.stdout, re.MULTILINE) is not None

    def describe(self) -> str:
        return f"stdout matches /{self.pattern}/"


_OPS: Dict[str, Callable[[int, int], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


@dataclass(frozen=True)
class StdoutInt:
    """stdout parsed as an integer and compared, e.g. a `wc -l` pod count."""

    op: str
    value: int
    require_zero_exit: bool = True

    def __post_init__(self) -> None:
        if self.op not in _OPS:
            raise ValueError(f"Unsupported comparison '{self.op}'")

    def matches(self, result: CommandResult) -> bool:
        if self.require_zero_exit and not result.ok:
            return False
        try:
            n = int(result.stdout.strip())
        except ValueError:
            return False
        return _OPS[self.op](n, self.value)

    def describe(self) -> str:
        return f"int(stdout) {self.op} {self.value}"


@dataclass(frozen=True)
class AllOf:
    matchers: Tuple[SuccessMatcher, ...]

    def matches(self, result: CommandResult) -> bool:
        return all(m.matches(result) for m in self.matchers)

    def describe(self) -> str:
        return " and ".join(m.describe() for m in self.matchers)


@dataclass(frozen=True)
class AnyOf:
    matchers: Tuple[SuccessMatcher, ...]

    def matches(self, result: CommandResult) -> bool:
        return any(m.matches(result) for m in self.matchers)

    def describe(self) -> str:
        return " or ".join(m.describe() for m in self.matchers)


DEFAULT_MATCHER = ExitCode()
