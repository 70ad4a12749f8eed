# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/steps.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from kubestrap.engine.matchers import DEFAULT_MATCHER, SuccessMatcher
from kubestrap.facts.models import FactSet
from kubestrap.inventory.models import Host
from kubestrap.runners.interface import CommandResult, CommandRunner


class FailurePolicy(str, enum.Enum):
    FATAL = "fatal"            # stop the host's run
    CONTINUE = "continue"      # dependents fail without being attempted
    IGNORABLE = "ignorable"    # dependents treat the step as met


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    delay_seconds: float = 0.0
    backoff_factor: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0 or self.backoff_factor <= 0:
            raise ValueError("delay_seconds must be >= 0 and backoff_factor > 0")

    def delay_before(self, attempt: int) -> float:
        """Seconds to sleep before `attempt` (2..max_attempts)."""
        if attempt <= 1:
            return 0.0
        return self.delay_seconds * (self.backoff_factor ** (attempt - 2))


@dataclass(frozen=True)
class Barrier:
    """
    Cross-host dependency: wait for `step` on `host`, or on every host with `role`.

    An optional barrier with no planned target is dropped instead of failing
    the plan (e.g. waiting on workers in a single-node cluster).
    """
    step: str
    host: Optional[str] = None
    role: Optional[str] = None
    optional: bool = False

    def __post_init__(self) -> None:
        if (self.host is None) == (self.role is None):
            raise ValueError("Barrier needs exactly one of host= or role=")

    def describe(self) -> str:
        target = self.host if self.host is not None else f"role:{self.role}"
        return f"{self.step}@{target}"


@dataclass(frozen=True)
class BarrierResult:
    host: str
    step: str
    ok: bool
    status: str
    stdout: str = ""


@dataclass
class StepContext:
    """What predicates and actions see while a step runs on one host."""
    host: Host
    runner: CommandRunner
    vars: Mapping[str, Any] = field(default_factory=dict)
    upstream: Mapping[str, BarrierResult] = field(default_factory=dict)
    become: Optional[bool] = None

    @property
    def facts(self) -> FactSet:
        return self.host.facts

    def run(self, command: str, *, timeout: Optional[float] = None, become: Optional[bool] = None) -> CommandResult:
        return self.runner.execute(
            self.host,
            command,
            timeout=timeout,
            become=self.become if become is None else become,
        )

    def template_context(self) -> Dict[str, Any]:
        ctx: Dict[str, Any] = dict(self.vars)
        ctx["host"] = self.host.template_view()
        ctx["facts"] = self.facts.as_dict()
        ctx["upstream"] = dict(self.upstream)
        return ctx


Predicate = Callable[[StepContext], bool]
Action = Callable[[StepContext], CommandResult]


@dataclass(frozen=True)
class Step:
    name: str
    action: Action
    depends_on: Tuple[str, ...] = ()
    after: Tuple[str, ...] = ()
    waits_for: Tuple[Barrier, ...] = ()
    roles: FrozenSet[str] = frozenset()
    is_satisfied: Optional[Predicate] = None
    success: SuccessMatcher = DEFAULT_MATCHER
    retry: RetryPolicy = RetryPolicy()
    failure_policy: FailurePolicy = FailurePolicy.FATAL
    timeout_seconds: Optional[float] = None
    invalidates_facts: bool = False
    tags: FrozenSet[str] = frozenset()
    addon: Optional[str] = None
    description: str = ""

    def applies_to(self, host: Host) -> bool:
        return not self.roles or bool(self.roles & host.roles)

    def references(self) -> Tuple[str, ...]:
        return self.depends_on + self.after + tuple(b.step for b in self.waits_for)
