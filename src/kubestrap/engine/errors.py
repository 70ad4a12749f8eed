# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/errors.py
from __future__ import annotations

from typing import Sequence


class KubestrapError(RuntimeError):
    """Base class for every error raised by the provisioning engine."""


class ConfigError(KubestrapError):
    """Invalid run config, catalog or inventory."""


class PlanningError(KubestrapError):
    """Raised before any host action runs; aborts the whole run."""


class DuplicateStepError(PlanningError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Step '{name}' is declared more than once")


class UnknownDependencyError(PlanningError):
    def __init__(self, step: str, missing: str):
        self.step = step
        self.missing = missing
        super().__init__(f"Step '{step}' depends on unknown step '{missing}'")


class CyclicDependencyError(PlanningError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic dependency detected: " + " -> ".join(self.cycle))


class UnsatisfiableDependencyError(PlanningError):
    def __init__(self, step: str, host: str, dependency: str, reason: str = ""):
        self.step = step
        self.host = host
        self.dependency = dependency
        msg = f"Step '{step}' on host '{host}' depends on '{dependency}'"
        msg += f", {reason}" if reason else ", which is not planned for that host"
        super().__init__(msg)


class ProbeError(KubestrapError):
    """A fact could not be gathered. Treated as an unknown fact, never fatal."""


class StepActionError(KubestrapError):
    """A step action failed after exhausting its retries."""

    def __init__(self, step: str, host: str, attempts: int, detail: str):
        self.step = step
        self.host = host
        self.attempts = attempts
        super().__init__(f"[{host}] step '{step}' failed after {attempts} attempt(s): {detail}")


class CrossHostBarrierTimeout(KubestrapError):
    """A host waited too long for a step on another host."""

    def __init__(self, host: str, step: str, waiting_on: str, timeout_s: float):
        self.host = host
        self.step = step
        self.waiting_on = waiting_on
        self.timeout_s = timeout_s
        super().__init__(
            f"[{host}] step '{step}' timed out after {timeout_s:g}s waiting for {waiting_on}"
        )
