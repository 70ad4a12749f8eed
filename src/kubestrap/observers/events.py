# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single provisioning run
    env: str          # dev/staging/prod

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunContext:
    """Stamps every event of one run with the same run_id and a fresh ts."""

    def __init__(self, env: str = "dev", run_id: Optional[str] = None):
        self.env = env
        self.run_id = run_id or str(uuid.uuid4())

    def __call__(self) -> Dict[str, Any]:
        return {"ts": utc_now(), "run_id": self.run_id, "env": self.env}


def new_ctx(env: str = "dev", run_id: Optional[str] = None) -> RunContext:
    return RunContext(env=env, run_id=run_id)


# ---------------------------------------------------------------------
# Facts & add-ons
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class FactsProbed(BaseEvent):
    host: str
    facts: Dict[str, Any]
    missing: List[str]

@dataclass(frozen=True)
class AddOnResolved(BaseEvent):
    host: str
    addon: str
    enabled: bool
    reason: str


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    host: str
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Host & step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostRunStarted(BaseEvent):
    host: str
    steps: int

@dataclass(frozen=True)
class HostRunFinished(BaseEvent):
    host: str
    status: str       # "COMPLETED" | "FAILED" | "ABORTED" | "CANCELLED"
    error: Optional[str] = None

@dataclass(frozen=True)
class StepStarted(BaseEvent):
    host: str
    step: str

@dataclass(frozen=True)
class StepAttempt(BaseEvent):
    host: str
    step: str
    attempt: int

@dataclass(frozen=True)
class StepRetrying(BaseEvent):
    host: str
    step: str
    attempt: int
    delay_s: float
    error: str

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    host: str
    step: str
    reason: str

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    host: str
    step: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    host: str
    step: str
    attempts: int
    policy: str
    error: str
    propagated: bool = False


# ---------------------------------------------------------------------
# Barriers
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BarrierWaiting(BaseEvent):
    host: str
    step: str
    waiting_on: str

@dataclass(frozen=True)
class BarrierReleased(BaseEvent):
    host: str
    step: str
    waiting_on: str
    ok: bool

@dataclass(frozen=True)
class BarrierTimedOut(BaseEvent):
    host: str
    step: str
    waiting_on: str
    timeout_s: float


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunCancelled(BaseEvent):
    reason: str

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    succeeded: int
    skipped: int
    failed: int
    hosts_completed: int
    hosts_failed: int
    hosts_aborted: int
    hosts_cancelled: int
