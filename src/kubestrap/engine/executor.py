# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/executor.py

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .barriers import BarrierBoard, BarrierCancelled, BarrierKey, BarrierTimeout
from .errors import CrossHostBarrierTimeout, KubestrapError, StepActionError
from .report import RunReport, StepOutcome, StepStatus, excerpt
from .steps import BarrierResult, FailurePolicy, Step, StepContext
from ..facts.probe import FactProbe
from ..inventory.models import Host
from ..runners.interface import CommandResult, CommandRunner

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    RunContext,
    new_ctx,
    HostRunStarted,
    HostRunFinished,
    StepStarted,
    StepAttempt,
    StepRetrying,
    StepSkipped,
    StepSucceeded,
    StepFailed,
    BarrierWaiting,
    BarrierReleased,
    BarrierTimedOut,
)

log = logging.getLogger("kubestrap")

NOT_RUN = "NOT_RUN"


class HostStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"     # every step succeeded or was skipped
    FAILED = "FAILED"           # reached the end with failed or propagated steps
    ABORTED = "ABORTED"         # a FATAL failure or barrier timeout stopped the host
    CANCELLED = "CANCELLED"


@dataclass
class HostRunResult:
    host: str
    status: HostStatus
    error: Optional[KubestrapError] = None
    failed_steps: List[str] = field(default_factory=list)


@dataclass
class _StepRun:
    outcome: StepOutcome
    stdout: str = ""
    cancelled: bool = False
    barrier_timeout: Optional[CrossHostBarrierTimeout] = None


class Executor:
    """
    Runs one host's plan, strictly in order.

    The executor is the only writer of the RunReport; one Executor instance may
    serve several host threads at once since all per-host state lives in run().
    """

    def __init__(
        self,
        runner: CommandRunner,
        report: Optional[RunReport] = None,
        *,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[RunContext] = None,
        probe: Optional[FactProbe] = None,
        board: Optional[BarrierBoard] = None,
        cancel: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        barrier_timeout: Optional[float] = 1800.0,
        variables: Optional[Callable[[Host], Mapping[str, Any]]] = None,
        become: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.runner = runner
        self.report = report if report is not None else RunReport()
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx()
        self.probe = probe
        self.board = board or BarrierBoard()
        self.cancel = cancel or threading.Event()
        self._sleep = sleep or self.cancel.wait
        self.barrier_timeout = barrier_timeout
        self._variables = variables or (lambda h: h.vars)
        self.become = become
        self._clock = clock

    # ------------------------- public -------------------------

    def run(
        self,
        steps: Sequence[Step],
        host: Host,
        *,
        barriers: Optional[Mapping[str, Tuple[BarrierKey, ...]]] = None,
    ) -> HostRunResult:
        barriers = barriers or {}
        met: Set[str] = set()
        published: Set[str] = set()
        upstream: Dict[str, BarrierResult] = {}
        result = HostRunResult(host=host.name, status=HostStatus.COMPLETED)

        self._emit(HostRunStarted, host=host.name, steps=len(steps))
        log.info(f"[{host.name}] starting {len(steps)} step(s)")
        try:
            for step in steps:
                if self.cancel.is_set():
                    result.status = HostStatus.CANCELLED
                    break

                run = self._run_step(step, host, met, barriers.get(step.name, ()), upstream)
                outcome = run.outcome

                if outcome.status in (StepStatus.SUCCESS, StepStatus.SKIPPED):
                    met.add(step.name)
                elif (
                    step.failure_policy is FailurePolicy.IGNORABLE
                    and run.barrier_timeout is None
                    and not outcome.propagated
                ):
                    met.add(step.name)

                self.board.publish(
                    BarrierResult(
                        host=host.name,
                        step=step.name,
                        ok=step.name in met,
                        status=outcome.status.value,
                        stdout=run.stdout,
                    )
                )
                published.add(step.name)

                if outcome.status is not StepStatus.FAILED:
                    continue

                result.failed_steps.append(step.name)
                if run.barrier_timeout is not None:
                    result.status = HostStatus.ABORTED
                    result.error = run.barrier_timeout
                    break
                if run.cancelled:
                    result.status = HostStatus.CANCELLED
                    break
                # a step that never ran cannot trip its own policy
                if step.failure_policy is FailurePolicy.FATAL and not outcome.propagated:
                    result.status = HostStatus.ABORTED
                    result.error = StepActionError(step.name, host.name, outcome.attempts, outcome.error or "")
                    break
                result.status = HostStatus.FAILED
        finally:
            self.board.abandon(host.name, [s.name for s in steps if s.name not in published], NOT_RUN)

        self._emit(
            HostRunFinished,
            host=host.name,
            status=result.status.value,
            error=str(result.error) if result.error else None,
        )
        log.info(f"[{host.name}] finished: {result.status.value}")
        return result

    # ------------------------- internals -------------------------

    def _emit(self, event_cls, **data) -> None:
        self.bus.emit(event_cls(**data, **self.run_ctx()))

    def _record(self, outcome: StepOutcome) -> StepOutcome:
        self.report.add(outcome)
        return outcome

    def _fail(
        self,
        step: Step,
        host: Host,
        started: float,
        error: str,
        *,
        attempts: int = 0,
        delays: Sequence[float] = (),
        result: Optional[CommandResult] = None,
        propagated: bool = False,
    ) -> StepOutcome:
        outcome = self._record(
            StepOutcome(
                step=step.name,
                host=host.name,
                status=StepStatus.FAILED,
                attempts=attempts,
                started_at=started,
                finished_at=self._clock(),
                output_excerpt=excerpt(result.stdout, result.stderr) if result else "",
                error=error,
                delays=tuple(delays),
                propagated=propagated,
            )
        )
        self._emit(
            StepFailed,
            host=host.name,
            step=step.name,
            attempts=attempts,
            policy=step.failure_policy.value,
            error=error,
            propagated=propagated,
        )
        log.error(f"[{host.name}] {step.name} failed ({step.failure_policy.value}): {error}")
        return outcome

    def _run_step(
        self,
        step: Step,
        host: Host,
        met: Set[str],
        barrier_keys: Sequence[BarrierKey],
        upstream: Dict[str, BarrierResult],
    ) -> _StepRun:
        started = self._clock()
        self._emit(StepStarted, host=host.name, step=step.name)

        unmet = [d for d in step.depends_on if d not in met]
        if unmet:
            return _StepRun(
                self._fail(step, host, started, f"dependency not met: {', '.join(unmet)}", propagated=True)
            )

        for key in barrier_keys:
            waiting_on = f"{key[1]}@{key[0]}"
            self._emit(BarrierWaiting, host=host.name, step=step.name, waiting_on=waiting_on)
            log.info(f"[{host.name}] {step.name} waiting for {waiting_on}")
            try:
                res = self.board.wait(key, timeout=self.barrier_timeout, cancel=self.cancel)
            except BarrierTimeout:
                err = CrossHostBarrierTimeout(host.name, step.name, waiting_on, self.barrier_timeout or 0)
                self._emit(
                    BarrierTimedOut,
                    host=host.name,
                    step=step.name,
                    waiting_on=waiting_on,
                    timeout_s=self.barrier_timeout or 0,
                )
                return _StepRun(self._fail(step, host, started, str(err)), barrier_timeout=err)
            except BarrierCancelled:
                return _StepRun(self._fail(step, host, started, "cancelled"), cancelled=True)
            self._emit(BarrierReleased, host=host.name, step=step.name, waiting_on=waiting_on, ok=res.ok)
            if not res.ok:
                return _StepRun(
                    self._fail(step, host, started, f"barrier {waiting_on} ended {res.status}", propagated=True)
                )
            upstream.setdefault(key[1], res)

        if barrier_keys:
            started = self._clock()

        ctx = StepContext(
            host=host,
            runner=self.runner,
            vars=self._variables(host),
            upstream=dict(upstream),
            become=self.become,
        )

        if step.is_satisfied is not None and self._satisfied(step, ctx):
            outcome = self._record(
                StepOutcome(
                    step=step.name,
                    host=host.name,
                    status=StepStatus.SKIPPED,
                    started_at=started,
                    finished_at=self._clock(),
                )
            )
            self._emit(StepSkipped, host=host.name, step=step.name, reason="already satisfied")
            log.info(f"[{host.name}] {step.name} already satisfied")
            return _StepRun(outcome)

        return self._attempt_loop(step, host, ctx, started)

    def _satisfied(self, step: Step, ctx: StepContext) -> bool:
        try:
            return bool(step.is_satisfied(ctx))
        except Exception as e:
            log.warning(f"[{ctx.host.name}] {step.name} satisfaction check raised, running it: {e}")
            return False

    def _attempt(self, step: Step, ctx: StepContext) -> Tuple[Optional[CommandResult], Optional[str]]:
        try:
            result = step.action(ctx)
        except Exception as e:
            log.debug(f"[{ctx.host.name}] {step.name} raised", exc_info=True)
            return None, f"{type(e).__name__}: {e}"
        if result is None:
            result = CommandResult(exit_code=0)
        if step.success.matches(result):
            return result, None
        detail = result.stderr.strip().splitlines()[-1:] or [""]
        return result, f"{step.success.describe()} not met (exit {result.exit_code}) {detail[0]}".rstrip()

    def _attempt_loop(self, step: Step, host: Host, ctx: StepContext, started: float) -> _StepRun:
        policy = step.retry
        deadline = None if step.timeout_seconds is None else time.monotonic() + step.timeout_seconds
        delays: List[float] = []
        attempt = 0
        cancelled = False

        while True:
            attempt += 1
            self._emit(StepAttempt, host=host.name, step=step.name, attempt=attempt)
            log.debug(f"[{host.name}] {step.name} attempt {attempt}/{policy.max_attempts}")
            attempt_started = self._clock()
            result, error = self._attempt(step, ctx)

            if error is None:
                if step.invalidates_facts:
                    self._refresh_facts(host)
                outcome = self._record(
                    StepOutcome(
                        step=step.name,
                        host=host.name,
                        status=StepStatus.SUCCESS,
                        attempts=attempt,
                        started_at=started,
                        finished_at=self._clock(),
                        output_excerpt=excerpt(result.stdout, result.stderr),
                        delays=tuple(delays),
                    )
                )
                self._emit(
                    StepSucceeded,
                    host=host.name,
                    step=step.name,
                    attempts=attempt,
                    duration_ms=int(outcome.duration * 1000),
                )
                log.info(f"[{host.name}] {step.name} ok (attempts={attempt})")
                return _StepRun(outcome, stdout=result.stdout)

            if attempt >= policy.max_attempts:
                break
            delay = policy.delay_before(attempt + 1)
            if deadline is not None and time.monotonic() + delay >= deadline:
                error = f"{error} (step timeout {step.timeout_seconds:g}s reached)"
                break
            if self.cancel.is_set():
                cancelled = True
                break

            self._record(
                StepOutcome(
                    step=step.name,
                    host=host.name,
                    status=StepStatus.RETRIED,
                    attempts=attempt,
                    started_at=attempt_started,
                    finished_at=self._clock(),
                    output_excerpt=excerpt(result.stdout, result.stderr) if result else "",
                    error=error,
                )
            )
            self._emit(StepRetrying, host=host.name, step=step.name, attempt=attempt, delay_s=delay, error=error)
            log.warning(f"[{host.name}] {step.name} attempt {attempt} failed, retrying in {delay:g}s: {error}")
            self._sleep(delay)
            delays.append(delay)
            if self.cancel.is_set():
                cancelled = True
                break

        if step.invalidates_facts:
            self._refresh_facts(host)
        if cancelled:
            error = f"cancelled after {attempt} attempt(s): {error}"
        outcome = self._fail(step, host, started, error or "failed", attempts=attempt, delays=delays, result=result)
        return _StepRun(outcome, stdout=result.stdout if result else "", cancelled=cancelled)

    def _refresh_facts(self, host: Host) -> None:
        if self.probe is None:
            return
        log.info(f"[{host.name}] refreshing facts")
        host.facts = self.probe.probe(host)
