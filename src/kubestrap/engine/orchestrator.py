# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/orchestrator.py

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

from kubestrap.addons.registry import Resolution
from kubestrap.catalog.loader import Catalog
from kubestrap.catalog.predicates import CLUSTER_FACTS_VAR
from kubestrap.config.models import RunConfig
from kubestrap.facts.probe import FactProbe
from kubestrap.inventory.models import Host
from kubestrap.runners.interface import CommandRunner

from .barriers import BarrierBoard
from .errors import ConfigError, CrossHostBarrierTimeout, KubestrapError, PlanningError
from .executor import Executor, HostRunResult, HostStatus
from .planner import Plan, plan, validate_steps
from .report import RunReport, StepStatus
from .steps import Step

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    AddOnResolved,
    FactsProbed,
    PlanFailed,
    RunCancelled,
    RunContext,
    RunSummary,
    new_ctx,
)

log = logging.getLogger("kubestrap")


def _labels(step: Step) -> Set[str]:
    labels = set(step.tags) | {step.name}
    if step.addon:
        labels.add(step.addon)
    return labels


def select_by_tags(
    steps: Sequence[Step],
    tags: Iterable[str] = (),
    skip_tags: Iterable[str] = (),
) -> List[Step]:
    """
    Ansible-style --tags / --skip-tags over step tags, names and add-on names.

    Unlike role or add-on filtering this is an operator choice, so references
    to deselected steps are dropped rather than treated as unsatisfiable.
    """
    tags, skip_tags = set(tags), set(skip_tags)
    if not tags and not skip_tags:
        return list(steps)
    keep = [
        s for s in steps
        if (not tags or _labels(s) & tags) and not (_labels(s) & skip_tags)
    ]
    names = {s.name for s in keep}
    pruned: List[Step] = []
    for s in keep:
        dropped = sorted({d for d in s.references() if d not in names})
        if dropped:
            log.info(f"tag selection: {s.name} no longer waits for {', '.join(dropped)}")
            s = replace(
                s,
                depends_on=tuple(d for d in s.depends_on if d in names),
                after=tuple(a for a in s.after if a in names),
                waits_for=tuple(b for b in s.waits_for if b.step in names),
            )
        pruned.append(s)
    return pruned


@dataclass
class RunResult:
    run_id: str
    plan: Plan
    report: RunReport
    hosts: Dict[str, HostRunResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def barrier_timeouts(self) -> List[CrossHostBarrierTimeout]:
        return [r.error for r in self.hosts.values() if isinstance(r.error, CrossHostBarrierTimeout)]

    def hosts_with(self, status: HostStatus) -> List[str]:
        return [h for h, r in self.hosts.items() if r.status is status]

    @property
    def ok(self) -> bool:
        """No host was aborted or cancelled; CONTINUE/IGNORABLE failures still count as ok."""
        return not self.cancelled and all(
            r.status in (HostStatus.COMPLETED, HostStatus.FAILED) for r in self.hosts.values()
        )


class Orchestrator:
    """
    One provisioning run over a set of hosts:

      prepare():  probe facts -> resolve add-ons per host -> select by tags -> plan
      execute():  one thread per host, sharing a BarrierBoard and a cancel Event

    Planning errors surface from prepare() before any host action runs.
    """

    def __init__(
        self,
        catalog: Catalog,
        runner: CommandRunner,
        *,
        config: Optional[RunConfig] = None,
        tags: Iterable[str] = (),
        skip_tags: Iterable[str] = (),
        bus: Optional[EventBus] = None,
        run_ctx: Optional[RunContext] = None,
        probe: Optional[FactProbe] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.catalog = catalog
        self.runner = runner
        self.config = config or RunConfig()
        self.registry = catalog.registry(self.config.addons)
        self.tags: FrozenSet[str] = frozenset(tags)
        self.skip_tags: FrozenSet[str] = frozenset(skip_tags)
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(env=self.config.environment)
        self.probe = probe or FactProbe(runner, catalog.fact_checks, variables=self.variables)
        self._sleep = sleep
        self._cancel = threading.Event()
        self.resolutions: Dict[str, List[Resolution]] = {}

    # ------------------------- helpers -------------------------

    def _emit(self, event_cls, **data) -> None:
        self.bus.emit(event_cls(**data, **self.run_ctx()))

    def variables(self, host: Host) -> Dict[str, Any]:
        """catalog defaults < run config vars < inventory host/group vars"""
        merged: Dict[str, Any] = dict(self.catalog.vars)
        merged.update(self.config.vars)
        merged.update(host.vars)
        return merged

    def _workers(self, count: int) -> int:
        return max(1, min(self.config.max_parallel_hosts, count))

    def cancel(self, reason: str = "cancelled by operator") -> None:
        if self._cancel.is_set():
            return
        log.warning(f"cancelling run: {reason}")
        self._cancel.set()
        self._emit(RunCancelled, reason=reason)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------- prepare -------------------------

    def probe_facts(self, hosts: Sequence[Host]) -> None:
        names = [c.name for c in self.catalog.fact_checks]
        with ThreadPoolExecutor(max_workers=self._workers(len(hosts)), thread_name_prefix="probe") as pool:
            futures = {pool.submit(self.probe.probe, h): h for h in hosts}
            for fut in as_completed(futures):
                host = futures[fut]
                host.facts = fut.result()
                missing = [n for n in names if n not in host.facts]
                self._emit(FactsProbed, host=host.name, facts=host.facts.as_dict(), missing=missing)
                log.debug(f"[{host.name}] facts: {host.facts.as_dict()}")

    def resolve_addons(self, hosts: Sequence[Host]) -> Dict[str, Set[str]]:
        """Enabled add-on names per host. Predicates see every host's facts for scope=any|all."""
        cluster_facts = {h.name: h.facts.as_dict() for h in hosts}
        enabled: Dict[str, Set[str]] = {}
        for host in hosts:
            hv = self.variables(host)
            hv[CLUSTER_FACTS_VAR] = cluster_facts
            resolutions = self.registry.evaluate(host.facts, hv)
            self.resolutions[host.name] = resolutions
            for r in resolutions:
                self._emit(AddOnResolved, host=host.name, addon=r.addon, enabled=r.enabled, reason=r.reason)
            enabled[host.name] = {r.addon for r in resolutions if r.enabled}
            log.info(f"[{host.name}] add-ons: {', '.join(sorted(enabled[host.name])) or '(none)'}")
        return enabled

    def prepare(self, hosts: Sequence[Host]) -> Plan:
        hosts = list(hosts)
        if not hosts:
            raise ConfigError("no hosts selected for this run")

        universe = self.catalog.universe()
        try:
            # typos must fail even when tag selection would prune them away
            validate_steps(universe)
        except PlanningError as e:
            self._emit(PlanFailed, error=str(e))
            raise

        self.probe_facts(hosts)
        enabled = self.resolve_addons(hosts)
        steps = select_by_tags(universe, self.tags, self.skip_tags)

        def step_enabled(step: Step, host: Host) -> bool:
            return step.addon is None or step.addon in enabled[host.name]

        return plan(steps, hosts, enabled=step_enabled, bus=self.bus, run_ctx=self.run_ctx)

    # ------------------------- execute -------------------------

    def execute(self, the_plan: Plan) -> RunResult:
        report = RunReport(run_id=self.run_ctx.run_id)
        executor = Executor(
            self.runner,
            report,
            bus=self.bus,
            run_ctx=self.run_ctx,
            probe=self.probe,
            board=BarrierBoard(),
            cancel=self._cancel,
            sleep=self._sleep,
            barrier_timeout=self.config.barrier_timeout_seconds,
            variables=self.variables,
            become=self.config.become,
        )

        hosts = list(the_plan.hosts)
        workers = self._workers(len(hosts))
        if the_plan.barriers and workers < len(hosts):
            # a queued host could own a step that a running host is blocked on
            log.warning(f"plan has cross-host barriers; running all {len(hosts)} hosts at once")
            workers = len(hosts)

        results: Dict[str, HostRunResult] = {}
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host")
        try:
            futures = {
                pool.submit(executor.run, the_plan.steps_for(h.name), h, barriers=the_plan.host_barriers(h.name)): h
                for h in hosts
            }
            pending = set(futures)
            while pending:
                try:
                    done, pending = wait(pending, timeout=0.5, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.cancel("interrupted")
                    continue
                for fut in done:
                    host = futures[fut]
                    try:
                        results[host.name] = fut.result()
                    except Exception as e:
                        log.exception(f"[{host.name}] host run crashed")
                        results[host.name] = HostRunResult(
                            host=host.name, status=HostStatus.ABORTED, error=KubestrapError(str(e))
                        )
        finally:
            pool.shutdown(wait=True)

        report.freeze()
        result = RunResult(
            run_id=self.run_ctx.run_id,
            plan=the_plan,
            report=report,
            hosts={h.name: results[h.name] for h in hosts},
            cancelled=self.cancelled,
        )
        counts = report.counts()
        self._emit(
            RunSummary,
            succeeded=counts[StepStatus.SUCCESS.value],
            skipped=counts[StepStatus.SKIPPED.value],
            failed=counts[StepStatus.FAILED.value],
            hosts_completed=len(result.hosts_with(HostStatus.COMPLETED)),
            hosts_failed=len(result.hosts_with(HostStatus.FAILED)),
            hosts_aborted=len(result.hosts_with(HostStatus.ABORTED)),
            hosts_cancelled=len(result.hosts_with(HostStatus.CANCELLED)),
        )
        log.info(f"run {self.run_ctx.run_id}: {report.summary()}")
        return result

    def run(self, hosts: Sequence[Host]) -> RunResult:
        return self.execute(self.prepare(hosts))
