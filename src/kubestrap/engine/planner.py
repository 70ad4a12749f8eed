# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/planner.py

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .barriers import BarrierKey
from .errors import (
    CyclicDependencyError,
    DuplicateStepError,
    UnknownDependencyError,
    UnsatisfiableDependencyError,
)
from .steps import Step
from ..inventory.models import Host

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, RunContext, new_ctx

StepFilter = Callable[[Step, Host], bool]


@dataclass(frozen=True)
class Plan:
    hosts: Tuple[Host, ...]
    per_host: Mapping[str, Tuple[Step, ...]]
    barriers: Mapping[Tuple[str, str], Tuple[BarrierKey, ...]] = field(default_factory=dict)

    def steps_for(self, host: str) -> Tuple[Step, ...]:
        return self.per_host.get(host, ())

    def barriers_for(self, host: str, step: str) -> Tuple[BarrierKey, ...]:
        return self.barriers.get((host, step), ())

    def host_barriers(self, host: str) -> Dict[str, Tuple[BarrierKey, ...]]:
        return {s: keys for (h, s), keys in self.barriers.items() if h == host}

    def total_steps(self) -> int:
        return sum(len(s) for s in self.per_host.values())


def validate_steps(steps: Sequence[Step]) -> Dict[str, Step]:
    by_name: Dict[str, Step] = {}
    for s in steps:
        if s.name in by_name:
            raise DuplicateStepError(s.name)
        by_name[s.name] = s
    for s in steps:
        for d in s.references():
            if d not in by_name:
                raise UnknownDependencyError(s.name, d)
    return by_name


def _find_cycle(graph: Mapping[object, Sequence[object]], nodes: Sequence[object]) -> List[object]:
    """Return one cycle (first node repeated at the end) among `nodes`."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in nodes}
    stack: List[object] = []

    def visit(n) -> Optional[List[object]]:
        color[n] = GREY
        stack.append(n)
        for m in graph.get(n, ()):
            if m not in color:
                continue
            if color[m] == GREY:
                return stack[stack.index(m):] + [m]
            if color[m] == WHITE:
                found = visit(m)
                if found:
                    return found
        stack.pop()
        color[n] = BLACK
        return None

    for n in nodes:
        if color[n] == WHITE:
            found = visit(n)
            if found:
                return found
    return list(nodes[:1])


def _toposort(nodes: Sequence[str], edges: Mapping[str, Sequence[str]]) -> List[str]:
    """
    Kahn's algorithm. `edges[n]` lists what n depends on. Ties go to the node
    declared first, so the same input always yields the same order.
    """
    index = {n: i for i, n in enumerate(nodes)}
    indeg: Dict[str, int] = {n: 0 for n in nodes}
    dependents: Dict[str, List[str]] = {n: [] for n in nodes}
    for n in nodes:
        for d in edges.get(n, ()):
            if d in index:
                indeg[n] += 1
                dependents[d].append(n)

    heap = [(index[n], n) for n in nodes if indeg[n] == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        _, n = heapq.heappop(heap)
        order.append(n)
        for m in dependents[n]:
            indeg[m] -= 1
            if indeg[m] == 0:
                heapq.heappush(heap, (index[m], m))

    if len(order) != len(nodes):
        done = set(order)
        remaining = [n for n in nodes if n not in done]
        graph = {n: [d for d in edges.get(n, ()) if d in index] for n in remaining}
        # edges point at dependencies; reverse so the cycle reads in run order
        cycle = list(reversed(_find_cycle(graph, remaining)))
        raise CyclicDependencyError([str(c) for c in cycle])
    return order


def _resolve_barriers(
    hosts: Sequence[Host],
    per_host: Mapping[str, Tuple[Step, ...]],
) -> Dict[Tuple[str, str], Tuple[BarrierKey, ...]]:
    planned = {h: {s.name for s in steps} for h, steps in per_host.items()}
    resolved: Dict[Tuple[str, str], Tuple[BarrierKey, ...]] = {}
    for host in hosts:
        for step in per_host[host.name]:
            keys: List[BarrierKey] = []
            for b in step.waits_for:
                if b.host is not None:
                    targets = [b.host]
                else:
                    targets = [h.name for h in hosts if b.role in h.roles]
                targets = [t for t in targets if t != host.name]
                if b.optional:
                    targets = [t for t in targets if b.step in planned.get(t, ())]
                    if not targets:
                        continue
                if not targets:
                    raise UnsatisfiableDependencyError(
                        step.name, host.name, b.describe(), "no planned host matches the barrier"
                    )
                for t in targets:
                    if t not in planned:
                        raise UnsatisfiableDependencyError(
                            step.name, host.name, b.describe(), f"host '{t}' is not part of this run"
                        )
                    if b.step not in planned[t]:
                        raise UnsatisfiableDependencyError(
                            step.name, host.name, b.describe(), f"'{b.step}' is not planned on '{t}'"
                        )
                    keys.append((t, b.step))
            if keys:
                resolved[(host.name, step.name)] = tuple(keys)
    return resolved


def _check_cross_host_cycles(
    per_host: Mapping[str, Tuple[Step, ...]],
    barriers: Mapping[Tuple[str, str], Tuple[BarrierKey, ...]],
) -> None:
    """
    Each host runs its plan in order, so (h, step_i) waits on (h, step_i-1);
    together with barrier edges this must stay acyclic or the run deadlocks.
    """
    if not barriers:
        return
    nodes: List[BarrierKey] = []
    graph: Dict[BarrierKey, List[BarrierKey]] = {}
    for h, steps in per_host.items():
        prev: Optional[BarrierKey] = None
        for s in steps:
            key = (h, s.name)
            nodes.append(key)
            graph[key] = [prev] if prev else []
            graph[key].extend(barriers.get(key, ()))
            prev = key
    names = {n: f"{n[1]}@{n[0]}" for n in nodes}
    _toposort([names[n] for n in nodes], {names[n]: [names[d] for d in graph[n]] for n in nodes})


def plan(
    steps: Sequence[Step],
    hosts: Sequence[Host],
    *,
    enabled: Optional[StepFilter] = None,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[RunContext] = None,
) -> Plan:
    """
    Order `steps` for every host.

    Role filtering and `enabled` (add-on enablement) drop steps from a host's
    plan entirely; a hard dependency on a dropped step is unsatisfiable.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx()
    try:
        by_name = validate_steps(steps)
        declared = [s.name for s in steps]

        # whole-catalog cycle check, independent of which hosts are in the run
        _toposort(declared, {s.name: s.depends_on + s.after for s in steps})

        per_host: Dict[str, Tuple[Step, ...]] = {}
        for host in hosts:
            candidates = [
                s for s in steps
                if s.applies_to(host) and (enabled is None or enabled(s, host))
            ]
            present: Set[str] = {s.name for s in candidates}
            for s in candidates:
                for d in s.depends_on:
                    if d not in present:
                        raise UnsatisfiableDependencyError(s.name, host.name, d)
            edges = {
                s.name: tuple(s.depends_on) + tuple(a for a in s.after if a in present)
                for s in candidates
            }
            order = _toposort([s.name for s in candidates], edges)
            per_host[host.name] = tuple(by_name[n] for n in order)

        barriers = _resolve_barriers(hosts, per_host)
        _check_cross_host_cycles(per_host, barriers)

        result = Plan(
            hosts=tuple(hosts),
            per_host=MappingProxyType(per_host),
            barriers=MappingProxyType(barriers),
        )
        if bus:
            for host in hosts:
                bus.emit(PlanComputed(host=host.name, order=[s.name for s in per_host[host.name]], **ctx()))
        return result

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx()))
        raise
