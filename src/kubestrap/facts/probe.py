# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/facts/probe.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from kubestrap.engine.errors import ProbeError
from kubestrap.facts.models import FactSet
from kubestrap.inventory.models import Host
from kubestrap.runners.interface import CommandResult, CommandRunner
from kubestrap.utils.templating import render

log = logging.getLogger("kubestrap")


def _rc_zero(r: CommandResult) -> bool:
    return r.exit_code == 0


def _stdout_nonempty(r: CommandResult) -> bool:
    return r.exit_code == 0 and bool(r.stdout.strip())


def _stdout(r: CommandResult) -> Optional[str]:
    if r.exit_code != 0:
        raise ProbeError(f"exit {r.exit_code}: {r.stderr.strip()}")
    return r.stdout.strip()


def _int(r: CommandResult) -> int:
    try:
        return int(_stdout(r) or "")
    except ValueError as e:
        raise ProbeError(f"not an integer: {r.stdout.strip()!r}") from e


def parser_for(spec: str) -> Callable[[CommandResult], Any]:
    """
    Build a result parser from its catalog spelling:
    rc_zero | stdout_nonempty | stdout | int | stdout_equals:<text>
    """
    if spec == "rc_zero":
        return _rc_zero
    if spec == "stdout_nonempty":
        return _stdout_nonempty
    if spec == "stdout":
        return _stdout
    if spec == "int":
        return _int
    if spec.startswith("stdout_equals:"):
        expected = spec.split(":", 1)[1]
        return lambda r: r.exit_code == 0 and r.stdout.strip() == expected
    raise ValueError(f"Unknown fact parser '{spec}'")


@dataclass(frozen=True)
class FactCheck:
    name: str
    command: str
    parse: str = "rc_zero"

    def evaluate(self, result: CommandResult) -> Any:
        return parser_for(self.parse)(result)


class FactProbe:
    """
    Gathers host facts with read-only commands. A check that cannot run is
    left out of the FactSet; the probe itself never fails a run.
    """

    def __init__(
        self,
        runner: CommandRunner,
        checks: Sequence[FactCheck],
        *,
        variables: Optional[Callable[[Host], Mapping[str, Any]]] = None,
        timeout: float = 30.0,
    ):
        self.runner = runner
        self.checks = list(checks)
        self._variables = variables
        self.timeout = timeout

    def probe(self, host: Host) -> FactSet:
        facts: Dict[str, Any] = {}
        missing: List[str] = []
        tvars = dict(self._variables(host)) if self._variables else dict(host.vars)
        tvars["host"] = host.template_view()
        for check in self.checks:
            try:
                cmd = render(check.command, tvars)
                result = self.runner.execute(host, cmd, timeout=self.timeout, become=False)
                facts[check.name] = check.evaluate(result)
            except ProbeError as e:
                missing.append(check.name)
                log.debug(f"[{host.name}] fact {check.name} unknown: {e}")
            except Exception as e:
                missing.append(check.name)
                log.warning(f"[{host.name}] fact {check.name} could not be probed: {e}")
        if missing:
            log.info(f"[{host.name}] unknown facts: {', '.join(missing)}")
        return FactSet(facts)
