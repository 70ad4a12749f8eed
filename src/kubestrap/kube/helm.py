# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/kube/helm.py

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from kubestrap.inventory.models import Host
from kubestrap.runners.interface import CommandResult, CommandRunner

from .kubectl import ADMIN_KUBECONFIG

VALUES_MARK = "KUBESTRAP_VALUES"

log = logging.getLogger("kubestrap")


@dataclass(frozen=True)
class HelmRelease:
    name: str                        # helm release name
    chart: str                       # repo/chart, local path or oci:// uri
    namespace: str                   # target ns
    version: Optional[str] = None
    repo_name: Optional[str] = None
    repo_url: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    values_files: List[str] = field(default_factory=list)
    set_values: Dict[str, str] = field(default_factory=dict)
    create_namespace: bool = True
    atomic: bool = False
    wait: bool = False
    timeout_seconds: int = 600


class ChartApplier:
    """
    A pragmatic wrapper around the `helm` CLI, run on the target host.
    - Mirrors human CLI usage: 'repo add/update', 'upgrade --install'.
    - Testable by handing it a fake CommandRunner.
    """

    def __init__(self, runner: CommandRunner, *, kubeconfig: str = ADMIN_KUBECONFIG):
        self.runner = runner
        self.kubeconfig = kubeconfig

    # ------------------------- internal helpers -------------------------

    def _base(self) -> str:
        return f"KUBECONFIG={self.kubeconfig} helm"

    def repo_command(self, name: str, url: str) -> str:
        return (
            f"{self._base()} repo add {shlex.quote(name)} {shlex.quote(url)} --force-update"
            f" && {self._base()} repo update {shlex.quote(name)}"
        )

    def _values_file(self, rel: HelmRelease) -> str:
        return f"/tmp/kubestrap-values-{rel.namespace}-{rel.name}.yaml"

    def upgrade_command(self, rel: HelmRelease) -> str:
        parts: List[str] = []
        if rel.repo_name and rel.repo_url:
            parts.append(self.repo_command(rel.repo_name, rel.repo_url))

        argv = [
            self._base(), "upgrade", "--install", shlex.quote(rel.name), shlex.quote(rel.chart),
            "-n", shlex.quote(rel.namespace),
        ]
        for f in rel.values_files:
            argv += ["-f", shlex.quote(f)]
        values_doc = None
        if rel.values:
            # inline values -> written to a temp file on the host to pass to helm
            vf = self._values_file(rel)
            parts.append(f"cat > {vf} <<'{VALUES_MARK}'")
            values_doc = yaml.safe_dump(rel.values, sort_keys=False)
            argv += ["-f", vf]
        for k, v in rel.set_values.items():
            argv += ["--set", shlex.quote(f"{k}={v}")]
        if rel.version:
            argv += ["--version", shlex.quote(rel.version)]
        if rel.create_namespace:
            argv.append("--create-namespace")
        if rel.atomic:
            argv.append("--atomic")
        if rel.wait or rel.atomic:
            argv += ["--wait", "--timeout", f"{rel.timeout_seconds}s"]
        parts.append(" ".join(argv))

        cmd = " && ".join(parts)
        if values_doc is not None:
            # the here-document body follows the full command line
            cmd += "\n" + values_doc + VALUES_MARK
        return cmd

    # ------------------------- applier methods -------------------------

    def add_repo(self, host: Host, name: str, url: str) -> CommandResult:
        return self.runner.execute(host, self.repo_command(name, url))

    def apply(self, host: Host, rel: HelmRelease, *, timeout: Optional[float] = None) -> CommandResult:
        log.debug(f"[{host.name}] helm upgrade --install {rel.name} ({rel.chart}) -n {rel.namespace}")
        if timeout is None and (rel.wait or rel.atomic):
            timeout = rel.timeout_seconds + 60
        return self.runner.execute(host, self.upgrade_command(rel), timeout=timeout)
