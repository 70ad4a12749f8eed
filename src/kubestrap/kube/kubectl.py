# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/kube/kubectl.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from kubestrap.inventory.models import Host
from kubestrap.runners.interface import CommandResult, CommandRunner

log = logging.getLogger("kubestrap")

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
HEREDOC_MARK = "KUBESTRAP_MANIFEST"


@dataclass(frozen=True)
class ManifestSource:
    """Either a URL/path handed to `kubectl apply -f`, or inline YAML."""
    location: Optional[str] = None
    content: Optional[str] = None
    namespace: Optional[str] = None
    server_side: bool = False

    def __post_init__(self) -> None:
        if (self.location is None) == (self.content is None):
            raise ValueError("ManifestSource needs exactly one of location= or content=")


def heredoc(content: str, mark: str = HEREDOC_MARK) -> str:
    body = content if content.endswith("\n") else content + "\n"
    return f"<<'{mark}'\n{body}{mark}"


class ManifestApplier:
    """
    `kubectl apply` executed on the target host through its command runner.
    """

    def __init__(self, runner: CommandRunner, *, kubeconfig: str = ADMIN_KUBECONFIG):
        self.runner = runner
        self.kubeconfig = kubeconfig

    def command(self, source: Union[ManifestSource, str]) -> str:
        if isinstance(source, str):
            source = ManifestSource(location=source)
        flags = []
        if source.namespace:
            flags.append(f"-n {source.namespace}")
        if source.server_side:
            flags += ["--server-side", "--force-conflicts"]
        flag_str = (" " + " ".join(flags)) if flags else ""
        base = f"KUBECONFIG={self.kubeconfig} kubectl apply{flag_str}"
        if source.location is not None:
            return f"{base} -f {source.location}"
        return f"{base} -f - {heredoc(source.content or '')}"

    def apply(
        self,
        host: Host,
        source: Union[ManifestSource, str],
        *,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        cmd = self.command(source)
        log.debug(f"[{host.name}] kubectl apply ({'inline' if not isinstance(source, str) and source.content else source})")
        return self.runner.execute(host, cmd, timeout=timeout)
