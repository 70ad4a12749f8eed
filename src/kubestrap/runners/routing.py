# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .interface import CommandResult, CommandRunner

if TYPE_CHECKING:
    from kubestrap.inventory.models import Host

LOCAL_ADDRESSES = {"localhost", "127.0.0.1", "::1"}


class RoutingRunner:
    """Sends each host to the local or SSH runner based on its connection var."""

    def __init__(self, local: CommandRunner, remote: CommandRunner):
        self.local = local
        self.remote = remote

    def pick(self, host: "Host") -> CommandRunner:
        conn = host.vars.get("ansible_connection")
        if conn == "local" or (conn is None and host.address in LOCAL_ADDRESSES):
            return self.local
        return self.remote

    def execute(
        self,
        host: "Host",
        command: str,
        *,
        timeout: Optional[float] = None,
        become: Optional[bool] = None,
    ) -> CommandResult:
        return self.pick(host).execute(host, command, timeout=timeout, become=become)

    def close(self) -> None:
        close = getattr(self.remote, "close", None)
        if close:
            close()
