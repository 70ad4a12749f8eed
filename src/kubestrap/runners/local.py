# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/runners/local.py

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING, Optional

from .interface import CommandResult

if TYPE_CHECKING:
    from kubestrap.inventory.models import Host

log = logging.getLogger("kubestrap")

TIMEOUT_EXIT_CODE = 124


class LocalRunner:
    """Runs commands on the machine kubestrap itself runs on (ansible_connection=local)."""

    def __init__(self, *, become: bool = True, default_timeout: Optional[float] = 900):
        self.become = become
        self.default_timeout = default_timeout

    def _argv(self, command: str, become: bool) -> list[str]:
        argv = ["bash", "-c", command]
        if become and os.geteuid() != 0:
            argv = ["sudo", "-n", "-E"] + argv
        return argv

    def execute(
        self,
        host: "Host",
        command: str,
        *,
        timeout: Optional[float] = None,
        become: Optional[bool] = None,
    ) -> CommandResult:
        use_become = self.become if become is None else become
        argv = self._argv(command, use_become)
        log.debug(f"[{host.name}] $ {command}")
        try:
            cp = subprocess.run(
                argv,
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout or self.default_timeout,
            )
        except subprocess.TimeoutExpired as e:
            out = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            return CommandResult(TIMEOUT_EXIT_CODE, out, f"command timed out after {e.timeout}s")
        log.debug(f"[{host.name}] exit {cp.returncode}")
        return CommandResult(cp.returncode, cp.stdout, cp.stderr)
