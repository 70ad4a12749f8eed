# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/barriers.py
"""
Cross-host synchronisation.

Every (host, step) of a plan is a slot on the board. The owning host publishes
the slot once the step reaches a terminal status; other hosts block on it.
The payload carries the step's stdout so data such as the kubeadm join command
travels with the signal.
"""

from __future__ import annotations

import threading
import time
from typing import Dict, Iterable, Optional, Tuple

from kubestrap.engine.steps import BarrierResult

BarrierKey = Tuple[str, str]   # (host, step)


class BarrierTimeout(Exception):
    pass


class BarrierCancelled(Exception):
    pass


class BarrierBoard:
    def __init__(self, poll_interval: float = 0.5):
        self._results: Dict[BarrierKey, BarrierResult] = {}
        self._cond = threading.Condition()
        self._poll = poll_interval

    def publish(self, result: BarrierResult) -> None:
        key = (result.host, result.step)
        with self._cond:
            # first publication wins; later abandon() calls must not overwrite it
            if key in self._results:
                return
            self._results[key] = result
            self._cond.notify_all()

    def abandon(self, host: str, steps: Iterable[str], reason: str) -> None:
        """Release waiters on steps that will never run on `host`."""
        for step in steps:
            self.publish(BarrierResult(host=host, step=step, ok=False, status=reason))

    def peek(self, key: BarrierKey) -> Optional[BarrierResult]:
        with self._cond:
            return self._results.get(key)

    def wait(
        self,
        key: BarrierKey,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> BarrierResult:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while key not in self._results:
                if cancel is not None and cancel.is_set():
                    raise BarrierCancelled(key)
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise BarrierTimeout(key)
                slice_s = self._poll if remaining is None else min(self._poll, remaining)
                self._cond.wait(timeout=slice_s)
            return self._results[key]
