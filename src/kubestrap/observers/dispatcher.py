# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/dispatcher.py
from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from .events import BaseEvent

log = logging.getLogger("kubestrap")


@runtime_checkable
class Observer(Protocol):
    """Anything with notify(event); console, logger and JSON-lines sinks ship with kubestrap."""

    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    """
    Fans events out to observers. Host threads emit concurrently, so delivery
    is serialised; an observer that raises is logged and skipped.
    """

    def __init__(self, observers: Optional[Iterable[Observer]] = None):
        self._observers: List[Observer] = []
        self._lock = threading.Lock()
        for ob in observers or ():
            self.subscribe(ob)

    def subscribe(self, observer: Observer) -> None:
        if not isinstance(observer, Observer):
            raise TypeError(f"{type(observer).__name__} has no notify(event) method")
        with self._lock:
            self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception:
                    # observers must not break provisioning runs
                    log.debug("observer %r failed on %s", ob, type(event).__name__, exc_info=True)
