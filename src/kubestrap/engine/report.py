# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/report.py
from __future__ import annotations

import enum
import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class StepStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    RETRIED = "RETRIED"     # a failed attempt that was retried; not terminal


TERMINAL = (StepStatus.SUCCESS, StepStatus.SKIPPED, StepStatus.FAILED)

EXCERPT_LIMIT = 2000


def excerpt(stdout: str, stderr: str = "", limit: int = EXCERPT_LIMIT) -> str:
    text = stdout.strip()
    if stderr.strip():
        text = (text + "\n" if text else "") + "[stderr] " + stderr.strip()
    if len(text) > limit:
        return "..." + text[-limit:]
    return text


@dataclass(frozen=True)
class StepOutcome:
    step: str
    host: str
    status: StepStatus
    attempts: int = 0
    started_at: float = 0.0        # epoch seconds
    finished_at: float = 0.0
    output_excerpt: str = ""
    error: Optional[str] = None
    delays: Tuple[float, ...] = ()
    propagated: bool = False

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def to_json(self) -> Dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["delays"] = list(self.delays)
        d["duration"] = round(self.duration, 3)
        d["timestamp"] = (
            datetime.fromtimestamp(self.finished_at, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        return d


@dataclass
class RunReport:
    """
    Ordered, append-only record of one run. Host threads append concurrently;
    once frozen the report is read-only.
    """
    run_id: str = ""
    _outcomes: List[StepOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _frozen: bool = False

    def add(self, outcome: StepOutcome) -> None:
        with self._lock:
            if self._frozen:
                raise RuntimeError("RunReport is frozen")
            self._outcomes.append(outcome)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def outcomes(self) -> Tuple[StepOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    def terminal(self) -> Tuple[StepOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status in TERMINAL)

    def for_host(self, host: str) -> Tuple[StepOutcome, ...]:
        return tuple(o for o in self.outcomes if o.host == host)

    def find(self, host: str, step: str) -> Optional[StepOutcome]:
        for o in reversed(self.outcomes):
            if o.host == host and o.step == step and o.status in TERMINAL:
                return o
        return None

    def counts(self) -> Dict[str, int]:
        c = {s.value: 0 for s in StepStatus}
        for o in self.outcomes:
            c[o.status.value] += 1
        return c

    def summary(self) -> str:
        c = self.counts()
        return (
            f"SUCCESS={c['SUCCESS']} SKIPPED={c['SKIPPED']} "
            f"FAILED={c['FAILED']} RETRIED={c['RETRIED']}"
        )

    def write_jsonl(self, path: str | Path) -> Path:
        """One JSON object per outcome, in append order."""
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            for o in self.outcomes:
                f.write(json.dumps({"run_id": self.run_id, **o.to_json()}))
                f.write("\n")
        return p
