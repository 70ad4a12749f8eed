import json
import logging
from pathlib import Path

import pytest

from kubestrap.logging.log import init_logging
from kubestrap.observers.console import ConsoleObserver
from kubestrap.observers.dispatcher import EventBus, Observer
from kubestrap.observers.events import HostRunFinished, StepFailed, StepSucceeded, new_ctx
from kubestrap.observers.jsonfile import JsonFileObserver
from kubestrap.observers.logger import LoggerObserver


class Broken:
    def notify(self, ev): raise RuntimeError("observer bug")


def test_bus_skips_broken_observers(capture):
    ctx = new_ctx(env="prod", run_id="r-1")
    bus = EventBus([Broken(), capture])

    bus.emit(StepSucceeded(host="m", step="s", attempts=1, duration_ms=5, **ctx()))

    assert len(capture.events) == 1
    ev = capture.events[0]
    assert (ev.run_id, ev.env) == ("r-1", "prod")
    assert ev.ts.endswith("Z")


def test_bus_rejects_objects_without_notify(tmp_path: Path):
    bus = EventBus()
    with pytest.raises(TypeError, match="notify"):
        bus.subscribe(object())
    with pytest.raises(TypeError):
        EventBus([print])

    sinks = [ConsoleObserver(), LoggerObserver(logging.getLogger("t")), JsonFileObserver(tmp_path / "e.jsonl")]
    assert all(isinstance(ob, Observer) for ob in sinks)
    EventBus(sinks)


def test_jsonfile_observer_appends_lines(tmp_path: Path):
    ctx = new_ctx()
    path = tmp_path / "events" / "run.jsonl"
    ob = JsonFileObserver(path)

    ob.notify(StepFailed(host="w1", step="join", attempts=3, policy="fatal", error="boom", **ctx()))
    ob.notify(HostRunFinished(host="w1", status="ABORTED", error="boom", **ctx()))

    rows = [json.loads(line) for line in path.read_text().splitlines()]
    assert [r["type"] for r in rows] == ["StepFailed", "HostRunFinished"]
    assert rows[0]["attempts"] == 3
    assert rows[0]["run_id"] == ctx.run_id


def test_console_observer_prints_outcomes(capsys):
    ctx = new_ctx()
    ob = ConsoleObserver()
    ob.notify(StepSucceeded(host="m", step="kubeadm-init", attempts=2, duration_ms=10, **ctx()))
    ob.notify(StepFailed(host="w", step="join", attempts=0, policy="fatal", error="dep", propagated=True, **ctx()))

    out = capsys.readouterr().out
    assert "ok:      [m] kubeadm-init (attempts=2)" in out
    assert "blocked: [w] join (fatal) dep" in out


def test_logging_writes_run_file(tmp_path: Path):
    logger, run_id, log_path = init_logging(base_dir=tmp_path, run_id="abc")
    try:
        LoggerObserver(logger).notify(HostRunFinished(host="m", status="COMPLETED", **new_ctx()()))
        for h in logger.handlers:
            h.flush()
        text = log_path.read_text()
        assert run_id == "abc"
        assert log_path.name.endswith("-abc.log")
        assert "[EVENT] HostRunFinished: host=m, status=COMPLETED" in text
    finally:
        for h in list(logger.handlers):
            h.close()
        logger.handlers.clear()
        logger.propagate = True
