import json
from pathlib import Path

import pytest

from kubestrap.addons.registry import AddOn
from kubestrap.catalog.loader import Catalog
from kubestrap.catalog.predicates import compile_predicate
from kubestrap.config.models import RunConfig
from kubestrap.engine.actions import command_succeeds, shell
from kubestrap.engine.errors import ConfigError, UnknownDependencyError
from kubestrap.engine.executor import HostStatus
from kubestrap.engine.orchestrator import Orchestrator, select_by_tags
from kubestrap.engine.report import StepStatus
from kubestrap.engine.steps import Barrier, Step
from kubestrap.facts.probe import FactCheck
from kubestrap.inventory.models import WORKER, Host
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import AddOnResolved, PlanFailed, RunCancelled, RunSummary
from kubestrap.runners.interface import CommandResult

CP = frozenset({"control-plane"})
WK = frozenset({"worker"})


def _catalog(addons=(), steps=None):
    steps = steps if steps is not None else [
        Step(name="base", action=shell("install-base"), is_satisfied=command_succeeds("check-base")),
        Step(
            name="join-command",
            action=shell("kubeadm token create --print-join-command"),
            roles=CP,
            depends_on=("base",),
        ),
        Step(
            name="kubeadm-join",
            action=shell("{{ upstream['join-command'].stdout | trim }}"),
            roles=WK,
            depends_on=("base",),
            waits_for=(Barrier("join-command", role="control-plane"),),
            is_satisfied=command_succeeds("check-joined"),
        ),
    ]
    return Catalog(
        vars={"greeting": "hi"},
        fact_checks=[FactCheck("gpu_present", "lspci-nvidia", "rc_zero")],
        steps=steps,
        addons=list(addons),
    )


def _gpu_addon():
    return AddOn(
        name="nvidia-driver",
        steps=(Step(name="driver-install", action=shell("install-driver"), depends_on=("base",)),),
        enabled_when=compile_predicate({"fact": "gpu_present"}),
    )


def _orch(catalog, runner, capture=None, **kw):
    kw.setdefault("config", RunConfig(barrier_timeout_seconds=5))
    bus = EventBus([capture]) if capture is not None else EventBus()
    return Orchestrator(catalog, runner, bus=bus, **kw)


def _not_checks(runner, gpu_hosts=()):
    # first matching rule wins, so host-specific answers go first
    for name in gpu_hosts:
        runner.on("lspci-nvidia", CommandResult(0), host=name)
    runner.on("lspci-nvidia", CommandResult(1))
    runner.on("check-", CommandResult(1))
    return runner


def test_worker_joins_with_command_published_by_control_plane(runner, master, worker, capture):
    _not_checks(runner)
    runner.on("kubeadm token create", CommandResult(0, stdout="kubeadm join 10.0.0.10:6443 --token abc\n"))

    result = _orch(_catalog(), runner, capture).run([master, worker])

    assert result.ok
    assert result.hosts["master"].status is HostStatus.COMPLETED
    assert result.hosts["worker1"].status is HostStatus.COMPLETED
    assert "kubeadm join 10.0.0.10:6443 --token abc" in runner.commands("worker1")
    order = [(o.host, o.step) for o in result.report.outcomes]
    assert order.index(("master", "join-command")) < order.index(("worker1", "kubeadm-join"))
    summary = capture.of(RunSummary)[0]
    assert summary.succeeded == 4
    assert summary.hosts_completed == 2


def test_fatal_failure_on_one_host_leaves_others_alone(runner, master, worker):
    _not_checks(runner)
    other = Host(name="worker2", address="10.0.0.12", roles=frozenset({WORKER}))
    runner.on("install-base", CommandResult(1, stderr="dpkg lock"), host="worker1")

    result = _orch(_catalog(), runner).run([master, worker, other])

    assert result.hosts["worker1"].status is HostStatus.ABORTED
    assert result.hosts["worker2"].status is HostStatus.COMPLETED
    assert result.hosts["master"].status is HostStatus.COMPLETED
    assert result.report.find("worker1", "kubeadm-join") is None
    assert result.report.find("worker2", "kubeadm-join").status is StepStatus.SUCCESS
    assert not result.ok


def test_addon_steps_follow_facts_per_host(runner, master, worker, capture):
    _not_checks(runner, gpu_hosts=["worker1"])
    runner.on("kubeadm token create", CommandResult(0, stdout="kubeadm join x"))

    orch = _orch(_catalog([_gpu_addon()]), runner, capture)
    result = orch.run([master, worker])

    assert result.report.find("worker1", "driver-install").status is StepStatus.SUCCESS
    assert result.report.find("master", "driver-install") is None
    resolved = {(e.host, e.addon): e.enabled for e in capture.of(AddOnResolved)}
    assert resolved == {("master", "nvidia-driver"): False, ("worker1", "nvidia-driver"): True}


def test_no_gpu_means_no_gpu_steps(runner, master, worker):
    _not_checks(runner)
    runner.on("kubeadm token create", CommandResult(0, stdout="kubeadm join x"))

    result = _orch(_catalog([_gpu_addon()]), runner).run([master, worker])

    assert [o for o in result.report.outcomes if o.step == "driver-install"] == []
    assert "install-driver" not in runner.commands()


def test_unknown_fact_disables_addon(runner, master, capture):
    runner.on("lspci-nvidia", RuntimeError("connection reset"))
    runner.on("check-", CommandResult(1))

    orch = _orch(_catalog([_gpu_addon()]), runner, capture)
    orch.prepare([master])

    ev = capture.of(AddOnResolved)[0]
    assert ev.enabled is False
    assert "gpu_present" in ev.reason


def test_cluster_scope_enables_addon_everywhere(runner, master, worker):
    _not_checks(runner, gpu_hosts=["worker1"])
    operator = AddOn(
        name="gpu-operator",
        steps=(Step(name="operator", action=shell("helm install gpu-operator"), roles=CP),),
        enabled_when=compile_predicate({"fact": "gpu_present", "scope": "any"}),
    )

    orch = _orch(_catalog([operator]), runner)
    p = orch.prepare([master, worker])

    assert "operator" in [s.name for s in p.steps_for("master")]


def test_config_override_forces_addon_off(runner, master, worker):
    _not_checks(runner, gpu_hosts=["master", "worker1"])
    cfg = RunConfig(addons={"nvidia-driver": False})

    p = _orch(_catalog([_gpu_addon()]), runner, config=cfg).prepare([master, worker])

    assert all(s.addon is None for h in ("master", "worker1") for s in p.steps_for(h))


def test_unknown_addon_override_is_a_config_error(runner):
    with pytest.raises(ConfigError):
        _orch(_catalog([_gpu_addon()]), runner, config=RunConfig(addons={"nope": True}))


def test_rerun_on_converged_cluster_changes_nothing(runner, master, worker):
    runner.on("lspci-nvidia", CommandResult(1))
    runner.default = CommandResult(0)
    steps = [
        Step(name="base", action=shell("install-base"), is_satisfied=command_succeeds("check-base")),
        Step(name="init", action=shell("kubeadm init"), roles=CP, is_satisfied=command_succeeds("check-init")),
        Step(
            name="join",
            action=shell("kubeadm join"),
            roles=WK,
            waits_for=(Barrier("init", role="control-plane"),),
            is_satisfied=command_succeeds("check-join"),
        ),
    ]

    result = _orch(_catalog(steps=steps), runner).run([master, worker])

    assert {o.status for o in result.report.outcomes} == {StepStatus.SKIPPED}
    assert len(result.report.outcomes) == 4
    assert not [c for c in runner.commands() if not c.startswith(("check-", "lspci"))]


def test_report_jsonl_lines(runner, master, tmp_path: Path):
    _not_checks(runner)
    result = _orch(_catalog(), runner).run([master])

    path = result.report.write_jsonl(tmp_path / "report.jsonl")
    rows = [json.loads(line) for line in path.read_text().splitlines()]

    assert [r["step"] for r in rows] == ["base", "join-command"]
    first = rows[0]
    assert first["run_id"] == result.run_id
    assert first["host"] == "master"
    assert first["status"] == "SUCCESS"
    assert first["attempts"] == 1
    assert first["timestamp"].endswith("Z")
    assert isinstance(first["duration"], float)
    assert result.report.frozen


def test_unknown_reference_fails_before_probing(runner, master, capture):
    steps = [Step(name="a", action=shell("a"), depends_on=("typo",)), Step(name="b", action=shell("b"))]
    orch = _orch(_catalog(steps=steps), runner, capture, tags=["b"])

    with pytest.raises(UnknownDependencyError):
        orch.prepare([master])

    assert capture.of(PlanFailed)
    assert runner.commands() == []


def test_prepare_without_hosts(runner):
    with pytest.raises(ConfigError):
        _orch(_catalog(), runner).prepare([])


def test_cancel_before_execute(runner, master, worker, capture):
    _not_checks(runner)
    orch = _orch(_catalog(), runner, capture)
    p = orch.prepare([master, worker])

    orch.cancel("operator pressed ctrl-c")
    result = orch.execute(p)

    assert result.cancelled
    assert not result.ok
    assert {r.status for r in result.hosts.values()} == {HostStatus.CANCELLED}
    assert capture.of(RunCancelled)[0].reason == "operator pressed ctrl-c"


def test_host_vars_override_config_and_catalog_vars(runner, master):
    master.vars = {"greeting": "hello from inventory"}
    orch = _orch(_catalog(), runner, config=RunConfig(vars={"greeting": "cfg", "extra": 1}))

    merged = orch.variables(master)

    assert merged["greeting"] == "hello from inventory"
    assert merged["extra"] == 1


def test_select_by_tags_prunes_references():
    steps = [
        Step(name="packages", action=shell("p"), tags=frozenset({"prereq"})),
        Step(name="init", action=shell("i"), depends_on=("packages",), tags=frozenset({"init"})),
        Step(
            name="join",
            action=shell("j"),
            after=("init",),
            waits_for=(Barrier("init", role="control-plane"),),
            tags=frozenset({"join"}),
        ),
    ]

    picked = select_by_tags(steps, tags=["init", "join"])

    assert [s.name for s in picked] == ["init", "join"]
    assert picked[0].depends_on == ()
    assert picked[1].after == ("init",)
    assert picked[1].waits_for == (Barrier("init", role="control-plane"),)


def test_skip_tags_matches_names_and_addons():
    steps = [
        Step(name="a", action=shell("a")),
        Step(name="b", action=shell("b"), addon="monitoring"),
        Step(name="c", action=shell("c"), depends_on=("a",)),
    ]

    picked = select_by_tags(steps, skip_tags=["monitoring", "a"])

    assert [s.name for s in picked] == ["c"]
    assert picked[0].depends_on == ()
