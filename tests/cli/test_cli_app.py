import json
import logging
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

import kubestrap.cli.app as app_mod
from kubestrap import __version__
from kubestrap.cli.app import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, EXIT_PLANNING, app
from kubestrap.runners.interface import CommandResult

cli = CliRunner()

INVENTORY = textwrap.dedent("""
    [k8s_master]
    master ansible_host=10.0.0.10

    [k8s_nodes]
    worker1 ansible_host=10.0.0.11
""")


def converged(command: str) -> CommandResult:
    """Answers of a cluster that is already fully provisioned."""
    if "wc -l" in command:
        return CommandResult(0, "0\n")
    if "healthz" in command:
        return CommandResult(0, "ok")
    if "token create" in command:
        return CommandResult(0, "kubeadm join 10.0.0.10:6443 --token t\n")
    if "jsonpath" in command:
        return CommandResult(0, "Running")
    if "get nodes" in command:
        return CommandResult(0, "master Ready\nworker1 Ready\n")
    return CommandResult(0, "ubuntu")


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger("kubestrap")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def files(tmp_path: Path):
    inv = tmp_path / "hosts.ini"
    inv.write_text(INVENTORY)
    cfg = tmp_path / "run.yaml"
    cfg.write_text(f"environment: dev\nlog_dir: {tmp_path / 'logs'}\n")
    return inv, cfg, tmp_path


@pytest.fixture
def fake(monkeypatch, runner):
    monkeypatch.setattr(app_mod, "build_runner", lambda cfg: runner)
    return runner


def test_dry_run_prints_plan_and_runs_nothing(files, fake):
    inv, cfg, tmp = files
    fake.default = CommandResult(1)

    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg), "--dry-run"])

    assert result.exit_code == EXIT_OK, result.output
    assert "kubeadm-join  (waits for join-command@master)" in result.output
    assert "nothing was run" in result.output
    assert all(become is False for _, _, become in fake.calls)
    assert fake.closed
    assert not list((tmp / "logs").glob("*.report.jsonl"))


def test_run_on_converged_cluster(files, fake):
    inv, cfg, tmp = files
    fake.default = converged

    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg)])

    assert result.exit_code == EXIT_OK, result.output
    assert "Run summary" in result.output
    (report,) = (tmp / "logs").glob("*.report.jsonl")
    rows = [json.loads(line) for line in report.read_text().splitlines()]
    assert {r["status"] for r in rows} <= {"SUCCESS", "SKIPPED"}
    assert ("worker1", "kubeadm-join") in {(r["host"], r["step"]) for r in rows}
    assert list((tmp / "logs").glob("*.events.jsonl"))


def test_tags_and_custom_report_path(files, fake):
    inv, cfg, tmp = files
    fake.default = converged
    out = tmp / "out" / "report.jsonl"

    result = cli.invoke(
        app, ["run", "-i", str(inv), "-c", str(cfg), "--tags", "prereqs", "--skip-tags", "packages", "--report", str(out)]
    )

    assert result.exit_code == EXIT_OK, result.output
    steps = {json.loads(line)["step"] for line in out.read_text().splitlines()}
    assert "swap-off" in steps
    assert "base-packages" not in steps
    assert "kubeadm-init" not in steps


def test_fatal_failure_exits_1(files, fake):
    inv, cfg, _ = files
    fake.on("swapoff -a", CommandResult(1, stderr="swapoff failed"))
    fake.default = CommandResult(1)

    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg), "--tags", "swap-off"])

    assert result.exit_code == EXIT_FAILED
    assert "ABORTED" in result.output


def test_planning_error_exits_3(files, fake):
    inv, cfg, tmp = files
    fake.default = CommandResult(1)
    extra = tmp / "loop.yaml"
    extra.write_text(textwrap.dedent("""
        steps:
          - {name: loop-a, depends_on: [loop-b], run: "true"}
          - {name: loop-b, depends_on: [loop-a], run: "true"}
    """))

    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg), "--catalog", str(extra)])

    assert result.exit_code == EXIT_PLANNING
    assert "planning error" in result.output
    assert "loop-a" in result.output


@pytest.mark.parametrize("config_text", [
    "environment: qa\n",
    "addons: {not-an-addon: true}\n",
    "max_parallel_hosts: 0\n",
])
def test_bad_config_exits_4(files, fake, config_text):
    inv, cfg, tmp = files
    cfg.write_text(f"log_dir: {tmp / 'logs'}\n" + config_text)

    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg), "--dry-run"])

    assert result.exit_code == EXIT_CONFIG
    assert "configuration error" in result.output


def test_missing_inventory_exits_4(tmp_path: Path, fake):
    result = cli.invoke(app, ["run", "-i", str(tmp_path / "nope.ini")])
    assert result.exit_code == EXIT_CONFIG


def test_limit_matching_nothing_exits_4(files, fake):
    inv, cfg, _ = files
    result = cli.invoke(app, ["run", "-i", str(inv), "-c", str(cfg), "--limit", "db1"])
    assert result.exit_code == EXIT_CONFIG


def not_yet_reset(command: str) -> CommandResult:
    """Every teardown check fails, every teardown action works."""
    if command.startswith(("test ", "! ", "systemctl is-active")):
        return CommandResult(1)
    return CommandResult(0)


def test_reset_with_force_tears_down_every_host(files, fake):
    inv, cfg, tmp = files
    cfg.write_text(f"log_dir: {tmp / 'logs'}\naddons: {{dashboard: false}}\n")
    fake.default = not_yet_reset

    result = cli.invoke(app, ["reset", "-i", str(inv), "-c", str(cfg), "--force"])

    assert result.exit_code == EXIT_OK, result.output
    assert "WARNING" not in result.output
    for host in ("master", "worker1"):
        assert "kubeadm reset -f" in fake.commands(host)
        assert any("apt-get purge" in c for c in fake.commands(host))
    assert any("get pods --all-namespaces" in c for c in fake.commands("master"))
    assert not any("get pods --all-namespaces" in c for c in fake.commands("worker1"))
    assert fake.closed


def test_reset_needs_both_confirmations(files, fake):
    inv, cfg, _ = files
    fake.default = not_yet_reset

    refused = cli.invoke(app, ["reset", "-i", str(inv), "-c", str(cfg)], input="YES\nn\n")

    assert refused.exit_code == EXIT_FAILED
    assert "WARNING: KUBERNETES CLUSTER RESET" in refused.output
    assert "Cluster reset aborted." in refused.output
    assert fake.calls == []

    wrong = cli.invoke(app, ["reset", "-i", str(inv), "-c", str(cfg)], input="yes\n")
    assert wrong.exit_code == EXIT_FAILED
    assert fake.calls == []

    confirmed = cli.invoke(app, ["reset", "-i", str(inv), "-c", str(cfg)], input="YES\ny\n")
    assert confirmed.exit_code == EXIT_OK, confirmed.output
    assert "kubeadm reset -f" in fake.commands("worker1")


def test_reset_dry_run_prints_teardown_plan(files, fake):
    inv, cfg, _ = files
    fake.default = CommandResult(1)

    result = cli.invoke(app, ["reset", "-i", str(inv), "-c", str(cfg), "--dry-run"])

    assert result.exit_code == EXIT_OK, result.output
    assert "kubeadm-reset" in result.output
    assert "kubeadm-init" not in result.output
    assert fake.calls == []


def test_facts_command(files, fake):
    inv, cfg, _ = files
    fake.on("lspci", CommandResult(0))
    fake.default = CommandResult(1)

    result = cli.invoke(app, ["facts", "-i", str(inv), "-c", str(cfg), "-l", "master"])

    assert result.exit_code == 0, result.output
    assert "[master] 10.0.0.10" in result.output
    assert "worker1" not in result.output
    assert "gpu_present" in result.output and "True" in result.output
    assert "<unknown>" in result.output


def test_addons_command(tmp_path: Path):
    cfg = tmp_path / "run.yaml"
    cfg.write_text("addons: {dashboard: false, nvidia-driver: true}\n")

    result = cli.invoke(app, ["addons", "-c", str(cfg)])

    assert result.exit_code == 0
    lines = {line.split()[0]: line for line in result.output.splitlines() if line.strip()}
    assert "forced off" in lines["dashboard"]
    assert "forced on" in lines["nvidia-driver"]
    assert "auto" in lines["metallb"]


def test_version():
    result = cli.invoke(app, ["version"])
    assert result.output.strip() == __version__
