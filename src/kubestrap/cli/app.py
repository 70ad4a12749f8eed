# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/cli/app.py
from __future__ import annotations

import signal
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from kubestrap import __version__
from kubestrap.catalog.loader import Catalog, load_catalog, load_reset_catalog
from kubestrap.config.loader import load_config
from kubestrap.config.models import RunConfig
from kubestrap.engine.errors import ConfigError, PlanningError
from kubestrap.engine.executor import HostStatus
from kubestrap.engine.orchestrator import Orchestrator, RunResult
from kubestrap.engine.planner import Plan
from kubestrap.engine.report import StepStatus
from kubestrap.inventory.loader import load_inventory
from kubestrap.inventory.models import Inventory
from kubestrap.logging.log import init_logging
from kubestrap.observers.console import ConsoleObserver
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import new_ctx
from kubestrap.observers.jsonfile import JsonFileObserver
from kubestrap.observers.logger import LoggerObserver
from kubestrap.runners.interface import CommandRunner
from kubestrap.runners.local import LocalRunner
from kubestrap.runners.routing import RoutingRunner
from kubestrap.runners.ssh import SSHRunner


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubestrap: bring up a Kubernetes cluster, idempotently", no_args_is_help=True)

EXIT_OK = 0
EXIT_FAILED = 1          # a host was aborted or cancelled
EXIT_PLANNING = 3        # nothing ran
EXIT_CONFIG = 4          # bad config, catalog or inventory

_STATUS_COLORS = {
    HostStatus.COMPLETED: typer.colors.GREEN,
    HostStatus.FAILED: typer.colors.YELLOW,
    HostStatus.ABORTED: typer.colors.RED,
    HostStatus.CANCELLED: typer.colors.MAGENTA,
}


def _csv(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _exit(message: str, code: int) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(code)


def build_runner(cfg: RunConfig) -> CommandRunner:
    """Local for ansible_connection=local / loopback hosts, SSH for the rest."""
    return RoutingRunner(
        local=LocalRunner(become=cfg.become, default_timeout=cfg.ssh.command_timeout),
        remote=SSHRunner(
            user=cfg.ssh.user,
            port=cfg.ssh.port,
            key_path=cfg.ssh.key,
            become=cfg.become,
            connect_timeout=cfg.ssh.connect_timeout,
            connect_retries=cfg.ssh.connect_retries,
            default_timeout=cfg.ssh.command_timeout,
        ),
    )


def _close(runner: CommandRunner) -> None:
    close = getattr(runner, "close", None)
    if close:
        close()


def _load(
    inventory: Path,
    config: Optional[Path],
    catalogs: Optional[List[Path]],
    limit: Optional[str],
) -> Tuple[RunConfig, Catalog, Inventory]:
    cfg = load_config(config)
    catalog = load_catalog([*cfg.catalogs, *(catalogs or [])])
    inv = load_inventory(inventory, cfg.role_groups).limit(limit)
    if not inv.hosts:
        raise ConfigError(f"--limit {limit!r} matches no inventory host")
    return cfg, catalog, inv


# ------------------------------------------------------------------------------
# Output
# ------------------------------------------------------------------------------

def print_plan(plan: Plan, orch: Orchestrator) -> None:
    for host in plan.hosts:
        typer.secho(f"\n[{host.name}] {host.address} roles={','.join(sorted(host.roles)) or '-'}", bold=True)
        enabled = sorted(r.addon for r in orch.resolutions.get(host.name, []) if r.enabled)
        typer.echo(f"  add-ons: {', '.join(enabled) or '(none)'}")
        for i, step in enumerate(plan.steps_for(host.name), 1):
            line = f"  {i:>3}. {step.name}"
            keys = plan.barriers_for(host.name, step.name)
            if keys:
                line += "  (waits for " + ", ".join(f"{s}@{h}" for h, s in keys) + ")"
            typer.echo(line)
    typer.echo(f"\n{plan.total_steps()} step(s) planned across {len(plan.hosts)} host(s); nothing was run.")


def print_summary(result: RunResult, report_path: Path, log_path: Path) -> None:
    typer.echo("")
    typer.secho("Run summary", bold=True)
    for name, hr in result.hosts.items():
        outcomes = [o for o in result.report.for_host(name) if o.status is not StepStatus.RETRIED]
        ok = sum(1 for o in outcomes if o.status is StepStatus.SUCCESS)
        skipped = sum(1 for o in outcomes if o.status is StepStatus.SKIPPED)
        failed = sum(1 for o in outcomes if o.status is StepStatus.FAILED)
        typer.secho(
            f"  {name:<24} {hr.status.value:<10} ok={ok} skipped={skipped} failed={failed}",
            fg=_STATUS_COLORS.get(hr.status),
        )
        if hr.error:
            typer.echo(f"  {'':<24} {hr.error}")
    for t in result.barrier_timeouts:
        typer.secho(f"  barrier timeout: {t}", fg=typer.colors.RED)
    typer.echo(f"  Report   : {report_path}")
    typer.echo(f"  Logs     : {log_path}")


def _execute(
    cfg: RunConfig,
    cat: Catalog,
    inv: Inventory,
    *,
    title: str,
    tags: Optional[str] = None,
    skip_tags: Optional[str] = None,
    dry_run: bool = False,
    report: Optional[Path] = None,
    verbose: bool = False,
) -> None:
    log_dir = Path(cfg.log_dir).expanduser() if cfg.log_dir else None
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=verbose)

    typer.echo("")
    typer.secho(f"kubestrap {title} started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Hosts    : {', '.join(h.name for h in inv.hosts)}")
    typer.echo(f"  Logs     : {log_path}")

    bus = EventBus(
        observers=[
            ConsoleObserver(),
            LoggerObserver(logger),
            JsonFileObserver(log_path.parent / f"{run_id}.events.jsonl"),
        ]
    )
    runner = build_runner(cfg)
    try:
        try:
            orch = Orchestrator(
                cat,
                runner,
                config=cfg,
                tags=_csv(tags),
                skip_tags=_csv(skip_tags),
                bus=bus,
                run_ctx=new_ctx(env=cfg.environment, run_id=run_id),
            )
            plan = orch.prepare(inv.list_hosts())
        except PlanningError as e:
            logger.error(f"planning failed: {e}")
            raise _exit(f"planning error: {e}", EXIT_PLANNING)
        except ConfigError as e:
            raise _exit(f"configuration error: {e}", EXIT_CONFIG)

        if dry_run:
            print_plan(plan, orch)
            raise typer.Exit(EXIT_OK)

        previous = signal.signal(signal.SIGTERM, lambda *_: orch.cancel("SIGTERM"))
        try:
            result = orch.execute(plan)
        finally:
            signal.signal(signal.SIGTERM, previous)
    finally:
        _close(runner)

    report_path = result.report.write_jsonl(report or log_path.parent / f"{run_id}.report.jsonl")
    print_summary(result, report_path, log_path)
    raise typer.Exit(EXIT_OK if result.ok else EXIT_FAILED)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    inventory: Path = typer.Option(..., "--inventory", "-i", help="Ansible INI or YAML inventory"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Run config YAML"),
    catalog: Optional[List[Path]] = typer.Option(None, "--catalog", help="Extra catalog file (repeatable)"),
    tags: Optional[str] = typer.Option(None, "--tags", help="Only steps with these tags/names/add-ons"),
    skip_tags: Optional[str] = typer.Option(None, "--skip-tags", help="Drop steps with these tags/names/add-ons"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Hosts, groups or roles to run on"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Probe facts and print the plan, run nothing"),
    report: Optional[Path] = typer.Option(None, "--report", help="Where to write the JSONL run report"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Provision the cluster described by the inventory."""
    try:
        cfg, cat, inv = _load(inventory, config, catalog, limit)
    except ConfigError as e:
        raise _exit(f"configuration error: {e}", EXIT_CONFIG)

    _execute(
        cfg, cat, inv,
        title="run", tags=tags, skip_tags=skip_tags, dry_run=dry_run, report=report, verbose=verbose,
    )


RESET_WARNING = """\
========================================
WARNING: KUBERNETES CLUSTER RESET
========================================
This will, on every selected host:
  - run kubeadm reset
  - remove all containers and stop kubelet
  - purge the Kubernetes packages
  - delete cluster state, CNI config and iptables rules
THIS CANNOT BE UNDONE. ALL CLUSTER DATA WILL BE LOST.
========================================"""


def confirm_reset() -> bool:
    typer.secho(RESET_WARNING, fg=typer.colors.RED)
    if typer.prompt("Type 'YES' to reset the cluster", default="", show_default=False) != "YES":
        return False
    return typer.confirm("Last chance! This will DESTROY the cluster. Continue?", default=False)


@app.command()
def reset(
    inventory: Path = typer.Option(..., "--inventory", "-i", help="Ansible INI or YAML inventory"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Run config YAML"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Hosts, groups or roles to reset"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompts"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the teardown plan, run nothing"),
    report: Optional[Path] = typer.Option(None, "--report", help="Where to write the JSONL run report"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Tear kubeadm, the Kubernetes packages and cluster state off the hosts."""
    try:
        # add-on overrides name cluster add-ons, the teardown catalog has none
        cfg = load_config(config).model_copy(update={"addons": {}})
        cat = load_reset_catalog()
        inv = load_inventory(inventory, cfg.role_groups).limit(limit)
        if not inv.hosts:
            raise ConfigError(f"--limit {limit!r} matches no inventory host")
    except ConfigError as e:
        raise _exit(f"configuration error: {e}", EXIT_CONFIG)

    if not (force or dry_run or confirm_reset()):
        typer.echo("Cluster reset aborted.")
        raise typer.Exit(EXIT_FAILED)

    _execute(cfg, cat, inv, title="reset", dry_run=dry_run, report=report, verbose=verbose)


@app.command()
def facts(
    inventory: Path = typer.Option(..., "--inventory", "-i"),
    config: Optional[Path] = typer.Option(None, "--config", "-c"),
    catalog: Optional[List[Path]] = typer.Option(None, "--catalog"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l"),
):
    """Probe and print host facts (read-only)."""
    try:
        cfg, cat, inv = _load(inventory, config, catalog, limit)
    except ConfigError as e:
        raise _exit(f"configuration error: {e}", EXIT_CONFIG)

    runner = build_runner(cfg)
    try:
        Orchestrator(cat, runner, config=cfg).probe_facts(inv.list_hosts())
    except ConfigError as e:
        raise _exit(f"configuration error: {e}", EXIT_CONFIG)
    finally:
        _close(runner)

    names = [c.name for c in cat.fact_checks]
    for host in inv.hosts:
        typer.secho(f"[{host.name}] {host.address}", bold=True)
        for n in names:
            typer.echo(f"  {n:<26} {host.facts.get(n, '<unknown>')}")


@app.command()
def addons(
    config: Optional[Path] = typer.Option(None, "--config", "-c"),
    catalog: Optional[List[Path]] = typer.Option(None, "--catalog"),
):
    """List the add-ons the catalog provides."""
    try:
        cfg = load_config(config)
        cat = load_catalog([*cfg.catalogs, *(catalog or [])])
        cat.registry(cfg.addons)
    except ConfigError as e:
        raise _exit(f"configuration error: {e}", EXIT_CONFIG)

    for addon in cat.addons:
        forced = cfg.addons.get(addon.name)
        state = "auto" if forced is None else ("forced on" if forced else "forced off")
        typer.echo(f"{addon.name:<16} {state:<11} {len(addon.steps):>2} step(s)  {addon.description}")


@app.command()
def version():
    """Print the kubestrap version."""
    typer.echo(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
