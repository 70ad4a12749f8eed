# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/console.py
import typer

from .events import (
    BaseEvent,
    BarrierTimedOut,
    HostRunFinished,
    StepFailed,
    StepRetrying,
    StepSkipped,
    StepSucceeded,
)

_COLORS = {
    "COMPLETED": typer.colors.GREEN,
    "FAILED": typer.colors.YELLOW,
    "ABORTED": typer.colors.RED,
    "CANCELLED": typer.colors.MAGENTA,
}


class ConsoleObserver:
    """One line per terminal step outcome, Ansible-recap style."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, StepSucceeded):
            typer.secho(f"ok:      [{event.host}] {event.step} (attempts={event.attempts})", fg=typer.colors.GREEN)
        elif isinstance(event, StepSkipped):
            typer.secho(f"skipped: [{event.host}] {event.step} ({event.reason})", fg=typer.colors.CYAN)
        elif isinstance(event, StepRetrying):
            typer.secho(
                f"retry:   [{event.host}] {event.step} attempt {event.attempt} failed, "
                f"retrying in {event.delay_s:g}s",
                fg=typer.colors.YELLOW,
            )
        elif isinstance(event, StepFailed):
            tag = "failed" if not event.propagated else "blocked"
            typer.secho(
                f"{tag + ':':<8} [{event.host}] {event.step} ({event.policy}) {event.error}",
                fg=typer.colors.RED,
            )
        elif isinstance(event, BarrierTimedOut):
            typer.secho(
                f"timeout: [{event.host}] {event.step} waiting for {event.waiting_on}",
                fg=typer.colors.RED,
            )
        elif isinstance(event, HostRunFinished):
            typer.secho(f"host:    [{event.host}] {event.status}", fg=_COLORS.get(event.status), bold=True)
