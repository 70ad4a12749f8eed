# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/engine/actions.py
"""
Building blocks for Step actions and satisfaction checks.

Commands are Jinja2 templates rendered against the step context (merged vars,
`host`, `facts`, `upstream`) at the moment the step runs.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from kubestrap.kube.helm import ChartApplier, HelmRelease
from kubestrap.kube.kubectl import ADMIN_KUBECONFIG, ManifestApplier, ManifestSource
from kubestrap.runners.interface import CommandResult
from kubestrap.utils.templating import render, render_obj

from .steps import Action, Predicate, StepContext


def shell(template: str, *, timeout: Optional[float] = None, become: Optional[bool] = None) -> Action:
    def _action(ctx: StepContext) -> CommandResult:
        return ctx.run(render(template, ctx.template_context()), timeout=timeout, become=become)

    return _action


def command_succeeds(template: str, *, become: Optional[bool] = None, timeout: float = 60) -> Predicate:
    """Satisfied when the (read-only) command exits 0."""

    def _check(ctx: StepContext) -> bool:
        return ctx.run(render(template, ctx.template_context()), timeout=timeout, become=become).ok

    return _check


def fact_is(name: str, expected: Any = True) -> Predicate:
    """Satisfied when the host fact equals `expected`; unknown facts are not satisfied."""

    def _check(ctx: StepContext) -> bool:
        return name in ctx.facts and ctx.facts[name] == expected

    return _check


def _kubeconfig(ctx: StepContext) -> str:
    return str(ctx.vars.get("kubeconfig", ADMIN_KUBECONFIG))


def apply_manifest(
    location: Optional[str] = None,
    content: Optional[str] = None,
    *,
    namespace: Optional[str] = None,
    server_side: bool = False,
    timeout: Optional[float] = None,
) -> Action:
    ManifestSource(location=location, content=content)  # validate shape at build time

    def _action(ctx: StepContext) -> CommandResult:
        tctx = ctx.template_context()
        source = ManifestSource(
            location=render(location, tctx) if location is not None else None,
            content=render(content, tctx) if content is not None else None,
            namespace=render(namespace, tctx) if namespace else None,
            server_side=server_side,
        )
        return ManifestApplier(ctx.runner, kubeconfig=_kubeconfig(ctx)).apply(ctx.host, source, timeout=timeout)

    return _action


def helm_release(release: HelmRelease, *, timeout: Optional[float] = None) -> Action:
    def _action(ctx: StepContext) -> CommandResult:
        tctx = ctx.template_context()
        rendered = replace(
            release,
            name=render(release.name, tctx),
            chart=render(release.chart, tctx),
            namespace=render(release.namespace, tctx),
            version=render(release.version, tctx) if release.version else None,
            repo_name=render(release.repo_name, tctx) if release.repo_name else None,
            repo_url=render(release.repo_url, tctx) if release.repo_url else None,
            values=render_obj(release.values, tctx),
            values_files=render_obj(release.values_files, tctx),
            set_values={k: render(str(v), tctx) for k, v in release.set_values.items()},
        )
        return ChartApplier(ctx.runner, kubeconfig=_kubeconfig(ctx)).apply(ctx.host, rendered, timeout=timeout)

    return _action
