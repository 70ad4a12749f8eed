# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/catalog/loader.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from kubestrap.addons.registry import AddOn, AddOnRegistry
from kubestrap.engine import actions
from kubestrap.engine.errors import ConfigError
from kubestrap.engine.matchers import (
    DEFAULT_MATCHER,
    AllOf,
    ExitCode,
    StdoutContains,
    StdoutInt,
    StdoutMatches,
    StdoutNotContains,
    SuccessMatcher,
)
from kubestrap.engine.steps import Barrier, RetryPolicy, Step
from kubestrap.facts.probe import FactCheck, parser_for
from kubestrap.kube.helm import HelmRelease

from .models import CatalogSpec, StepSpec, SuccessSpec
from .predicates import compile_predicate

log = logging.getLogger("kubestrap")

BUILTIN_CATALOG = "cluster.yaml"
RESET_CATALOG = "reset.yaml"


@dataclass
class Catalog:
    vars: Dict[str, Any] = field(default_factory=dict)
    fact_checks: List[FactCheck] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)
    addons: List[AddOn] = field(default_factory=list)

    def registry(self, overrides: Optional[Dict[str, bool]] = None) -> AddOnRegistry:
        unknown = set(overrides or {}) - {a.name for a in self.addons}
        if unknown:
            raise ConfigError(f"addons override names unknown add-on(s): {', '.join(sorted(unknown))}")
        return AddOnRegistry.from_addons(self.addons, overrides)

    def universe(self) -> List[Step]:
        """Core steps followed by every add-on step, in declaration order."""
        return list(self.steps) + [s for a in self.addons for s in a.steps]


# ------------------------- reading -------------------------

def _parse(text: str, origin: str) -> CatalogSpec:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{origin}: invalid YAML: {e}") from e
    try:
        return CatalogSpec.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{origin}: invalid catalog:\n{e}") from e


def read_builtin(name: str = BUILTIN_CATALOG) -> CatalogSpec:
    text = (resources.files("kubestrap") / "catalog" / name).read_text(encoding="utf-8")
    return _parse(text, f"<builtin {name}>")


def read_catalog(path: str | Path) -> CatalogSpec:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"catalog file not found: {path}")
    return _parse(os.path.expandvars(path.read_text()), str(path))


def _merge_named(base: list, extra: list) -> list:
    # same name replaces in place, new names are appended
    index = {item.name: i for i, item in enumerate(base)}
    out = list(base)
    for item in extra:
        if item.name in index:
            out[index[item.name]] = item
        else:
            index[item.name] = len(out)
            out.append(item)
    return out


def merge(specs: Sequence[CatalogSpec]) -> CatalogSpec:
    merged = CatalogSpec()
    for spec in specs:
        merged.vars.update(spec.vars)
        merged.facts = _merge_named(merged.facts, spec.facts)
        merged.steps = _merge_named(merged.steps, spec.steps)
        merged.addons = _merge_named(merged.addons, spec.addons)
    return merged


# ------------------------- compiling -------------------------

def build_matcher(spec: Optional[SuccessSpec]) -> SuccessMatcher:
    if spec is None:
        return DEFAULT_MATCHER
    matchers: List[SuccessMatcher] = []
    zero = spec.exit_codes is None
    if spec.exit_codes is not None:
        matchers.append(ExitCode(frozenset(spec.exit_codes)))
    if spec.stdout_contains is not None:
        matchers.append(StdoutContains(spec.stdout_contains, require_zero_exit=zero))
    if spec.stdout_not_contains is not None:
        matchers.append(StdoutNotContains(spec.stdout_not_contains, require_zero_exit=zero))
    if spec.stdout_regex is not None:
        matchers.append(StdoutMatches(spec.stdout_regex, require_zero_exit=zero))
    if spec.stdout_int is not None:
        matchers.append(StdoutInt(spec.stdout_int.op, spec.stdout_int.value, require_zero_exit=zero))
    if not matchers:
        return DEFAULT_MATCHER
    if len(matchers) == 1:
        return matchers[0]
    return AllOf(tuple(matchers))


def compile_step(spec: StepSpec) -> Step:
    if spec.run is not None:
        action = actions.shell(spec.run, timeout=spec.timeout_seconds, become=spec.become)
    elif spec.apply is not None:
        action = actions.apply_manifest(
            spec.apply.source,
            spec.apply.manifest,
            namespace=spec.apply.namespace,
            server_side=spec.apply.server_side,
            timeout=spec.timeout_seconds,
        )
    else:
        h = spec.helm
        action = actions.helm_release(
            HelmRelease(
                name=h.release,
                chart=h.chart,
                namespace=h.namespace,
                version=h.version,
                repo_name=h.repo.name if h.repo else None,
                repo_url=h.repo.url if h.repo else None,
                values=dict(h.values),
                values_files=list(h.values_files),
                set_values={k: str(v) for k, v in h.set.items()},
                create_namespace=h.create_namespace,
                atomic=h.atomic,
                wait=h.wait,
                timeout_seconds=h.timeout_seconds,
            ),
            timeout=spec.timeout_seconds,
        )

    if spec.check is not None:
        is_satisfied = actions.command_succeeds(spec.check, become=spec.become)
    elif spec.check_fact is not None:
        is_satisfied = actions.fact_is(spec.check_fact)
    else:
        is_satisfied = None

    return Step(
        name=spec.name,
        action=action,
        depends_on=tuple(spec.depends_on),
        after=tuple(spec.after),
        waits_for=tuple(Barrier(w.step, host=w.host, role=w.role, optional=w.optional) for w in spec.wait_for),
        roles=frozenset(spec.roles),
        is_satisfied=is_satisfied,
        success=build_matcher(spec.success),
        retry=RetryPolicy(spec.retry.max_attempts, spec.retry.delay_seconds, spec.retry.backoff_factor),
        failure_policy=spec.failure_policy,
        timeout_seconds=spec.timeout_seconds,
        invalidates_facts=spec.invalidates_facts,
        tags=frozenset(spec.tags),
        description=spec.description,
    )


def compile_catalog(spec: CatalogSpec) -> Catalog:
    checks: List[FactCheck] = []
    for f in spec.facts:
        try:
            parser_for(f.parse)
        except ValueError as e:
            raise ConfigError(f"fact '{f.name}': {e}") from e
        checks.append(FactCheck(f.name, f.command, f.parse))

    addons: List[AddOn] = []
    for a in spec.addons:
        addons.append(
            AddOn(
                name=a.name,
                steps=tuple(compile_step(s) for s in a.steps),
                enabled_when=compile_predicate(a.enabled_when, where=f"addons.{a.name}.enabled_when"),
                description=a.description,
            )
        )

    return Catalog(
        vars=dict(spec.vars),
        fact_checks=checks,
        steps=[compile_step(s) for s in spec.steps],
        addons=addons,
    )


def load_catalog(extra: Iterable[str | Path] = (), *, builtin: bool = True) -> Catalog:
    """
    Load the shipped cluster catalog and layer user catalog files on top.
    Later files win: vars are merged key by key, facts, steps and add-ons
    are replaced by name.
    """
    specs: List[CatalogSpec] = [read_builtin()] if builtin else []
    for path in extra:
        log.debug(f"Loading catalog {path}")
        specs.append(read_catalog(path))
    catalog = compile_catalog(merge(specs))
    log.debug(
        f"Catalog: {len(catalog.steps)} steps, {len(catalog.addons)} add-ons, "
        f"{len(catalog.fact_checks)} fact checks"
    )
    return catalog


def load_reset_catalog() -> Catalog:
    """The teardown steps behind `kubestrap reset`; user catalogs do not apply."""
    return compile_catalog(read_builtin(RESET_CATALOG))
