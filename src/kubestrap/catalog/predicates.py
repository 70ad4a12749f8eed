# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/catalog/predicates.py
"""
Add-on enablement predicates as written in catalog YAML.

    {always: true}
    {fact: gpu_present}                      # truthy fact on this host
    {fact: os_id, equals: ubuntu}
    {fact: gpu_present, scope: any}          # true on any host of the run
    {var: metallb_ip_range}                  # truthy merged var
    {var: cni_plugin, equals: calico}
    {all: [...]} / {any: [...]} / {not: {...}}

An unknown fact raises MissingFactError; the registry turns that into
"disabled" with the fact name as the reason.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from kubestrap.addons.registry import EnablementPredicate, always
from kubestrap.engine.errors import ConfigError
from kubestrap.facts.models import FactSet, MissingFactError

# merged host vars carry every host's facts under this key, for scope=any|all
CLUSTER_FACTS_VAR = "cluster_facts"

_SENTINEL = object()


def _compare(value: Any, expected: Any) -> bool:
    if expected is _SENTINEL:
        return bool(value)
    return value == expected


def _fact(name: str, expected: Any, scope: str) -> EnablementPredicate:
    if scope == "host":
        return lambda facts, hv: _compare(facts[name], expected)

    def _cluster(facts: FactSet, hv: Mapping[str, Any]) -> bool:
        known = [f[name] for f in hv.get(CLUSTER_FACTS_VAR, {}).values() if name in f]
        if not known:
            raise MissingFactError(name)
        results = [_compare(v, expected) for v in known]
        return any(results) if scope == "any" else all(results)

    return _cluster


def compile_predicate(spec: Optional[Mapping[str, Any]], *, where: str = "enabled_when") -> EnablementPredicate:
    if spec is None:
        return always
    if not isinstance(spec, Mapping) or not spec:
        raise ConfigError(f"{where}: expected a non-empty mapping, got {spec!r}")

    if "always" in spec:
        flag = bool(spec["always"])
        return lambda facts, hv: flag

    if "fact" in spec:
        scope = spec.get("scope", "host")
        if scope not in ("host", "any", "all"):
            raise ConfigError(f"{where}: scope must be host, any or all (got {scope!r})")
        return _fact(str(spec["fact"]), spec.get("equals", _SENTINEL), scope)

    if "var" in spec:
        name = str(spec["var"])
        expected = spec.get("equals", _SENTINEL)
        return lambda facts, hv: _compare(hv.get(name), expected)

    if "all" in spec or "any" in spec:
        key = "all" if "all" in spec else "any"
        items = spec[key]
        if not isinstance(items, list) or not items:
            raise ConfigError(f"{where}.{key}: expected a non-empty list")
        preds = [compile_predicate(p, where=f"{where}.{key}[{i}]") for i, p in enumerate(items)]
        if key == "all":
            return lambda facts, hv: all(p(facts, hv) for p in preds)
        return lambda facts, hv: any(p(facts, hv) for p in preds)

    if "not" in spec:
        inner = compile_predicate(spec["not"], where=f"{where}.not")
        return lambda facts, hv: not inner(facts, hv)

    raise ConfigError(f"{where}: unknown predicate keys {sorted(spec)}")
