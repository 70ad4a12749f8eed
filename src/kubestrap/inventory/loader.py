# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/inventory/loader.py

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

import yaml

from kubestrap.engine.errors import ConfigError

from .models import CONTROL_PLANE, WORKER, Host, Inventory

log = logging.getLogger("kubestrap")

# inventory group -> engine role
DEFAULT_ROLE_GROUPS: Dict[str, List[str]] = {
    CONTROL_PLANE: ["k8s_master", "masters", "control_plane", "control-plane", "kube_control_plane"],
    WORKER: ["k8s_nodes", "k8s_worker", "workers", "nodes", "kube_node", "worker"],
}


def _scalar(value: str) -> Any:
    """INI values are strings; give yaml a go so ports and booleans come out typed."""
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    return parsed if isinstance(parsed, (str, int, float, bool)) else value


def _kv(tokens: Sequence[str], where: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for tok in tokens:
        if "=" not in tok:
            raise ConfigError(f"{where}: expected key=value, got {tok!r}")
        k, v = tok.split("=", 1)
        out[k.strip()] = _scalar(v)
    return out


def parse_ini(text: str, origin: str = "<inventory>") -> Dict[str, Any]:
    """
    Parse an Ansible INI inventory into a neutral structure:
        {"hosts": {name: vars}, "groups": {group: [names]},
         "children": {group: [child groups]}, "group_vars": {group: vars}}
    Hosts outside any section belong to "ungrouped".
    """
    hosts: Dict[str, Dict[str, Any]] = {}
    groups: Dict[str, List[str]] = {}
    children: Dict[str, List[str]] = {}
    group_vars: Dict[str, Dict[str, Any]] = {}

    section, kind = "ungrouped", "hosts"
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(";"):
            continue
        where = f"{origin}:{lineno}"
        if line.startswith("[") and line.endswith("]"):
            name = line[1:-1].strip()
            section, _, suffix = name.partition(":")
            kind = suffix or "hosts"
            if kind not in ("hosts", "vars", "children"):
                raise ConfigError(f"{where}: unknown section type ':{kind}'")
            if kind == "hosts":
                groups.setdefault(section, [])
            continue

        if kind == "vars":
            # `key = value` with optional spaces around '='
            key, sep, value = line.partition("=")
            if not sep or not key.strip():
                raise ConfigError(f"{where}: expected key=value, got {line!r}")
            group_vars.setdefault(section, {})[key.strip()] = _scalar(value.strip())
            continue

        try:
            tokens = shlex.split(line, comments=True)
        except ValueError as e:
            raise ConfigError(f"{where}: {e}") from e
        if not tokens:
            continue

        if kind == "children":
            children.setdefault(section, []).append(tokens[0])
        else:
            name = tokens[0]
            hosts.setdefault(name, {}).update(_kv(tokens[1:], where))
            members = groups.setdefault(section, [])
            if name not in members:
                members.append(name)

    return {"hosts": hosts, "groups": groups, "children": children, "group_vars": group_vars}


def parse_yaml(text: str, origin: str = "<inventory>") -> Dict[str, Any]:
    """
    YAML inventory:

        hosts:
          - name: master
            address: 10.0.0.10
            groups: [k8s_master]      # or roles: [control-plane]
            vars: {ansible_user: ubuntu}
        group_vars:
          all: {ansible_ssh_private_key_file: ~/.ssh/id_ed25519}
    """
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict) or not isinstance(data.get("hosts"), list):
        raise ConfigError(f"{origin}: expected a top-level 'hosts' list")

    hosts: Dict[str, Dict[str, Any]] = {}
    groups: Dict[str, List[str]] = {}
    roles: Dict[str, List[str]] = {}
    for i, entry in enumerate(data["hosts"]):
        if not isinstance(entry, dict) or "name" not in entry:
            raise ConfigError(f"{origin}: hosts[{i}] needs a name")
        name = str(entry["name"])
        hvars = dict(entry.get("vars") or {})
        if entry.get("address"):
            hvars.setdefault("ansible_host", str(entry["address"]))
        hosts[name] = hvars
        for g in entry.get("groups") or []:
            groups.setdefault(str(g), []).append(name)
        roles[name] = [str(r) for r in entry.get("roles") or []]

    return {
        "hosts": hosts,
        "groups": groups,
        "children": {},
        "group_vars": dict(data.get("group_vars") or {}),
        "roles": roles,
    }


def _expand_groups(groups: Dict[str, List[str]], children: Dict[str, List[str]]) -> Dict[str, Set[str]]:
    """Resolve [group:children] so every group lists all of its hosts."""
    resolved: Dict[str, Set[str]] = {}

    def members(g: str, seen: Set[str]) -> Set[str]:
        if g in resolved:
            return resolved[g]
        if g in seen:
            raise ConfigError(f"inventory group '{g}' is its own child")
        seen = seen | {g}
        out = set(groups.get(g, []))
        for child in children.get(g, []):
            out |= members(child, seen)
        resolved[g] = out
        return out

    for g in set(groups) | set(children):
        members(g, set())
    return resolved


def build_inventory(
    parsed: Mapping[str, Any],
    role_groups: Optional[Mapping[str, Sequence[str]]] = None,
) -> Inventory:
    role_groups = role_groups or DEFAULT_ROLE_GROUPS
    expanded = _expand_groups(parsed["groups"], parsed["children"])
    group_vars: Dict[str, Dict[str, Any]] = parsed["group_vars"]
    explicit_roles: Dict[str, List[str]] = parsed.get("roles", {})

    hosts: List[Host] = []
    for name, hvars in parsed["hosts"].items():
        host_groups = {g for g, m in expanded.items() if name in m}
        roles = set(explicit_roles.get(name, []))
        for role, names in role_groups.items():
            if host_groups & set(names):
                roles.add(role)
        # a master listed in the node group as well stays a control-plane host
        if CONTROL_PLANE in roles and WORKER in roles and WORKER not in explicit_roles.get(name, []):
            roles.discard(WORKER)

        # all < groups (alphabetical) < host
        merged: Dict[str, Any] = dict(group_vars.get("all", {}))
        for g in sorted(host_groups):
            merged.update(group_vars.get(g, {}))
        merged.update(hvars)

        address = str(merged.get("ansible_host", name))
        if not roles:
            log.warning(f"inventory host {name} has no role; only role-less steps will run on it")
        hosts.append(
            Host(
                name=name,
                address=address,
                roles=frozenset(roles),
                groups=frozenset(host_groups),
                vars=merged,
            )
        )
    log.debug(f"inventory: {[(h.name, h.address, sorted(h.roles)) for h in hosts]}")
    return Inventory(hosts=hosts, group_vars=group_vars)


def load_inventory(path: str | Path, role_groups: Optional[Mapping[str, Sequence[str]]] = None) -> Inventory:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"inventory file not found: {path}")
    text = os.path.expandvars(path.read_text())
    if path.suffix in (".yml", ".yaml"):
        parsed = parse_yaml(text, str(path))
    else:
        parsed = parse_ini(text, str(path))
    inv = build_inventory(parsed, role_groups)
    if not inv.hosts:
        raise ConfigError(f"inventory {path} defines no hosts")
    return inv
