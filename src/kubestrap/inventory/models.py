# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/inventory/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from kubestrap.facts.models import FactSet

CONTROL_PLANE = "control-plane"
WORKER = "worker"


@dataclass(eq=False)
class Host:
    """
    A machine the engine provisions.
    Only `facts` changes during a run, and only from the host's own thread.
    """
    name: str
    address: str
    roles: FrozenSet[str] = frozenset()
    groups: FrozenSet[str] = frozenset()
    vars: Dict[str, Any] = field(default_factory=dict)
    facts: FactSet = field(default_factory=FactSet)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def template_view(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "roles": sorted(self.roles),
            "groups": sorted(self.groups),
        }


@dataclass
class Inventory:
    hosts: List[Host] = field(default_factory=list)
    group_vars: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def list_hosts(self) -> List[Host]:
        return list(self.hosts)

    def get(self, name: str) -> Optional[Host]:
        for h in self.hosts:
            if h.name == name:
                return h
        return None

    def limit(self, pattern: Optional[str]) -> "Inventory":
        """
        Ansible-style --limit: comma separated host names, group names or roles.
        """
        if not pattern:
            return self
        wanted = {p.strip() for p in pattern.split(",") if p.strip()}
        picked = [
            h for h in self.hosts
            if h.name in wanted or h.address in wanted or (h.groups | h.roles) & wanted
        ]
        return Inventory(hosts=picked, group_vars=self.group_vars)
