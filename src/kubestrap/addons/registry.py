# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/addons/registry.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from kubestrap.engine.steps import Step
from kubestrap.facts.models import FactSet, MissingFactError

log = logging.getLogger("kubestrap")

EnablementPredicate = Callable[[FactSet, Mapping[str, Any]], bool]


def always(facts: FactSet, host_vars: Mapping[str, Any]) -> bool:
    return True


@dataclass(frozen=True)
class AddOn:
    name: str
    steps: Tuple[Step, ...]
    enabled_when: EnablementPredicate = always
    description: str = ""

    def __post_init__(self) -> None:
        # every step knows which add-on contributed it and is selectable by its name
        tagged = tuple(
            replace(s, addon=self.name, tags=s.tags | {self.name}) for s in self.steps
        )
        object.__setattr__(self, "steps", tagged)


@dataclass(frozen=True)
class Resolution:
    addon: str
    enabled: bool
    reason: str


@dataclass
class AddOnRegistry:
    """
    Optional step subgraphs keyed by add-on name.

    `overrides` comes from the run config and forces an add-on on or off
    before its predicate is consulted.
    """
    overrides: Dict[str, bool] = field(default_factory=dict)
    _addons: Dict[str, AddOn] = field(default_factory=dict)

    def register(self, addon: AddOn) -> None:
        if addon.name in self._addons:
            raise ValueError(f"AddOn '{addon.name}' already registered")
        self._addons[addon.name] = addon

    def override(self, addon: AddOn) -> None:
        self._addons[addon.name] = addon

    def get(self, name: str) -> AddOn:
        return self._addons[name]

    def names(self) -> List[str]:
        return list(self._addons)

    def __iter__(self):
        return iter(self._addons.values())

    def __len__(self) -> int:
        return len(self._addons)

    def all_steps(self) -> List[Step]:
        return [s for a in self._addons.values() for s in a.steps]

    def evaluate(self, facts: FactSet, host_vars: Mapping[str, Any]) -> List[Resolution]:
        out: List[Resolution] = []
        for addon in self._addons.values():
            if addon.name in self.overrides:
                forced = bool(self.overrides[addon.name])
                out.append(Resolution(addon.name, forced, "forced by config"))
                continue
            try:
                enabled = bool(addon.enabled_when(facts, host_vars))
                out.append(Resolution(addon.name, enabled, "predicate"))
            except MissingFactError as e:
                log.info(f"add-on {addon.name} disabled: {e}")
                out.append(Resolution(addon.name, False, str(e)))
        return out

    def enabled(self, facts: FactSet, host_vars: Mapping[str, Any]) -> Set[str]:
        return {r.addon for r in self.evaluate(facts, host_vars) if r.enabled}

    def resolve(self, facts: FactSet, host_vars: Mapping[str, Any]) -> List[Step]:
        """Steps contributed by every add-on enabled for these facts and vars."""
        names = self.enabled(facts, host_vars)
        return [s for a in self._addons.values() if a.name in names for s in a.steps]

    @classmethod
    def from_addons(cls, addons: Iterable[AddOn], overrides: Optional[Dict[str, bool]] = None) -> "AddOnRegistry":
        reg = cls(overrides=dict(overrides or {}))
        for a in addons:
            reg.register(a)
        return reg
