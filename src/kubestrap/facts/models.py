# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Dict, Iterator, Optional


class MissingFactError(KeyError):
    """A predicate asked for a fact the probe could not determine."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"fact '{self.name}' is not known"


class FactSet(Mapping):
    """
    Read-only snapshot of host-local state.

    Indexing an absent fact raises MissingFactError so enablement predicates
    can tell "false" apart from "unknown".
    """

    def __init__(self, facts: Optional[Dict[str, Any]] = None):
        self._facts = MappingProxyType(dict(facts or {}))

    def __getitem__(self, name: str) -> Any:
        try:
            return self._facts[name]
        except KeyError:
            raise MissingFactError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def __repr__(self) -> str:
        return f"FactSet({dict(self._facts)!r})"

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._facts)
