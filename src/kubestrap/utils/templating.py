# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/utils/templating.py

from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, Template

_env = Environment(
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


@lru_cache(maxsize=512)
def _compile(source: str) -> Template:
    return _env.from_string(source)


def render(source: str, context: Mapping[str, Any]) -> str:
    """
    Render a command or manifest template. Undefined variables raise
    jinja2.UndefinedError instead of rendering as empty strings.
    """
    if "{{" not in source and "{%" not in source:
        return source
    return _compile(source).render(**context)


def render_obj(obj: Any, context: Mapping[str, Any]) -> Any:
    """Render every string inside nested dicts/lists (chart values, manifests)."""
    if isinstance(obj, str):
        return render(obj, context)
    if isinstance(obj, dict):
        return {k: render_obj(v, context) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [render_obj(v, context) for v in obj]
    return obj
