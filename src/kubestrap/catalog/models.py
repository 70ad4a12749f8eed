# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/catalog/models.py

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kubestrap.engine.steps import FailurePolicy


class _Spec(BaseModel):
    # a misspelled key in a catalog is an error, not a silent default
    model_config = ConfigDict(extra="forbid")


class RetrySpec(_Spec):
    max_attempts: int = Field(1, ge=1)
    delay_seconds: float = Field(0.0, ge=0)
    backoff_factor: float = Field(1.0, gt=0)


class IntCompare(_Spec):
    op: Literal["==", "!=", ">", ">=", "<", "<="] = "=="
    value: int


class SuccessSpec(_Spec):
    # every criterion given must hold; none given means "exit code 0"
    exit_codes: Optional[List[int]] = None
    stdout_contains: Optional[str] = None
    stdout_not_contains: Optional[str] = None
    stdout_regex: Optional[str] = None
    stdout_int: Optional[IntCompare] = None


class WaitForSpec(_Spec):
    step: str
    host: Optional[str] = None
    role: Optional[str] = None
    optional: bool = False

    @model_validator(mode="after")
    def _one_target(self):
        if (self.host is None) == (self.role is None):
            raise ValueError(f"wait_for '{self.step}' needs exactly one of host or role")
        return self


class ApplySpec(_Spec):
    source: Optional[str] = None      # path or URL, passed to kubectl -f
    manifest: Optional[str] = None    # inline YAML
    namespace: Optional[str] = None
    server_side: bool = False

    @model_validator(mode="after")
    def _one_source(self):
        if (self.source is None) == (self.manifest is None):
            raise ValueError("apply needs exactly one of source or manifest")
        return self


class HelmRepoSpec(_Spec):
    name: str
    url: str


class HelmSpec(_Spec):
    release: str
    chart: str                        # repo/chart, local directory or oci:// uri
    namespace: str
    version: Optional[str] = None
    repo: Optional[HelmRepoSpec] = None
    values: Dict[str, Any] = Field(default_factory=dict)
    values_files: List[str] = Field(default_factory=list)
    set: Dict[str, Any] = Field(default_factory=dict)
    create_namespace: bool = True
    atomic: bool = False
    wait: bool = False
    timeout_seconds: int = 600


class StepSpec(_Spec):
    name: str
    description: str = ""
    roles: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    after: List[str] = Field(default_factory=list)
    wait_for: List[WaitForSpec] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    # satisfaction check: a read-only command, or a fact that must be true
    check: Optional[str] = None
    check_fact: Optional[str] = None

    # exactly one action
    run: Optional[str] = None
    apply: Optional[ApplySpec] = None
    helm: Optional[HelmSpec] = None

    become: Optional[bool] = None
    success: Optional[SuccessSpec] = None
    retry: RetrySpec = RetrySpec()
    timeout_seconds: Optional[float] = Field(None, gt=0)
    failure_policy: FailurePolicy = FailurePolicy.FATAL
    invalidates_facts: bool = False

    @model_validator(mode="after")
    def _one_action(self):
        given = [k for k in ("run", "apply", "helm") if getattr(self, k) is not None]
        if len(given) != 1:
            raise ValueError(f"step '{self.name}' needs exactly one of run, apply or helm (got {given or 'none'})")
        return self


class FactSpec(_Spec):
    name: str
    command: str
    parse: str = "rc_zero"


class AddOnSpec(_Spec):
    name: str
    description: str = ""
    # predicate tree, see catalog.predicates; omitted means always enabled
    enabled_when: Optional[Dict[str, Any]] = None
    steps: List[StepSpec] = Field(default_factory=list)


class CatalogSpec(_Spec):
    vars: Dict[str, Any] = Field(default_factory=dict)
    facts: List[FactSpec] = Field(default_factory=list)
    steps: List[StepSpec] = Field(default_factory=list)
    addons: List[AddOnSpec] = Field(default_factory=list)
