# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/config/models.py

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SSHSettings(BaseModel):
    user: str = "root"
    key: Optional[str] = None              # private key path; ansible_ssh_private_key_file wins per host
    port: int = 22
    connect_timeout: float = 20.0
    connect_retries: int = Field(3, ge=1)
    command_timeout: float = 900.0


class RunConfig(BaseModel):
    environment: Literal["dev", "staging", "prod"] = "dev"
    vars: Dict[str, Any] = Field(default_factory=dict)         # override catalog defaults
    addons: Dict[str, bool] = Field(default_factory=dict)      # force an add-on on/off
    role_groups: Optional[Dict[str, List[str]]] = None         # role -> inventory groups
    catalogs: List[str] = Field(default_factory=list)          # extra catalog files
    barrier_timeout_seconds: float = Field(1800.0, gt=0)
    max_parallel_hosts: int = Field(10, ge=1)
    become: bool = True
    log_dir: Optional[str] = None
    ssh: SSHSettings = SSHSettings()
