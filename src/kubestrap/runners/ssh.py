# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/runners/ssh.py

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

import paramiko

from kubestrap.utils.retry import RetryError, retry

from .interface import CommandResult

if TYPE_CHECKING:
    from kubestrap.inventory.models import Host

log = logging.getLogger("kubestrap")


class SSHCommandError(RuntimeError):
    pass


def shq(v: str) -> str:
    return "'" + v.replace("'", "'\"'\"'") + "'"


@dataclass(frozen=True)
class SSHTarget:
    address: str
    username: str
    port: int = 22
    pkey_path: Optional[str] = None
    password: Optional[str] = None
    become_password: Optional[str] = None

    @classmethod
    def for_host(cls, host: "Host", *, user: str = "root", port: int = 22, key: Optional[str] = None) -> "SSHTarget":
        v = host.vars
        return cls(
            address=str(v.get("ansible_host", host.address)),
            username=str(v.get("ansible_user", user)),
            port=int(v.get("ansible_port", port)),
            pkey_path=v.get("ansible_ssh_private_key_file", key),
            password=v.get("ansible_password") or v.get("ansible_ssh_pass"),
            become_password=v.get("ansible_become_password") or v.get("ansible_become_pass"),
        )


def _load_key(path: str) -> Optional[paramiko.PKey]:
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    raise SSHCommandError(f"Unsupported private key format for {path}")


class SSHRunner:
    """
    Executes commands over SSH. One connection per host, opened lazily and
    reused; a broken connection is dropped and reopened on the next command
    (which is what carries a run across a reboot step).
    """

    def __init__(
        self,
        *,
        user: str = "root",
        port: int = 22,
        key_path: Optional[str] = None,
        become: bool = True,
        connect_timeout: float = 20.0,
        connect_retries: int = 3,
        default_timeout: Optional[float] = 900,
    ):
        self.user = user
        self.port = port
        self.key_path = key_path
        self.become = become
        self.connect_timeout = connect_timeout
        self.connect_retries = connect_retries
        self.default_timeout = default_timeout
        self._clients: Dict[str, paramiko.SSHClient] = {}
        self._lock = threading.Lock()

    # ------------------ connection & utils ------------------

    def target(self, host: "Host") -> SSHTarget:
        return SSHTarget.for_host(host, user=self.user, port=self.port, key=self.key_path)

    def _open(self, target: SSHTarget) -> paramiko.SSHClient:
        @retry(retries=self.connect_retries, delay=2.0, backoff=2.0, retry_on=(OSError, paramiko.SSHException))
        def _connect() -> paramiko.SSHClient:
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            pkey = _load_key(target.pkey_path) if target.pkey_path else None
            client.connect(
                hostname=target.address,
                port=target.port,
                username=target.username,
                password=target.password if not pkey else None,
                pkey=pkey,
                timeout=self.connect_timeout,
                allow_agent=True,
                look_for_keys=True,
            )
            return client

        try:
            return _connect()
        except RetryError as e:
            raise SSHCommandError(f"cannot connect to {target.username}@{target.address}:{target.port}: {e.__cause__}") from e

    def _client(self, host: "Host") -> paramiko.SSHClient:
        with self._lock:
            client = self._clients.get(host.name)
        transport = client.get_transport() if client else None
        if client is not None and transport is not None and transport.is_active():
            return client
        if client is not None:
            self._drop(host)
        # only the host's own thread (or a fact probe for it) connects, so no race on the slot
        client = self._open(self.target(host))
        with self._lock:
            self._clients[host.name] = client
        return client

    def _drop(self, host: "Host") -> None:
        with self._lock:
            client = self._clients.pop(host.name, None)
        if client is not None:
            client.close()

    def wrap(self, command: str, target: SSHTarget, become: bool) -> str:
        if not become or target.username == "root":
            return f"bash -lc {shq(command)}"
        if target.become_password:
            return f"sudo -S -p '' bash -lc {shq(command)}"
        return f"sudo -n bash -lc {shq(command)}"

    def execute(
        self,
        host: "Host",
        command: str,
        *,
        timeout: Optional[float] = None,
        become: Optional[bool] = None,
    ) -> CommandResult:
        target = self.target(host)
        final_cmd = self.wrap(command, target, self.become if become is None else become)
        log.debug(f"[{host.name}] $ {command}")
        client = self._client(host)
        try:
            stdin, stdout, stderr = client.exec_command(final_cmd, timeout=timeout or self.default_timeout)
            if target.become_password and final_cmd.startswith("sudo -S"):
                stdin.write(target.become_password + "\n")
                stdin.flush()
            out = stdout.read().decode("utf-8", "replace")
            err = stderr.read().decode("utf-8", "replace")
            rc = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, socket.timeout, OSError, EOFError) as e:
            self._drop(host)
            raise SSHCommandError(f"[{host.name}] ssh command failed: {e}") from e
        log.debug(f"[{host.name}] exit {rc}")
        return CommandResult(rc, out, err)

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for c in clients:
            c.close()
