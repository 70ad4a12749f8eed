import socket
import types

import paramiko
import pytest

import kubestrap.runners.ssh as ssh_mod
from kubestrap.inventory.models import Host
from kubestrap.runners.local import TIMEOUT_EXIT_CODE, LocalRunner
from kubestrap.runners.routing import RoutingRunner
from kubestrap.runners.ssh import SSHCommandError, SSHRunner, SSHTarget

# ----------------- Fakes for Paramiko -----------------

class _FakeChannel:
    def __init__(self, rc=0): self._rc = rc
    def recv_exit_status(self): return self._rc

class _Buf:
    def __init__(self, s=""): self._s = s
    def read(self): return self._s.encode()

class _FakeStdin:
    def __init__(self, log): self.log = log
    def write(self, data): self.log.append(("stdin", data))
    def flush(self): pass

class _FakeTransport:
    def __init__(self, client): self.client = client
    def is_active(self): return not (self.client.closed or self.client.dead)

class FakeSSHClient:
    instances = []
    responses = {}
    fail_connects = 0
    raise_on_exec = None

    def __init__(self):
        self.log = []
        self.closed = False
        self.dead = False
        FakeSSHClient.instances.append(self)
    def set_missing_host_key_policy(self, policy): pass
    def connect(self, **kw):
        self.log.append(("connect", kw))
        if FakeSSHClient.fail_connects:
            FakeSSHClient.fail_connects -= 1
            raise socket.error("connection refused")
    def get_transport(self):
        return _FakeTransport(self)
    def exec_command(self, cmd, timeout=None):
        self.log.append(("exec", cmd, timeout))
        if FakeSSHClient.raise_on_exec is not None:
            exc, FakeSSHClient.raise_on_exec = FakeSSHClient.raise_on_exec, None
            raise exc
        out, err, rc = FakeSSHClient.responses.get(cmd, ("", "", 0))
        stdout = _Buf(out)
        stdout.channel = _FakeChannel(rc)
        return _FakeStdin(self.log), stdout, _Buf(err)
    def close(self):
        self.closed = True


@pytest.fixture
def fake_ssh(monkeypatch):
    FakeSSHClient.instances = []
    FakeSSHClient.responses = {}
    FakeSSHClient.fail_connects = 0
    FakeSSHClient.raise_on_exec = None
    monkeypatch.setattr(ssh_mod.paramiko, "SSHClient", FakeSSHClient)
    monkeypatch.setattr("kubestrap.utils.retry.time.sleep", lambda s: None)
    return FakeSSHClient


def _host(**vars):
    return Host(name="node1", address="10.0.0.11", vars=vars)


# ----------------- Tests -----------------

def test_target_prefers_inventory_vars():
    t = SSHTarget.for_host(
        _host(ansible_host="192.168.1.5", ansible_user="ubuntu", ansible_port="2222", ansible_become_pass="pw"),
        user="root",
        key="/keys/default",
    )
    assert (t.address, t.username, t.port, t.pkey_path, t.become_password) == (
        "192.168.1.5", "ubuntu", 2222, "/keys/default", "pw"
    )


def test_wrap_quotes_and_escalates():
    r = SSHRunner()
    root = SSHTarget("h", "root")
    user = SSHTarget("h", "ubuntu")
    with_pw = SSHTarget("h", "ubuntu", become_password="pw")

    assert r.wrap("echo 'hi'", root, True) == "bash -lc 'echo '\"'\"'hi'\"'\"''"
    assert r.wrap("id", user, True) == "sudo -n bash -lc 'id'"
    assert r.wrap("id", user, False) == "bash -lc 'id'"
    assert r.wrap("id", with_pw, True) == "sudo -S -p '' bash -lc 'id'"


def test_execute_reuses_one_connection(fake_ssh):
    fake_ssh.responses["bash -lc 'hostname'"] = ("node1\n", "", 0)
    r = SSHRunner(user="root", default_timeout=30)
    host = _host()

    first = r.execute(host, "hostname")
    second = r.execute(host, "false-ish", timeout=5)

    assert first.exit_code == 0 and first.stdout == "node1\n"
    assert len(fake_ssh.instances) == 1
    client = fake_ssh.instances[0]
    connect = client.log[0][1]
    assert connect["hostname"] == "10.0.0.11"
    assert connect["username"] == "root"
    assert [e[2] for e in client.log if e[0] == "exec"] == [30, 5]
    assert second.exit_code == 0


def test_become_password_is_sent_on_stdin(fake_ssh):
    r = SSHRunner(user="ubuntu")
    r.execute(_host(ansible_become_password="pw"), "apt-get update")
    assert ("stdin", "pw\n") in fake_ssh.instances[0].log


def test_nonzero_exit_is_a_result_not_an_error(fake_ssh):
    fake_ssh.responses["bash -lc 'test -f /x'"] = ("", "missing", 1)
    res = SSHRunner().execute(_host(), "test -f /x")
    assert (res.exit_code, res.stderr) == (1, "missing")


def test_broken_connection_is_dropped_and_reopened(fake_ssh):
    r = SSHRunner()
    host = _host()
    r.execute(host, "uptime")
    fake_ssh.raise_on_exec = paramiko.SSHException("connection reset")

    with pytest.raises(SSHCommandError):
        r.execute(host, "reboot")

    assert fake_ssh.instances[0].closed
    r.execute(host, "uptime")
    assert len(fake_ssh.instances) == 2


def test_inactive_connection_is_closed_before_reconnect(fake_ssh):
    r = SSHRunner()
    host = _host()
    r.execute(host, "uptime")
    stale = fake_ssh.instances[0]
    stale.dead = True

    r.execute(host, "uptime")

    assert stale.closed
    assert len(fake_ssh.instances) == 2
    r.close()
    assert fake_ssh.instances[1].closed


def test_connect_is_retried(fake_ssh):
    fake_ssh.fail_connects = 2
    r = SSHRunner(connect_retries=3)
    assert r.execute(_host(), "true").exit_code == 0
    assert len(fake_ssh.instances) == 3


def test_connect_gives_up(fake_ssh):
    fake_ssh.fail_connects = 5
    with pytest.raises(SSHCommandError) as ei:
        SSHRunner(connect_retries=2).execute(_host(), "true")
    assert "cannot connect to root@10.0.0.11:22" in str(ei.value)


def test_close_closes_every_client(fake_ssh):
    r = SSHRunner()
    r.execute(Host(name="a", address="10.0.0.1"), "true")
    r.execute(Host(name="b", address="10.0.0.2"), "true")
    r.close()
    assert all(c.closed for c in fake_ssh.instances)


def test_routing_runner_picks_by_connection():
    local, remote = object(), object()
    r = RoutingRunner(local=local, remote=remote)
    assert r.pick(Host(name="m", address="10.0.0.10", vars={"ansible_connection": "local"})) is local
    assert r.pick(Host(name="m", address="127.0.0.1")) is local
    assert r.pick(Host(name="m", address="127.0.0.1", vars={"ansible_connection": "ssh"})) is remote
    assert r.pick(Host(name="w", address="10.0.0.11")) is remote


def test_local_runner_captures_output():
    res = LocalRunner(become=False).execute(_host(), "echo out; echo err >&2; exit 3")
    assert res.exit_code == 3
    assert res.stdout.strip() == "out"
    assert res.stderr.strip() == "err"


def test_local_runner_skips_login_profiles():
    runner = LocalRunner(become=False)
    assert runner._argv("id", False) == ["bash", "-c", "id"]
    res = runner.execute(_host(), "shopt -q login_shell && echo login || echo plain")
    assert res.stdout.strip() == "plain"


def test_local_runner_timeout():
    res = LocalRunner(become=False).execute(_host(), "sleep 5", timeout=0.2)
    assert res.exit_code == TIMEOUT_EXIT_CODE
    assert "timed out" in res.stderr
