import threading
from typing import Callable, List, Optional, Tuple, Union

import pytest

from kubestrap.inventory.models import CONTROL_PLANE, WORKER, Host
from kubestrap.runners.interface import CommandResult

Response = Union[CommandResult, Exception, Callable[[str], CommandResult]]


class FakeRunner:
    """
    Scripted CommandRunner.

    runner.on("kubeadm init", CommandResult(1), CommandResult(0)) answers the
    first matching command with each response in turn, repeating the last one.
    Unmatched commands get `default`. Every call is recorded.
    """

    def __init__(self, default: CommandResult = CommandResult(0)):
        self.default = default
        self.calls: List[Tuple[str, str, Optional[bool]]] = []
        self._rules: List[Tuple[Optional[str], str, List[Response]]] = []
        self._lock = threading.Lock()
        self.closed = False

    def on(self, needle: str, *responses: Response, host: Optional[str] = None) -> "FakeRunner":
        self._rules.append((host, needle, list(responses)))
        return self

    def execute(self, host, command, *, timeout=None, become=None) -> CommandResult:
        with self._lock:
            self.calls.append((host.name, command, become))
            response: Response = self.default
            for rule_host, needle, responses in self._rules:
                if needle in command and (rule_host is None or rule_host == host.name):
                    response = responses.pop(0) if len(responses) > 1 else responses[0]
                    break
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(command)
        return response

    def commands(self, host: Optional[str] = None) -> List[str]:
        with self._lock:
            return [c for h, c, _ in self.calls if host is None or h == host]

    def close(self) -> None:
        self.closed = True


class Capture:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, ev):
        with self._lock:
            self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def capture() -> Capture:
    return Capture()


@pytest.fixture
def master() -> Host:
    return Host(name="master", address="10.0.0.10", roles=frozenset({CONTROL_PLANE}), groups=frozenset({"k8s_master"}))


@pytest.fixture
def worker() -> Host:
    return Host(name="worker1", address="10.0.0.11", roles=frozenset({WORKER}), groups=frozenset({"k8s_nodes"}))


@pytest.fixture
def no_sleep() -> List[float]:
    """List that records requested sleeps; pass `no_sleep.append` as the sleep hook."""
    return []
