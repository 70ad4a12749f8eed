import pytest

from kubestrap.engine.matchers import (
    DEFAULT_MATCHER,
    AllOf,
    AnyOf,
    ExitCode,
    StdoutContains,
    StdoutInt,
    StdoutMatches,
    StdoutNotContains,
)
from kubestrap.runners.interface import CommandResult


def test_default_is_exit_zero():
    assert DEFAULT_MATCHER.matches(CommandResult(0))
    assert not DEFAULT_MATCHER.matches(CommandResult(1))


def test_exit_code_set():
    m = ExitCode(frozenset({0, 2}))
    assert m.matches(CommandResult(2))
    assert not m.matches(CommandResult(1))
    assert m.describe() == "exit code in 0,2"


def test_stdout_contains_needs_zero_exit_by_default():
    m = StdoutContains("ok")
    assert m.matches(CommandResult(0, stdout="ok\n"))
    assert not m.matches(CommandResult(7, stdout="ok"))
    assert StdoutContains("ok", require_zero_exit=False).matches(CommandResult(7, stdout="ok"))


def test_stdout_not_contains():
    m = StdoutNotContains("NotReady")
    assert m.matches(CommandResult(0, stdout="node1 Ready"))
    assert not m.matches(CommandResult(0, stdout="node2 NotReady"))


def test_stdout_regex_is_multiline():
    m = StdoutMatches(r"^calico-node\s+\d+/\d+\s+Running")
    out = "NAME READY STATUS\ncalico-node   1/1   Running\n"
    assert m.matches(CommandResult(0, stdout=out))


@pytest.mark.parametrize("stdout, op, value, expected", [
    ("3\n", ">=", 3, True),
    ("2", ">=", 3, False),
    ("0", "==", 0, True),
    ("", "==", 0, False),
    ("many", ">", 1, False),
])
def test_stdout_int(stdout, op, value, expected):
    assert StdoutInt(op, value).matches(CommandResult(0, stdout=stdout)) is expected


def test_stdout_int_rejects_unknown_operator():
    with pytest.raises(ValueError):
        StdoutInt("~=", 1)


def test_combinators():
    r = CommandResult(0, stdout="pods: 4 Running")
    both = AllOf((StdoutContains("Running"), StdoutNotContains("Pending")))
    either = AnyOf((StdoutContains("CrashLoop"), StdoutContains("Running")))
    assert both.matches(r)
    assert either.matches(r)
    assert "and" in both.describe()
    assert "or" in either.describe()
