# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import pytest

from pgupgradecheck.verifier.errors import (CommandError, ConflictError, InconsistentStateError,
                                            TransientError, WaitTimeoutError)
from pgupgradecheck.verifier.polling import await_condition, is_conflict, retry_with_backoff


def sequence(*values):
    values = list(values)

    def next_value():
        v = values.pop(0) if len(values) > 1 else values[0]
        if isinstance(v, Exception):
            raise v
        return v
    return next_value


def test_await_condition_returns_matching_value(clock) -> None:
    value = await_condition(sequence(1, 2, 3), lambda v: v == 3,
                            timeout=10, clock=clock, poll_interval=1)
    assert value == 3
    assert clock.sleeps == [1, 1]


def test_await_condition_retries_transient_errors(clock) -> None:
    value = await_condition(sequence(CommandError("exec failed"), ApiDown(), "t"),
                            lambda v: v == "t", timeout=10, clock=clock, poll_interval=1)
    assert value == "t"


class ApiDown(TransientError):
    def __init__(self):
        super().__init__("api unavailable")


def test_await_condition_propagates_other_errors(clock) -> None:
    with pytest.raises(InconsistentStateError):
        await_condition(sequence(1, InconsistentStateError("broken"), 3), lambda v: v == 3,
                        timeout=10, clock=clock, poll_interval=1)
    assert clock.now() == 1


def test_await_condition_timeout(clock) -> None:
    with pytest.raises(WaitTimeoutError) as e:
        await_condition(sequence("f"), lambda v: v == "t", timeout=5, clock=clock,
                        poll_interval=2, what="standby following", target="ns/pod-2")

    assert isinstance(e.value, TimeoutError)
    assert e.value.last_value == "f"
    assert e.value.what == "standby following"
    assert "ns/pod-2" in str(e.value)
    # the deadline is never overshot
    assert clock.now() == 5
    assert clock.sleeps == [2, 2, 1]


def test_await_condition_timeout_chains_last_transient_error(clock) -> None:
    error = CommandError("pod not found")
    with pytest.raises(WaitTimeoutError) as e:
        await_condition(sequence(error), timeout=3, clock=clock, poll_interval=1)
    assert e.value.__cause__ is error
    assert e.value.last_value is None


def test_await_condition_makes_at_least_one_attempt(clock) -> None:
    calls = []

    def predicate():
        calls.append(clock.now())
        return True

    assert await_condition(predicate, timeout=0.001, clock=clock)
    assert calls == [0]


def test_retry_with_backoff_success_after_conflicts(clock) -> None:
    value = retry_with_backoff(is_conflict, sequence(ConflictError("modified"), ConflictError("modified"), "ok"),
                               steps=4, initial_delay=0.01, factor=5.0, clock=clock)
    assert value == "ok"
    assert clock.sleeps == pytest.approx([0.01, 0.05])


def test_retry_with_backoff_fixed_delay_exhaustion(clock) -> None:
    with pytest.raises(ConflictError):
        retry_with_backoff(is_conflict, sequence(ConflictError("modified")),
                           steps=5, initial_delay=10, clock=clock)
    assert clock.sleeps == [10, 10, 10, 10]


def test_retry_with_backoff_non_retryable(clock) -> None:
    with pytest.raises(CommandError):
        retry_with_backoff(is_conflict, sequence(CommandError("failed"), "ok"),
                           steps=5, initial_delay=10, clock=clock)
    assert clock.sleeps == []
