# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import itertools

import pytest

from conftest import add_members, make_pod
from pgupgradecheck.verifier.cluster_api import ClusterRef, Transition
from pgupgradecheck.verifier.errors import (InconsistentStateError, TransitionMismatchError,
                                            WaitTimeoutError)
from pgupgradecheck.verifier.identity import IdentityTracker, classify_transition

NS = "rolling-upgrade"
CLUSTER = ClusterRef(NS, "cluster1")


@pytest.mark.parametrize("before, after, expected", [
    (set(), set(), Transition.Inconclusive),
    ({"a"}, set(), Transition.Inconclusive),
    (set(), {"a"}, Transition.Inconclusive),
    ({"a", "b", "c"}, {"a", "b", "c"}, Transition.InPlace),
    ({"a", "b", "c"}, {"d", "e", "f"}, Transition.Rolling),
    ({"a", "b", "c"}, {"a", "e", "f"}, Transition.Inconclusive),
    ({"a", "b", "c"}, {"d", "e"}, Transition.Inconclusive),
    ({"a", "b"}, {"a", "b", "c"}, Transition.Inconclusive),
])
def test_classify_transition(before, after, expected) -> None:
    assert classify_transition(before, after) == expected


def test_classify_transition_is_total() -> None:
    universe = ["a", "b", "c", "d"]
    subsets = [frozenset(c) for n in range(len(universe) + 1)
               for c in itertools.combinations(universe, n)]

    for before, after in itertools.product(subsets, subsets):
        t = classify_transition(before, after)
        if t == Transition.InPlace:
            assert before and before == after
        elif t == Transition.Rolling:
            assert before and not (before & after) and len(before) == len(after)
        else:
            assert t == Transition.Inconclusive
            assert (not before or not after
                    or (before != after and ((before & after) or len(before) != len(after))))


def test_capture_members_skips_job_pods(env, resources) -> None:
    add_members(resources, NS, "cluster1")
    resources.add("pod", make_pod(NS, "cluster1-1-initdb-x7k2", "job-uid", "cluster1",
                                  {"job-name": "cluster1-1-initdb"}))
    resources.add("pod", make_pod(NS, "cluster2-1", "other", "cluster2"))

    members = IdentityTracker(env).capture_members(CLUSTER)

    assert [m.name for m in members] == ["cluster1-1", "cluster1-2", "cluster1-3"]
    assert IdentityTracker(env).capture_identities(CLUSTER) == {"cluster1-1-a", "cluster1-2-a", "cluster1-3-a"}


def pods(generations):
    return [make_pod(NS, f"cluster1-{i}", f"cluster1-{i}-{g}", "cluster1")
            for i, g in enumerate(generations, 1)]


def test_await_transition_rolling(env, resources, clock) -> None:
    before = {"cluster1-1-a", "cluster1-2-a", "cluster1-3-a"}
    # pods get replaced one at a time
    resources.script_list("pod", NS, [pods("aaa"), pods("baa"), pods("bba"), pods("bbb")])

    evidence = IdentityTracker(env).await_transition(CLUSTER, before, Transition.Rolling,
                                                     timeout=300, poll_interval=5)

    assert evidence.classify() == Transition.Rolling
    assert evidence.after == {"cluster1-1-b", "cluster1-2-b", "cluster1-3-b"}
    assert clock.now() == 15


def test_await_transition_partial_change_is_inconsistent(env, resources) -> None:
    before = {"cluster1-1-a", "cluster1-2-a", "cluster1-3-a"}
    resources.script_list("pod", NS, [pods("aab")])

    with pytest.raises(InconsistentStateError) as e:
        IdentityTracker(env).await_transition(CLUSTER, before, Transition.Rolling, timeout=60)
    assert not isinstance(e.value, TransitionMismatchError)
    assert "cluster1-1-a" in str(e.value)


def test_await_transition_unchanged_is_a_mismatch(env, resources) -> None:
    before = set(add_members(resources, NS, "cluster1"))

    with pytest.raises(TransitionMismatchError) as e:
        IdentityTracker(env).await_transition(CLUSTER, before, Transition.Rolling, timeout=60)
    assert e.value.observed == Transition.InPlace
    assert e.value.expected == Transition.Rolling


def test_await_transition_never_observed(env, resources) -> None:
    from pgupgradecheck.verifier.errors import ApiUnavailableError

    resources.script_list("pod", NS, [ApiUnavailableError("connection refused")])

    with pytest.raises(WaitTimeoutError):
        IdentityTracker(env).await_transition(CLUSTER, {"cluster1-1-a"}, Transition.Rolling, timeout=30)


def test_require_transition_in_place(env, resources) -> None:
    tracker = IdentityTracker(env)
    before = frozenset(add_members(resources, NS, "cluster1"))

    evidence = tracker.require_transition(CLUSTER, before, tracker.capture_identities(CLUSTER),
                                          Transition.InPlace)
    assert evidence.preserved == before

    with pytest.raises(TransitionMismatchError):
        tracker.require_transition(CLUSTER, before, {"x", "y", "z"}, Transition.InPlace)


def test_capture_rollout_evidence(env, resources) -> None:
    def event(uid, reason, name="cluster1"):
        return {"metadata": {"namespace": NS, "name": f"event-{uid}", "uid": uid},
                "involvedObject": {"kind": "Cluster", "name": name},
                "reason": reason}

    tracker = IdentityTracker(env)
    resources.add("event", event("e1", "InstanceManagerUpgraded"))
    baseline = tracker.capture_rollout_evidence(CLUSTER)

    resources.add("event", event("e2", "InstanceManagerUpgraded"))
    resources.add("event", event("e3", "SwitchOver"))
    resources.add("event", event("e4", "InstanceManagerUpgraded", "cluster2"))

    evidence = tracker.capture_rollout_evidence(CLUSTER)
    assert evidence.count == 2
    assert evidence.since(baseline).event_uids == {"e2"}
