# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Tells a rolling restart (every instance pod replaced) apart from an in-place
# update (same pods, patched) by comparing pod UIDs before and after.

from logging import getLogger
from typing import AbstractSet, FrozenSet, Tuple

from . import consts
from .api import Environment
from .api_utils import dget_str, lookup
from .cluster_api import ClusterRef, MemberIdentity, RolloutEvidence, Transition, UpgradeEvidence
from .errors import InconsistentStateError, TransitionMismatchError, WaitTimeoutError
from .polling import await_condition

logger = getLogger("identity")


def classify_transition(before: AbstractSet[str], after: AbstractSet[str]) -> Transition:
    return UpgradeEvidence(frozenset(before), frozenset(after)).classify()


def _describe(evidence: UpgradeEvidence) -> str:
    return (f"before={sorted(evidence.before)} after={sorted(evidence.after)} "
            f"preserved={sorted(evidence.preserved)}")


class IdentityTracker:
    def __init__(self, env: Environment):
        self.env = env

    def capture_members(self, cluster: ClusterRef) -> Tuple[MemberIdentity, ...]:
        pods = self.env.resources.list("pod", cluster.namespace,
                                       label_selector=f"{consts.CLUSTER_LABEL}={cluster.name}")
        members = []
        for pod in pods:
            # initdb/join job pods carry the cluster label too
            if "job-name" in (lookup(pod, "metadata.labels") or {}):
                continue
            members.append(MemberIdentity(dget_str(pod, "metadata.name", str(cluster)),
                                          dget_str(pod, "metadata.uid", str(cluster))))
        return tuple(sorted(members, key=lambda m: m.name))

    def capture_identities(self, cluster: ClusterRef) -> FrozenSet[str]:
        return frozenset(m.uid for m in self.capture_members(cluster))

    def require_transition(self, cluster: ClusterRef, before: AbstractSet[str],
                           after: AbstractSet[str], expected: Transition) -> UpgradeEvidence:
        evidence = UpgradeEvidence(frozenset(before), frozenset(after))
        observed = evidence.classify()
        if observed == expected:
            return evidence

        if observed == Transition.Inconclusive:
            raise InconsistentStateError(
                f"partial identity change during upgrade, expected {expected.value}: {_describe(evidence)}",
                str(cluster))
        raise TransitionMismatchError(
            f"expected {expected.value} upgrade but observed {observed.value}: {_describe(evidence)}",
            str(cluster), observed=observed, expected=expected)

    def await_transition(self, cluster: ClusterRef, before: AbstractSet[str],
                         expected: Transition, timeout: float,
                         poll_interval: float = 5) -> UpgradeEvidence:
        """
        Poll the member identities until they classify as expected against
        before. A rolling restart passes through partial states, so only the
        classification seen when the bound expires is judged.
        """
        assert expected != Transition.Inconclusive
        before = frozenset(before)

        logger.info(f"Waiting for {expected.value} transition of {cluster} ({len(before)} members)")

        def capture() -> UpgradeEvidence:
            return UpgradeEvidence(before, self.capture_identities(cluster))

        last = [None]

        def check(evidence: UpgradeEvidence) -> bool:
            last[0] = evidence
            return evidence.classify() == expected

        try:
            evidence = await_condition(capture, check, timeout=timeout, clock=self.env.clock,
                                       poll_interval=poll_interval,
                                       what=f"{expected.value} transition", target=str(cluster))
        except WaitTimeoutError:
            if last[0] is not None:
                # raises the specific error for what was observed last
                self.require_transition(cluster, before, last[0].after, expected)
            raise

        logger.info(f"{cluster}: {expected.value} transition observed: {_describe(evidence)}")
        return evidence

    def capture_rollout_evidence(self, cluster: ClusterRef) -> RolloutEvidence:
        """
        Events recorded by the operator each time it swaps the instance
        manager of a member without restarting its pod.
        """
        events = self.env.resources.list(
            "event", cluster.namespace,
            field_selector=f"involvedObject.kind=Cluster,involvedObject.name={cluster.name}")
        uids = frozenset(e["metadata"]["uid"] for e in events
                         if e.get("reason") == consts.INSTANCE_MANAGER_UPGRADED_REASON)
        return RolloutEvidence(cluster, uids)
