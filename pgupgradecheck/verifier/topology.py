# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

from contextlib import contextmanager
from logging import getLogger
from typing import Iterable, List, Optional, Tuple

from . import consts, psql
from .api import Environment
from .api_utils import dget_int, lookup
from .cluster_api import ClusterRef, ClusterState, VerificationPhase
from .errors import InconsistentStateError, MemberVerificationError, VerificationError
from .identity import IdentityTracker
from .polling import await_condition
from .utils import random_string

logger = getLogger("topology")


class TopologyVerifier:
    def __init__(self, env: Environment):
        self.env = env
        self.identity = IdentityTracker(env)

    def get_cluster(self, cluster: ClusterRef) -> dict:
        return self.env.resources.get("cluster", cluster.namespace, cluster.name)

    def get_state(self, cluster: ClusterRef) -> ClusterState:
        obj = self.get_cluster(cluster)
        return ClusterState(ref=cluster,
                            members=self.identity.capture_members(cluster),
                            current_primary=lookup(obj, "status.currentPrimary"),
                            target_primary=lookup(obj, "status.targetPrimary"),
                            primary_timestamp=lookup(obj, "status.currentPrimaryTimestamp"))

    def capture_baseline(self, cluster: ClusterRef) -> ClusterState:
        state = self.get_state(cluster)
        if not state.quiesced:
            raise InconsistentStateError(
                f"cluster is not quiesced: currentPrimary={state.current_primary} "
                f"targetPrimary={state.target_primary}", str(cluster))
        logger.info(f"{cluster}: primary {state.current_primary} since {state.primary_timestamp}")
        return state

    def is_ready(self, cluster: ClusterRef) -> bool:
        obj = self.get_cluster(cluster)
        instances = dget_int(obj, "spec.instances", str(cluster))
        ready = lookup(obj, "status.readyInstances") or 0
        phase = lookup(obj, "status.phase")
        primary = lookup(obj, "status.currentPrimary")
        logger.debug(f"{cluster}: phase={phase} ready={ready}/{instances} primary={primary}")
        return (ready == instances and phase == consts.CLUSTER_HEALTHY_PHASE
                and primary is not None and primary == lookup(obj, "status.targetPrimary"))

    def await_cluster_ready(self, cluster: ClusterRef, timeout: float,
                            poll_interval: float = 5) -> None:
        logger.info(f"Waiting for cluster {cluster} to become ready")
        await_condition(lambda: self.is_ready(cluster), timeout=timeout, clock=self.env.clock,
                        poll_interval=poll_interval, what="cluster ready", target=str(cluster))

    def await_switchover(self, cluster: ClusterRef, baseline_primary: Optional[str],
                         baseline_timestamp: Optional[str], timeout: float,
                         poll_interval: float = 1) -> ClusterState:
        """
        Wait until the primary changes. A primary restarted under the same
        name still counts once its timestamp moved.
        """
        def changed(state: ClusterState) -> bool:
            logger.debug(f"Current Primary: {state.current_primary}, "
                         f"Current Primary timestamp: {state.primary_timestamp}")
            return (state.current_primary != baseline_primary
                    or state.primary_timestamp != baseline_timestamp)

        state = await_condition(lambda: self.get_state(cluster), changed,
                                timeout=timeout, clock=self.env.clock, poll_interval=poll_interval,
                                what=f"switchover away from {baseline_primary}", target=str(cluster))
        logger.info(f"{cluster}: switchover observed, primary is now {state.current_primary} "
                    f"since {state.primary_timestamp}")
        return state

    def verify_replication_flow(self, cluster: ClusterRef, members: Optional[Iterable[str]] = None,
                                timeout_per_member: float = 240, poll_interval: float = 2) -> str:
        """
        Create an empty marker table on the primary and wait for every standby
        to see it. Returns the marker table name.
        """
        state = self.get_state(cluster)
        primary = state.current_primary
        if not primary:
            raise InconsistentStateError("cluster has no current primary", str(cluster))

        marker = f"{consts.MARKER_TABLE_PREFIX}_{random_string(8)}"
        psql.execute(self.env, cluster, primary, consts.SQL_CREATE_MARKER.format(table=marker))
        logger.info(f"{cluster}: created marker table {marker} on {primary}")

        if members is None:
            members = state.member_names

        failures: List[Tuple[str, Exception]] = []
        for member in members:
            if member == primary:
                continue
            try:
                await_condition(lambda: psql.query(self.env, cluster, member,
                                                   consts.SQL_MARKER_EMPTY.format(table=marker)),
                                lambda out: out == "t",
                                timeout=timeout_per_member, clock=self.env.clock,
                                poll_interval=poll_interval,
                                what=f"standby {member} following primary {primary}",
                                target=f"{cluster.namespace}/{member}")
                logger.info(f"{cluster}: {member} streams from {primary}")
            except VerificationError as e:
                failures.append((member, e))

        if failures:
            raise MemberVerificationError("replication from the new primary", failures, str(cluster))
        return marker


class SwitchoverVerification:
    """
    One verification run:

        Baseline -> AwaitingSwitchover -> SwitchoverObserved
                 -> AwaitingReplicaConvergence -> Converged

    Any failure moves the run to Failed.
    """

    def __init__(self, verifier: TopologyVerifier, cluster: ClusterRef):
        self.verifier = verifier
        self.cluster = cluster
        self.phase = VerificationPhase.Baseline
        self.baseline: Optional[ClusterState] = None
        self.observed: Optional[ClusterState] = None

    @contextmanager
    def _transition(self, expected: VerificationPhase, during: VerificationPhase,
                    after: VerificationPhase):
        if self.phase != expected:
            raise InconsistentStateError(
                f"cannot move to {during.value} from {self.phase.value}", str(self.cluster))
        self.phase = during
        try:
            yield
        except BaseException:
            self.phase = VerificationPhase.Failed
            raise
        self.phase = after

    def capture_baseline(self) -> ClusterState:
        with self._transition(VerificationPhase.Baseline, VerificationPhase.Baseline,
                              VerificationPhase.Baseline):
            self.baseline = self.verifier.capture_baseline(self.cluster)
        return self.baseline

    def await_switchover(self, timeout: float) -> ClusterState:
        assert self.baseline, "baseline not captured"
        with self._transition(VerificationPhase.Baseline, VerificationPhase.AwaitingSwitchover,
                              VerificationPhase.SwitchoverObserved):
            self.observed = self.verifier.await_switchover(
                self.cluster, self.baseline.current_primary, self.baseline.primary_timestamp,
                timeout)
        return self.observed

    def await_convergence(self, timeout_per_member: float) -> None:
        with self._transition(VerificationPhase.SwitchoverObserved,
                              VerificationPhase.AwaitingReplicaConvergence,
                              VerificationPhase.Converged):
            self.verifier.verify_replication_flow(self.cluster,
                                                  timeout_per_member=timeout_per_member)
