# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

from concurrent.futures import ThreadPoolExecutor
from logging import getLogger
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import copy
import re

from . import consts, psql
from .api import Environment
from .cluster_api import ClusterRef, ConfigSnapshot
from .errors import MemberVerificationError, PartialPropagationError, VerificationError
from .polling import await_condition
from .topology import SwitchoverVerification, TopologyVerifier

logger = getLogger("configuration")

# a number optionally followed by a unit, e.g. "128MB", "16", "0.9"
_NUMERIC_SETTING = re.compile(r"^([-+]?\d+(?:\.\d+)?)\s*[A-Za-z]*$")


def normalize_setting(value: Any) -> Any:
    """
    Reduce a setting as printed by SHOW (or as written in a manifest) to a
    comparable value: numbers lose their unit suffix ("128MB" -> 128),
    anything else is compared as a stripped string.
    """
    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, (int, float)):
        return value
    s = str(value).strip()
    m = _NUMERIC_SETTING.match(s)
    if m:
        number = m.group(1)
        return float(number) if "." in number else int(number)
    return s


class ConfigurationVerifier:
    def __init__(self, env: Environment, max_workers: Optional[int] = None):
        self.env = env
        self.max_workers = max_workers

    def read_snapshot(self, cluster: ClusterRef, member: str, keys: Iterable[str]) -> ConfigSnapshot:
        values = {}
        for key in keys:
            out = psql.query(self.env, cluster, member,
                             consts.SQL_SHOW_SETTING.format(key=key), database=None)
            values[key] = normalize_setting(out)
        return ConfigSnapshot(member, values)

    def await_member(self, cluster: ClusterRef, member: str, expected: Dict[str, Any],
                     timeout: float, poll_interval: float) -> ConfigSnapshot:
        return await_condition(lambda: self.read_snapshot(cluster, member, expected.keys()),
                               lambda snapshot: not snapshot.mismatches(expected),
                               timeout=timeout, clock=self.env.clock, poll_interval=poll_interval,
                               what=f"configuration {expected} applied",
                               target=f"{cluster.namespace}/{member}")

    def verify_config_applied(self, cluster: ClusterRef, members: Iterable[str],
                              expected: Mapping[str, Any], per_member_timeout: float = 300,
                              poll_interval: float = 2) -> Dict[str, ConfigSnapshot]:
        """
        Wait on every member, independently and concurrently, until the live
        values of all expected settings match. Failures are reported together
        once every member finished.
        """
        members = list(members)
        expected = {k: normalize_setting(v) for k, v in expected.items()}
        logger.info(f"{cluster}: checking {expected} on {members}")

        with ThreadPoolExecutor(max_workers=self.max_workers or max(len(members), 1)) as pool:
            futures = {member: pool.submit(self.await_member, cluster, member, expected,
                                           per_member_timeout, poll_interval)
                       for member in members}

        snapshots: Dict[str, ConfigSnapshot] = {}
        failures: List[Tuple[str, Exception]] = []
        for member, future in futures.items():
            try:
                snapshots[member] = future.result()
            except VerificationError as e:
                failures.append((member, e))

        if failures:
            what = "configuration propagation"
            if snapshots:
                raise PartialPropagationError(what, failures, sorted(snapshots), str(cluster))
            raise MemberVerificationError(what, failures, str(cluster))

        logger.info(f"{cluster}: configuration applied on all {len(members)} members")
        return snapshots

    def apply_configuration(self, cluster: ClusterRef, parameters: Mapping[str, Any],
                            timeout: float = 60) -> dict:
        """
        Merge parameters into spec.postgresql.parameters of the cluster. The
        admission webhook may take a while to serve again after an operator
        upgrade, so failures are retried up to timeout.
        """
        def update() -> dict:
            obj = copy.deepcopy(self.env.resources.get("cluster", cluster.namespace, cluster.name))
            pg = obj.setdefault("spec", {}).setdefault("postgresql", {})
            params = pg.setdefault("parameters", {})
            params.update({k: str(v) for k, v in parameters.items()})
            return self.env.resources.update("cluster", obj)

        logger.info(f"{cluster}: updating parameters {dict(parameters)}")
        return await_condition(update, lambda _: True, timeout=timeout, clock=self.env.clock,
                               what="configuration update accepted", target=str(cluster))


class ConfigurationUpgradeCheck:
    """
    Change the configuration of a running cluster and check that every member
    picked it up, that the change caused a switchover and that the standbys
    follow the new primary.
    """

    def __init__(self, env: Environment, *, apply_timeout: float = 60,
                 propagation_timeout: float = 300, switchover_timeout: float = 300,
                 replication_timeout: float = 240, max_workers: Optional[int] = None):
        self.env = env
        self.topology = TopologyVerifier(env)
        self.configuration = ConfigurationVerifier(env, max_workers)
        self.apply_timeout = apply_timeout
        self.propagation_timeout = propagation_timeout
        self.switchover_timeout = switchover_timeout
        self.replication_timeout = replication_timeout

    def run(self, cluster: ClusterRef, parameters: Mapping[str, Any]) -> SwitchoverVerification:
        run = SwitchoverVerification(self.topology, cluster)
        baseline = run.capture_baseline()

        self.configuration.apply_configuration(cluster, parameters, self.apply_timeout)
        self.configuration.verify_config_applied(cluster, baseline.member_names, parameters,
                                                 self.propagation_timeout)

        run.await_switchover(self.switchover_timeout)
        run.await_convergence(self.replication_timeout)
        return run
