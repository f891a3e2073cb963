# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# End-to-end upgrade scenario: stand up a cluster with backups, upgrade the
# operator underneath it and check that nothing the cluster promised was lost.
# This is the only place that changes the cluster; the verifiers only read.

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import consts, psql
from .api import Environment, apply_resource
from .api_utils import dget_dict, lookup
from .backup.cadence import BackupCadenceMonitor
from .backup.lifecycle import BackupLifecycleVerifier
from .cluster_api import ClusterRef, RolloutEvidence, UpgradeEvidence, UpgradeMode
from .configuration import ConfigurationUpgradeCheck
from .errors import InconsistentStateError, RolloutIncompleteError, ScenarioError
from .identity import IdentityTracker
from .manifests import fixture_path, load_manifest, load_single, short_kind, with_namespace
from .operator import has_condition
from .polling import await_condition, retry_with_backoff
from .topology import TopologyVerifier

logger = getLogger("scenario")


@dataclass
class ScenarioFixtures:
    secrets: List[dict]
    storage_credentials: List[dict]
    object_store: List[dict]
    object_store_client: dict
    cluster: dict
    cluster2: dict
    config_update: Dict[str, str]
    config_update2: Dict[str, str]
    backup: dict
    scheduled_backup: dict
    restore: dict

    @classmethod
    def from_dir(cls, path: str) -> "ScenarioFixtures":
        def params(name):
            # configuration updates are cluster manifests, only the
            # parameters matter
            doc = load_single(fixture_path(path, name), "cluster")
            return dget_dict(doc, "spec.postgresql.parameters", name)

        object_store = []
        for name in ("minio-pvc.yaml", "minio-deployment.yaml", "minio-service.yaml"):
            object_store += load_manifest(fixture_path(path, name))

        return cls(secrets=load_manifest(fixture_path(path, "pgsecrets.yaml")),
                   storage_credentials=load_manifest(fixture_path(path, "minio-secret.yaml")),
                   object_store=object_store,
                   object_store_client=load_single(fixture_path(path, "minio-client.yaml"), "pod"),
                   cluster=load_single(fixture_path(path, "cluster1.yaml"), "cluster"),
                   cluster2=load_single(fixture_path(path, "cluster2.yaml"), "cluster"),
                   config_update=params("conf-update.yaml"),
                   config_update2=params("conf-update2.yaml"),
                   backup=load_single(fixture_path(path, "backup1.yaml"), "backup"),
                   scheduled_backup=load_single(fixture_path(path, "scheduled-backup.yaml"),
                                                "scheduledbackup"),
                   restore=load_single(fixture_path(path, "cluster-restore.yaml"), "cluster"))


@dataclass
class ScenarioSettings:
    namespace: str
    namespace_timeout: float = 20
    cluster_create_timeout: float = 120
    cluster_ready_timeout: float = 600
    object_store_ready_timeout: float = 300
    object_store_client_timeout: float = 180
    wal_archive_timeout: float = 30
    backup_timeout: float = 200
    artifact_timeout: float = 30
    schedule_window: float = 120
    transition_timeout: float = 300
    post_upgrade_ready_timeout: float = 300
    restore_ready_timeout: float = 800
    restore_replication_timeout: float = 180
    rollout_check_steps: int = 5
    rollout_check_delay: float = 10
    config_apply_timeout: float = 60
    config_propagation_timeout: float = 300
    switchover_timeout: float = 300
    replication_timeout: float = 240
    expected_restored_rows: str = "2"
    expected_restored_standbys: str = "2"
    max_workers: Optional[int] = None


@dataclass
class ScenarioReport:
    namespace: str
    mode: UpgradeMode
    steps: List[str] = field(default_factory=list)
    transition: Optional[UpgradeEvidence] = None
    rollout: Optional[RolloutEvidence] = None
    walfile: Optional[str] = None
    base_backups: int = 0
    switchovers: List[Tuple[str, str]] = field(default_factory=list)
    elapsed: float = 0

    def summary(self) -> str:
        lines = [f"{self.namespace}: {self.mode.value} upgrade verified in {self.elapsed:.0f}s"]
        if self.transition:
            lines.append(f"    identities: {self.transition.classify().value} "
                         f"({len(self.transition.before)} members)")
        if self.rollout:
            lines.append(f"    instance manager upgrades: {self.rollout.count}")
        for cluster, primary in self.switchovers:
            lines.append(f"    {cluster}: switched over to {primary}")
        lines.append(f"    base backups stored: {self.base_backups}")
        return "\n".join(lines)


class UpgradeScenario:
    def __init__(self, env: Environment, fixtures: ScenarioFixtures, settings: ScenarioSettings,
                 upgrade_action: Callable[[], None], mode: UpgradeMode):
        self.env = env
        self.fixtures = fixtures
        self.settings = settings
        self.upgrade_action = upgrade_action
        self.mode = mode

        self.namespace = settings.namespace
        self.topology = TopologyVerifier(env)
        self.identity = IdentityTracker(env)
        self.monitor = BackupCadenceMonitor(env, self.namespace,
                                            lookup(fixtures.object_store_client, "metadata.name"))
        self.backups = BackupLifecycleVerifier(env, self.monitor)
        self.config_check = ConfigurationUpgradeCheck(
            env, apply_timeout=settings.config_apply_timeout,
            propagation_timeout=settings.config_propagation_timeout,
            switchover_timeout=settings.switchover_timeout,
            replication_timeout=settings.replication_timeout,
            max_workers=settings.max_workers)

        self.report = ScenarioReport(self.namespace, mode)

    @property
    def name(self) -> str:
        return self.namespace

    def ref(self, doc: dict) -> ClusterRef:
        return ClusterRef(self.namespace, doc["metadata"]["name"])

    @contextmanager
    def step(self, description: str):
        logger.info(f"[{self.namespace}] {description}")
        try:
            yield
        except Exception as e:
            logger.error(f"[{self.namespace}] {description} failed: {e}")
            raise
        self.report.steps.append(description)

    def apply(self, doc: dict, timeout: Optional[float] = None) -> dict:
        doc = with_namespace(doc, self.namespace)
        if timeout is None:
            return apply_resource(self.env, short_kind(doc), doc)
        # admission webhooks of a freshly (re)started operator may still be
        # unreachable
        return await_condition(lambda: apply_resource(self.env, short_kind(doc), doc),
                               lambda _: True, timeout=timeout, clock=self.env.clock,
                               what=f"{doc['kind']} {doc['metadata']['name']} created",
                               target=self.namespace)

    def create_namespace(self) -> None:
        apply_resource(self.env, "namespace", {"apiVersion": "v1", "kind": "Namespace",
                                               "metadata": {"name": self.namespace}})
        await_condition(lambda: self.env.resources.get("namespace", None, self.namespace),
                        lambda ns: lookup(ns, "status.phase") in (None, "Active"),
                        timeout=self.settings.namespace_timeout, clock=self.env.clock,
                        what="namespace active", target=self.namespace)

    def deploy_object_store(self) -> None:
        for doc in self.fixtures.object_store:
            self.apply(doc)

        name = consts.OBJECT_STORE_DEPLOYMENT
        await_condition(lambda: self.env.resources.get("deployment", self.namespace, name),
                        lambda dep: lookup(dep, "status.readyReplicas") == 1,
                        timeout=self.settings.object_store_ready_timeout, clock=self.env.clock,
                        what="object store ready", target=f"{self.namespace}/{name}")

        client = self.apply(self.fixtures.object_store_client)
        client_name = client["metadata"]["name"]
        await_condition(lambda: self.env.resources.get("pod", self.namespace, client_name),
                        lambda pod: has_condition(pod, "Ready"),
                        timeout=self.settings.object_store_client_timeout, clock=self.env.clock,
                        what="object store client ready", target=f"{self.namespace}/{client_name}")

    def assert_manager_rollout(self, cluster: ClusterRef, baseline: RolloutEvidence,
                               expected: int) -> RolloutEvidence:
        """
        Every member reports exactly one instance manager upgrade. Events may
        arrive late, so a short count is retried a few times.
        """
        window = self.settings.rollout_check_steps * self.settings.rollout_check_delay

        def check() -> RolloutEvidence:
            evidence = self.identity.capture_rollout_evidence(cluster).since(baseline)
            if evidence.count > expected:
                raise InconsistentStateError(
                    f"{evidence.count} instance manager upgrades for {expected} members", str(cluster))
            if evidence.count < expected:
                raise RolloutIncompleteError(str(cluster), evidence.count, expected, window)
            return evidence

        return retry_with_backoff(lambda e: isinstance(e, RolloutIncompleteError), check,
                                  steps=self.settings.rollout_check_steps,
                                  initial_delay=self.settings.rollout_check_delay,
                                  clock=self.env.clock, what="instance manager rollout")

    def verify_upgrade_transition(self, cluster: ClusterRef, before, rollout_baseline) -> None:
        expected = self.mode.expected_transition
        if self.mode == UpgradeMode.Rolling:
            self.report.transition = self.identity.await_transition(
                cluster, before, expected, self.settings.transition_timeout)
        else:
            self.report.rollout = self.assert_manager_rollout(cluster, rollout_baseline, len(before))
            self.report.transition = self.identity.require_transition(
                cluster, before, self.identity.capture_identities(cluster), expected)

    def upgrade_configuration(self, cluster: ClusterRef, parameters: Dict[str, str]) -> None:
        run = self.config_check.run(cluster, parameters)
        self.report.switchovers.append((str(cluster), run.observed.current_primary))

    def run(self) -> ScenarioReport:
        start = self.env.clock.now()
        s = self.settings
        cluster = self.ref(self.fixtures.cluster)

        with self.step("creating the namespace"):
            self.create_namespace()

        with self.step("creating the cluster secrets"):
            for doc in self.fixtures.secrets + self.fixtures.storage_credentials:
                self.apply(doc)

        with self.step(f"creating cluster {cluster.name}"):
            self.apply(self.fixtures.cluster, s.cluster_create_timeout)

        with self.step("deploying the object store"):
            self.deploy_object_store()

        with self.step(f"waiting for cluster {cluster.name} to be ready"):
            self.topology.await_cluster_ready(cluster, s.cluster_ready_timeout)

        with self.step("creating the data to restore"):
            primary = self.topology.capture_baseline(cluster).current_primary
            psql.execute(self.env, cluster, primary,
                         consts.SQL_CREATE_RESTORE_DATA.format(table=consts.RESTORE_TABLE))

        with self.step("checking that WAL files are archived"):
            self.report.walfile = self.backups.verify_wal_archived(cluster, primary,
                                                                   s.wal_archive_timeout)

        with self.step("taking a backup"):
            self.apply(self.fixtures.backup)
            self.backups.await_backup_phase(self.ref(self.fixtures.backup), timeout=s.backup_timeout)
            self.report.base_backups = self.backups.verify_artifact_present(1, s.artifact_timeout)

        with self.step("scheduling backups"):
            self.apply(self.fixtures.scheduled_backup)
            self.report.base_backups = self.monitor.await_increase(self.report.base_backups,
                                                                   s.schedule_window)

        with self.step("upgrading the operator"):
            before = self.identity.capture_identities(cluster)
            rollout_baseline = self.identity.capture_rollout_evidence(cluster)
            self.upgrade_action()

        with self.step(f"checking the {self.mode.value} upgrade of the instances"):
            self.verify_upgrade_transition(cluster, before, rollout_baseline)

        with self.step(f"waiting for cluster {cluster.name} to be ready after the upgrade"):
            self.topology.await_cluster_ready(cluster, s.post_upgrade_ready_timeout)

        with self.step(f"updating the configuration of {cluster.name}"):
            self.upgrade_configuration(cluster, self.fixtures.config_update)

        cluster2 = self.ref(self.fixtures.cluster2)
        with self.step(f"creating cluster {cluster2.name} with the upgraded operator"):
            self.apply(self.fixtures.cluster2, s.cluster_create_timeout)
            self.topology.await_cluster_ready(cluster2, s.cluster_ready_timeout)

        with self.step(f"updating the configuration of {cluster2.name}"):
            self.upgrade_configuration(cluster2, self.fixtures.config_update2)

        restored = self.ref(self.fixtures.restore)
        with self.step(f"restoring {restored.name} from the backup"):
            self.apply(self.fixtures.restore, s.cluster_create_timeout)
            self.backups.verify_restore(restored, expected_rows=s.expected_restored_rows,
                                        expected_standbys=s.expected_restored_standbys,
                                        ready_timeout=s.restore_ready_timeout,
                                        replication_timeout=s.restore_replication_timeout)

        with self.step("checking that scheduled backups are still happening"):
            self.report.base_backups = self.monitor.assert_still_scheduled(s.schedule_window)

        if self.mode == UpgradeMode.InPlace:
            # configuration changes restart postgres, never the instance manager
            with self.step("checking that no instance manager was upgraded again"):
                self.report.rollout = self.assert_manager_rollout(cluster, rollout_baseline, len(before))

        self.report.elapsed = self.env.clock.now() - start
        logger.info(self.report.summary())
        return self.report


def run_scenarios(scenarios: Sequence[UpgradeScenario], parallel: bool = False) -> List[ScenarioReport]:
    """
    Run every scenario to completion, even if some fail, and raise a single
    ScenarioError listing all failures.
    """
    reports: List[ScenarioReport] = []
    failures: List[Tuple[str, Exception]] = []

    if parallel and len(scenarios) > 1:
        with ThreadPoolExecutor(max_workers=len(scenarios)) as pool:
            futures = [(s.name, pool.submit(s.run)) for s in scenarios]
        for name, future in futures:
            try:
                reports.append(future.result())
            except Exception as e:
                failures.append((name, e))
    else:
        for s in scenarios:
            try:
                reports.append(s.run())
            except Exception as e:
                failures.append((s.name, e))

    if failures:
        raise ScenarioError(failures)
    return reports
