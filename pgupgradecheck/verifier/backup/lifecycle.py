# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

from logging import getLogger
from typing import Optional

from .. import consts, psql
from ..api import Environment
from ..api_utils import lookup
from ..cluster_api import BackupPhase, BackupRecord, ClusterRef
from ..errors import InconsistentStateError
from ..polling import await_condition
from ..topology import TopologyVerifier
from .cadence import BackupCadenceMonitor

logger = getLogger("backup")


def parse_timeline(walfile_prefix: str) -> int:
    # first 8 hex digits of a WAL segment name are the timeline ID
    return int(walfile_prefix.strip(), 16)


class BackupLifecycleVerifier:
    def __init__(self, env: Environment, monitor: BackupCadenceMonitor):
        self.env = env
        self.monitor = monitor
        self.topology = TopologyVerifier(env)

    def get_backup(self, backup: ClusterRef) -> BackupRecord:
        obj = self.env.resources.get("backup", backup.namespace, backup.name)
        return BackupRecord(backup, BackupPhase.parse(lookup(obj, "status.phase")))

    def await_backup_phase(self, backup: ClusterRef,
                           desired: BackupPhase = BackupPhase.completed,
                           timeout: float = 200, poll_interval: float = 2) -> BackupRecord:
        """
        Phases only move forward; a phase going backwards or a backup ending
        in a terminal phase other than desired fails right away.
        """
        seen = [BackupPhase.pending]

        def check(record: BackupRecord) -> bool:
            if record.phase.rank < seen[0].rank:
                raise InconsistentStateError(
                    f"backup phase went back from {seen[0].value} to {record.phase.value}", str(backup))
            seen[0] = record.phase
            if record.phase == desired:
                return True
            if record.terminal:
                raise InconsistentStateError(
                    f"backup ended {record.phase.value} while waiting for {desired.value}", str(backup))
            return False

        record = await_condition(lambda: self.get_backup(backup), check,
                                 timeout=timeout, clock=self.env.clock, poll_interval=poll_interval,
                                 what=f"backup {desired.value}", target=str(backup))
        logger.info(f"backup {backup} is {record.phase.value}")
        return record

    def verify_artifact_present(self, expected_count: int = 1, timeout: float = 30) -> int:
        return self.monitor.await_artifact_count(expected_count, consts.BASE_BACKUP_ARTIFACT, timeout)

    def verify_wal_archived(self, cluster: ClusterRef, primary: Optional[str] = None,
                            timeout: float = 30) -> str:
        """
        Force a WAL switch on the primary and wait for the (gzip compressed)
        segment to show up in the object store. Returns the segment name.
        """
        if not primary:
            primary = self.topology.capture_baseline(cluster).current_primary
        out = psql.query(self.env, cluster, primary, consts.SQL_SWITCH_WAL)
        # CHECKPOINT prints nothing in tuples-only mode, the name is the last line
        lines = out.splitlines()
        if not lines:
            raise InconsistentStateError("pg_switch_wal() returned no segment name",
                                         f"{cluster.namespace}/{primary}")
        walfile = lines[-1].strip()
        logger.info(f"{cluster}: switched to WAL {walfile} on {primary}")

        self.monitor.await_artifact_count(1, f"{walfile}.gz", timeout)
        return walfile

    def verify_restore(self, restored: ClusterRef, *, expected_rows: str = "2",
                       table: str = consts.RESTORE_TABLE, min_timeline: int = 1,
                       expected_standbys: str = "2", ready_timeout: float = 800,
                       replication_timeout: float = 180) -> None:
        """
        Check a cluster bootstrapped from a backup: the data is there, the
        primary was promoted to a new timeline and the standbys attached to it.
        """
        self.topology.await_cluster_ready(restored, ready_timeout)
        primary = self.topology.capture_baseline(restored).current_primary

        rows = psql.query(self.env, restored, primary, consts.SQL_COUNT_ROWS.format(table=table))
        if rows != expected_rows:
            raise InconsistentStateError(
                f"restored table {table} has {rows} rows, expected {expected_rows}", str(restored))

        # The exact timeline depends on the history files already in the
        # object store, it only has to be past the one of the source.
        timeline = parse_timeline(psql.query(self.env, restored, primary, consts.SQL_CURRENT_TIMELINE))
        if timeline <= min_timeline:
            raise InconsistentStateError(
                f"restored primary {primary} is on timeline {timeline}, expected > {min_timeline}",
                str(restored))
        logger.info(f"{restored}: {rows} rows restored, primary {primary} on timeline {timeline}")

        await_condition(lambda: psql.query(self.env, restored, primary, consts.SQL_REPLICATION_COUNT),
                        lambda out: out == expected_standbys,
                        timeout=replication_timeout, clock=self.env.clock,
                        what=f"{expected_standbys} standbys streaming",
                        target=f"{restored.namespace}/{primary}")
        logger.info(f"{restored}: {expected_standbys} standbys attached to {primary}")
