# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Counts the objects a backup leaves in the object store, to prove that backups
# complete and that a schedule keeps firing.

from logging import getLogger

from .. import consts
from ..api import Environment, ExecTarget
from ..errors import TransientError, WaitTimeoutError
from ..polling import await_condition

logger = getLogger("backup")


class BackupCadenceMonitor:
    def __init__(self, env: Environment, namespace: str,
                 client_pod: str = consts.OBJECT_STORE_CLIENT,
                 alias: str = consts.OBJECT_STORE_ALIAS):
        self.env = env
        self.target = ExecTarget(namespace, client_pod)
        self.alias = alias

    def count_command(self, name: str):
        return ["sh", "-c", f"mc find {self.alias} --name {name} | wc -l"]

    def sample_artifact_count(self, name: str = consts.BASE_BACKUP_ARTIFACT) -> int:
        """
        Number of stored objects called name. Does not change anything, so
        two samples with no backup in between are equal.
        """
        out = self.env.commands.run(self.target, self.count_command(name)).stdout
        try:
            return int(out.strip())
        except ValueError:
            raise TransientError(f"unexpected object count output {out!r}", str(self.target))

    def await_artifact_count(self, expected: int, name: str = consts.BASE_BACKUP_ARTIFACT,
                             timeout: float = 30, poll_interval: float = 2) -> int:
        return await_condition(lambda: self.sample_artifact_count(name),
                               lambda count: count == expected,
                               timeout=timeout, clock=self.env.clock, poll_interval=poll_interval,
                               what=f"{expected} object(s) named {name}", target=str(self.target))

    def await_increase(self, baseline: int, window: float = 120,
                       name: str = consts.BASE_BACKUP_ARTIFACT, poll_interval: float = 2) -> int:
        try:
            count = await_condition(lambda: self.sample_artifact_count(name),
                                    lambda count: count > baseline,
                                    timeout=window, clock=self.env.clock,
                                    poll_interval=poll_interval,
                                    what=f"more than {baseline} object(s) named {name}",
                                    target=str(self.target))
        except WaitTimeoutError:
            logger.error(f"{self.target}: no new {name} within {window}s, backup schedule is stalled")
            raise
        logger.info(f"{self.target}: {name} count went from {baseline} to {count}")
        return count

    def assert_still_scheduled(self, window: float = 120) -> int:
        """
        Relies on the scheduled backup being the only thing producing base
        backups while the check runs.
        """
        baseline = self.sample_artifact_count()
        logger.info(f"{self.target}: {baseline} base backup(s) stored, waiting up to {window}s for the next one")
        return self.await_increase(baseline, window)
