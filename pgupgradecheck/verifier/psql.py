# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Run SQL on a cluster member through the command channel

from logging import getLogger
from typing import List, Optional

from . import consts
from .api import Environment, ExecTarget
from .cluster_api import ClusterRef

logger = getLogger("psql")


def psql_command(sql: str, database: Optional[str] = consts.APP_DATABASE,
                 user: str = consts.POSTGRES_USER) -> List[str]:
    argv = ["psql", "-U", user]
    if database:
        argv.append(database)
    return argv + ["-tAc", sql]


def member_target(cluster: ClusterRef, member: str) -> ExecTarget:
    return ExecTarget(cluster.namespace, member, consts.POSTGRES_CONTAINER)


def query(env: Environment, cluster: ClusterRef, member: str, sql: str,
          database: Optional[str] = consts.APP_DATABASE) -> str:
    """
    Run sql on the given member and return the unaligned, tuples-only output
    with surrounding whitespace removed.
    """
    target = member_target(cluster, member)
    logger.debug(f"{target}: {sql}")
    r = env.commands.run(target, psql_command(sql, database))
    return r.stdout.strip()


def execute(env: Environment, cluster: ClusterRef, member: str, sql: str,
            database: Optional[str] = consts.APP_DATABASE) -> None:
    query(env, cluster, member, sql, database)
