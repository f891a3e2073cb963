# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

API_GROUP = "postgresql.k8s.enterprisedb.io"
API_VERSION = "v1"

# short kind name -> (apiVersion, kind)
KINDS = {
    "cluster": (f"{API_GROUP}/{API_VERSION}", "Cluster"),
    "backup": (f"{API_GROUP}/{API_VERSION}", "Backup"),
    "scheduledbackup": (f"{API_GROUP}/{API_VERSION}", "ScheduledBackup"),
    "pod": ("v1", "Pod"),
    "namespace": ("v1", "Namespace"),
    "configmap": ("v1", "ConfigMap"),
    "secret": ("v1", "Secret"),
    "service": ("v1", "Service"),
    "pvc": ("v1", "PersistentVolumeClaim"),
    "event": ("v1", "Event"),
    "deployment": ("apps/v1", "Deployment"),
    "crd": ("apiextensions.k8s.io/v1", "CustomResourceDefinition"),
}

KIND_BY_NAME = {kind: short for short, (_, kind) in KINDS.items()}

CLUSTER_CRD_NAME = f"clusters.{API_GROUP}"

# label set by the operator on every instance pod
CLUSTER_LABEL = "postgresql"

CLUSTER_HEALTHY_PHASE = "Cluster in healthy state"

POSTGRES_CONTAINER = "postgres"
POSTGRES_USER = "postgres"
APP_DATABASE = "appdb"

# Operator deployment
OPERATOR_NAMESPACE = "postgresql-operator-system"
OPERATOR_DEPLOYMENT = "postgresql-operator-controller-manager"
OPERATOR_CONFIGMAP = "postgresql-operator-controller-manager-config"
OPERATOR_CONTAINER = "manager"
OPERATOR_IMAGE_ENV = "OPERATOR_IMAGE_NAME"
INPLACE_UPDATES_KEY = "ENABLE_INSTANCE_MANAGER_INPLACE_UPDATES"
RELEASE_MANIFEST_PREFIX = "postgresql-operator-"

# Event emitted once per instance when its manager is replaced in place
INSTANCE_MANAGER_UPGRADED_REASON = "InstanceManagerUpgraded"

# Object store
OBJECT_STORE_CLIENT = "mc"
OBJECT_STORE_ALIAS = "minio"
OBJECT_STORE_DEPLOYMENT = "minio"
BASE_BACKUP_ARTIFACT = "data.tar.gz"

# SQL used by the verifiers
SQL_MARKER_EMPTY = "SELECT count(*) = 0 FROM {table}"
SQL_CREATE_MARKER = "CREATE TABLE {table}(i int)"
SQL_CREATE_RESTORE_DATA = "CREATE TABLE {table} AS VALUES (1), (2);"
SQL_COUNT_ROWS = "SELECT count(*) FROM {table}"
SQL_SWITCH_WAL = "CHECKPOINT; SELECT pg_walfile_name(pg_switch_wal())"
SQL_CURRENT_TIMELINE = "select substring(pg_walfile_name(pg_current_wal_lsn()), 1, 8)"
SQL_REPLICATION_COUNT = "SELECT count(*) FROM pg_stat_replication"
SQL_SHOW_SETTING = "show {key}"

RESTORE_TABLE = "to_restore"
MARKER_TABLE_PREFIX = "postswitch"
