# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import os
import pathlib
from typing import Optional

from . import consts

# k8s
KUBECTL_PATH = os.getenv(
    "UPGRADE_TEST_KUBECTL_PATH", default="kubectl")

K8S_CONTEXT = os.getenv(
    "UPGRADE_TEST_K8S_CONTEXT", default=None)

# fixtures
FIXTURES_DIR = os.getenv(
    "UPGRADE_TEST_FIXTURES_DIR", default=None)

RELEASES_DIR = os.getenv(
    "UPGRADE_TEST_RELEASES_DIR", default=None)

OPERATOR_MANIFEST = os.getenv(
    "UPGRADE_TEST_OPERATOR_MANIFEST", default=None)

# operator
OPERATOR_IMAGE = os.getenv(
    "UPGRADE_TEST_OPERATOR_IMAGE", default=None)

OPERATOR_NAMESPACE = os.getenv(
    "UPGRADE_TEST_OPERATOR_NAMESPACE", default=consts.OPERATOR_NAMESPACE)

OPERATOR_CONFIGMAP = os.getenv(
    "UPGRADE_TEST_OPERATOR_CONFIGMAP", default=consts.OPERATOR_CONFIGMAP)

# scenarios
ROLLING_NAMESPACE = os.getenv(
    "UPGRADE_TEST_ROLLING_NAMESPACE", default="rolling-upgrade")

INPLACE_NAMESPACE = os.getenv(
    "UPGRADE_TEST_INPLACE_NAMESPACE", default="online-upgrade")

STRICT_MODE = os.getenv(
    "UPGRADE_TEST_STRICT_MODE", default="false").lower() in ("1", "true", "yes")


class Config:
    # k8s environment
    kubectl_path = KUBECTL_PATH
    k8s_context = K8S_CONTEXT

    # fixtures
    fixtures_dir = FIXTURES_DIR
    releases_dir = RELEASES_DIR
    operator_manifest = OPERATOR_MANIFEST

    # operator
    operator_image = OPERATOR_IMAGE
    operator_namespace = OPERATOR_NAMESPACE
    operator_configmap = OPERATOR_CONFIGMAP
    release_tag: Optional[str] = None

    # scenarios
    rolling_namespace = ROLLING_NAMESPACE
    inplace_namespace = INPLACE_NAMESPACE
    scenarios = ["rolling", "inplace"]
    strict_mode = STRICT_MODE
    keep_namespaces = False

    # diagnostics
    verbose = False
    debug_kubectl = False

    def commit(self):
        if not self.kubectl_path:
            self.kubectl_path = "kubectl"

        if not self.fixtures_dir:
            self.fixtures_dir = os.path.join(self.get_tests_dir(), "data", "upgrade")

        if not self.releases_dir:
            self.releases_dir = os.path.join(self.fixtures_dir, "releases")

    def get_tests_dir(self):
        return str(pathlib.Path(__file__).absolute().parent.parent.parent / "tests")

    def get_namespace(self, scenario: str) -> str:
        if scenario == "rolling":
            return self.rolling_namespace
        return self.inplace_namespace
