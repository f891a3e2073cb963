# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Actions on the operator deployment itself: installing a release, upgrading
# it and finding out which upgrade strategy it advertises.

import copy
import os
import re
from logging import getLogger
from typing import Iterable, List

from . import consts
from .api import Environment, apply_resource, exists
from .api_utils import dget_list, lookup
from .cluster_api import UpgradeMode
from .errors import ConfigurationError, NotFoundError
from .manifests import short_kind
from .polling import await_condition, is_conflict, retry_with_backoff
from .utils import version_to_int

logger = getLogger("operator")


def resolve_upgrade_mode(env: Environment, namespace: str = consts.OPERATOR_NAMESPACE,
                         configmap: str = consts.OPERATOR_CONFIGMAP,
                         strict: bool = False) -> UpgradeMode:
    """
    Read the in-place update flag from the operator ConfigMap.

    A missing ConfigMap or key means the operator does rolling upgrades, unless
    strict is set, in which case it is a configuration error.
    """
    what = f"{namespace}/{configmap}"
    try:
        cm = env.resources.get("configmap", namespace, configmap)
        value = (cm.get("data") or {}).get(consts.INPLACE_UPDATES_KEY)
    except NotFoundError:
        value = None

    if value is None:
        if strict:
            raise ConfigurationError(f"{consts.INPLACE_UPDATES_KEY} is not set", what)
        logger.warning(f"{what}: {consts.INPLACE_UPDATES_KEY} not set, assuming rolling upgrades")
        return UpgradeMode.Rolling

    flag = value.strip().lower()
    if flag == "true":
        mode = UpgradeMode.InPlace
    elif flag == "false":
        mode = UpgradeMode.Rolling
    else:
        raise ConfigurationError(f"invalid value '{value}' for {consts.INPLACE_UPDATES_KEY}", what)

    logger.info(f"{what}: operator advertises {mode.value} upgrades")
    return mode


def _set_inplace_updates(env: Environment, value: str, namespace: str, configmap: str) -> None:
    if not exists(env, "namespace", None, namespace):
        logger.info(f"Creating operator namespace {namespace}")
        env.resources.create("namespace", {"apiVersion": "v1", "kind": "Namespace",
                                           "metadata": {"name": namespace}})

    apply_resource(env, "configmap", {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"namespace": namespace, "name": configmap},
        "data": {consts.INPLACE_UPDATES_KEY: value}
    })
    logger.info(f"{namespace}/{configmap}: {consts.INPLACE_UPDATES_KEY}={value}")


def enable_inplace_updates(env: Environment, namespace: str = consts.OPERATOR_NAMESPACE,
                           configmap: str = consts.OPERATOR_CONFIGMAP) -> None:
    _set_inplace_updates(env, "true", namespace, configmap)


def disable_inplace_updates(env: Environment, namespace: str = consts.OPERATOR_NAMESPACE,
                            configmap: str = consts.OPERATOR_CONFIGMAP) -> None:
    """
    Write the flag as "false". The operator ConfigMap is shared by every
    scenario run against the cluster.
    """
    _set_inplace_updates(env, "false", namespace, configmap)


def apply_manifest(env: Environment, docs: Iterable[dict]) -> None:
    for doc in docs:
        apply_resource(env, short_kind(doc), doc)


def has_condition(obj: dict, type: str, status: str = "True") -> bool:
    for cond in lookup(obj, "status.conditions") or []:
        if cond.get("type") == type and cond.get("status") == status:
            return True
    return False


def get_operator_deployment(env: Environment, namespace: str = consts.OPERATOR_NAMESPACE,
                            name: str = consts.OPERATOR_DEPLOYMENT) -> dict:
    return env.resources.get("deployment", namespace, name)


def rollout_complete(deployment: dict) -> bool:
    status = deployment.get("status") or {}
    spec_replicas = lookup(deployment, "spec.replicas")
    if spec_replicas is None:
        spec_replicas = 1
    generation = lookup(deployment, "metadata.generation") or 0
    return (status.get("observedGeneration", 0) >= generation
            and status.get("updatedReplicas", 0) == spec_replicas
            and status.get("replicas", 0) == spec_replicas
            and status.get("availableReplicas", 0) == spec_replicas)


def install_operator_release(env: Environment, docs: List[dict], *,
                             apply_timeout: float = 60, ready_timeout: float = 150) -> None:
    logger.info(f"Installing operator release ({len(docs)} objects)")
    await_condition(lambda: apply_manifest(env, docs), lambda _: True,
                    timeout=apply_timeout, clock=env.clock, what="operator manifest applied")

    await_condition(lambda: env.resources.get("crd", None, consts.CLUSTER_CRD_NAME),
                    lambda crd: has_condition(crd, "Established"),
                    timeout=ready_timeout, clock=env.clock,
                    what=f"crd {consts.CLUSTER_CRD_NAME} established")

    await_condition(lambda: get_operator_deployment(env),
                    lambda dep: has_condition(dep, "Available"),
                    timeout=ready_timeout, clock=env.clock,
                    what="operator deployment available",
                    target=f"{consts.OPERATOR_NAMESPACE}/{consts.OPERATOR_DEPLOYMENT}")


def upgrade_operator(env: Environment, docs: List[dict], timeout: float = 120) -> None:
    """
    Apply the manifest of the new operator version. The new operator pod
    starts next to the old one, which is removed once the new one is ready.
    """
    target = f"{consts.OPERATOR_NAMESPACE}/{consts.OPERATOR_DEPLOYMENT}"
    logger.info(f"Upgrading operator {target}")
    apply_manifest(env, docs)

    await_condition(lambda: get_operator_deployment(env),
                    lambda dep: lookup(dep, "status.replicas") == 1,
                    timeout=timeout, clock=env.clock, what="single operator replica", target=target)
    await_condition(lambda: get_operator_deployment(env),
                    lambda dep: lookup(dep, "status.readyReplicas") == 1,
                    timeout=timeout, clock=env.clock, what="operator replica ready", target=target)


def update_operator_image(env: Environment, image: str, timeout: float = 150) -> None:
    target = f"{consts.OPERATOR_NAMESPACE}/{consts.OPERATOR_DEPLOYMENT}"

    def update():
        deployment = copy.deepcopy(get_operator_deployment(env))
        container = dget_list(deployment, "spec.template.spec.containers", target)[0]
        if container["name"] != consts.OPERATOR_CONTAINER:
            raise ConfigurationError(
                f"expected container {consts.OPERATOR_CONTAINER}, found {container['name']}", target)
        container["image"] = image
        for var in container.get("env") or []:
            if var["name"] == consts.OPERATOR_IMAGE_ENV:
                var["value"] = image
        return env.resources.update("deployment", deployment)

    logger.info(f"Setting operator image of {target} to {image}")
    retry_with_backoff(is_conflict, update, steps=4, initial_delay=0.01, factor=5.0,
                       clock=env.clock, what=f"update {target}")

    await_condition(lambda: get_operator_deployment(env), rollout_complete,
                    timeout=timeout, clock=env.clock, what="operator rollout", target=target)


_RELEASE_FILE = re.compile(rf"^{re.escape(consts.RELEASE_MANIFEST_PREFIX)}(\d+\.\d+\.\d+)\.yaml$")


def most_recent_release_tag(releases_dir: str) -> str:
    tags = []
    for f in os.listdir(releases_dir):
        m = _RELEASE_FILE.match(f)
        if m:
            tags.append(m.group(1))
    if not tags:
        raise ConfigurationError("no operator release manifests found", releases_dir)
    return max(tags, key=version_to_int)


def release_manifest_path(releases_dir: str, tag: str) -> str:
    return os.path.join(releases_dir, f"{consts.RELEASE_MANIFEST_PREFIX}{tag}.yaml")


def operator_upgrade_action(env: Environment, docs: List[dict], timeout: float = 120):
    """
    The upgrade step handed to the scenario: apply docs and wait for the
    operator to settle.
    """
    def action():
        upgrade_operator(env, docs, timeout)
    return action
