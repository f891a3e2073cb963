# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

import logging
import sys
from typing import List, Tuple

from .verifier import kubeutils, operator
from .verifier.api import Environment
from .verifier.cluster_api import UpgradeMode
from .verifier.config import Config
from .verifier.errors import ConfigurationError, ScenarioError, VerificationError
from .verifier.manifests import load_manifest
from .verifier.scenario import ScenarioFixtures, ScenarioReport, ScenarioSettings, UpgradeScenario, run_scenarios

logger = logging.getLogger("run_main")

SCENARIOS = ["rolling", "inplace"]


def setup_logging(verbose: bool):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        stream=sys.stdout,
                        format="\033[1;34m%(asctime)s  %(name)-10s  [%(levelname)-8s]\033[0m   %(message)s")
    # the kubernetes client is very chatty at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.INFO)


def usage():
    print(f"""Usage: python3 -m pgupgradecheck run [options]

Options:
    --context=<name>            kubectl context of the cluster to test on
    --kubectl-path=<path>       kubectl binary to use for exec
    --fixtures=<dir>            directory with the scenario manifests
    --releases=<dir>            directory with postgresql-operator-X.Y.Z.yaml release manifests
    --release-tag=<X.Y.Z>       release to upgrade from (default: most recent in --releases)
    --operator-manifest=<file>  manifest of the operator version under test
    --operator-image=<image>    image of the operator under test, set before in-place upgrades
    --scenario=<a,b>            scenarios to run, any of {','.join(SCENARIOS)}
    --strict-mode               fail when the operator does not advertise its upgrade mode
    --keep-namespaces           don't delete the scenario namespaces when done
    --dkube                     log every kubectl invocation
    -v, --verbose               debug logging
""")


def parse_args(cfg: Config, argv: List[str]) -> None:
    for arg in argv:
        if arg.startswith("--context="):
            cfg.k8s_context = arg.partition("=")[-1]
        elif arg.startswith("--kubectl-path="):
            cfg.kubectl_path = arg.partition("=")[-1]
        elif arg.startswith("--fixtures="):
            cfg.fixtures_dir = arg.partition("=")[-1]
        elif arg.startswith("--releases="):
            cfg.releases_dir = arg.partition("=")[-1]
        elif arg.startswith("--release-tag="):
            cfg.release_tag = arg.partition("=")[-1]
        elif arg.startswith("--operator-manifest="):
            cfg.operator_manifest = arg.partition("=")[-1]
        elif arg.startswith("--operator-image="):
            cfg.operator_image = arg.partition("=")[-1]
        elif arg.startswith("--scenario="):
            cfg.scenarios = arg.partition("=")[-1].split(",")
            for s in cfg.scenarios:
                if s not in SCENARIOS:
                    raise ConfigurationError(f"unknown scenario '{s}', must be one of {SCENARIOS}")
        elif arg == "--strict-mode":
            cfg.strict_mode = True
        elif arg == "--keep-namespaces":
            cfg.keep_namespaces = True
        elif arg == "--dkube":
            cfg.debug_kubectl = True
        elif arg in ("-v", "--verbose"):
            cfg.verbose = True
        elif arg in ("-h", "--help"):
            usage()
            sys.exit(0)
        else:
            raise ConfigurationError(f"invalid argument '{arg}'")

    if not cfg.operator_manifest:
        raise ConfigurationError("--operator-manifest is required")


def prepare_operator(env: Environment, cfg: Config, scenario: str) -> UpgradeMode:
    """
    Install the release to upgrade from and configure it for the scenario.
    Returns the upgrade mode the operator advertises afterwards.
    """
    tag = cfg.release_tag or operator.most_recent_release_tag(cfg.releases_dir)
    logger.info(f"Installing operator release {tag}")
    operator.install_operator_release(
        env, load_manifest(operator.release_manifest_path(cfg.releases_dir, tag)))

    if scenario == "inplace":
        operator.enable_inplace_updates(env, cfg.operator_namespace, cfg.operator_configmap)
        if cfg.operator_image:
            operator.update_operator_image(env, cfg.operator_image)
    else:
        operator.disable_inplace_updates(env, cfg.operator_namespace, cfg.operator_configmap)

    return operator.resolve_upgrade_mode(env, cfg.operator_namespace, cfg.operator_configmap,
                                         cfg.strict_mode)


def cleanup_scenario(env: Environment, cfg: Config, scenario: str) -> None:
    if scenario == "inplace":
        operator.disable_inplace_updates(env, cfg.operator_namespace, cfg.operator_configmap)
    if not cfg.keep_namespaces:
        namespace = cfg.get_namespace(scenario)
        logger.info(f"Deleting namespace {namespace}")
        env.resources.delete("namespace", None, namespace)


def run_scenario(env: Environment, cfg: Config, fixtures: ScenarioFixtures,
                 scenario: str) -> ScenarioReport:
    namespace = cfg.get_namespace(scenario)
    try:
        mode = prepare_operator(env, cfg, scenario)
        upgrade = operator.operator_upgrade_action(env, load_manifest(cfg.operator_manifest))
        return run_scenarios([UpgradeScenario(env, fixtures, ScenarioSettings(namespace),
                                              upgrade, mode)])[0]
    finally:
        cleanup_scenario(env, cfg, scenario)


def main(argv) -> int:
    cfg = Config()
    try:
        parse_args(cfg, argv)
    except ConfigurationError as e:
        print(e)
        usage()
        return 1
    cfg.commit()

    setup_logging(cfg.verbose)
    kubeutils.debug_kubectl = cfg.debug_kubectl

    env = kubeutils.connect(cfg.kubectl_path, cfg.k8s_context)
    fixtures = ScenarioFixtures.from_dir(cfg.fixtures_dir)

    # the operator is cluster wide, so scenarios can't overlap
    reports: List[ScenarioReport] = []
    failures: List[Tuple[str, Exception]] = []
    for scenario in cfg.scenarios:
        try:
            reports.append(run_scenario(env, cfg, fixtures, scenario))
        except ScenarioError as e:
            failures += e.failures
        except VerificationError as e:
            logger.error(f"{scenario}: {e}")
            failures.append((scenario, e))

    for report in reports:
        print(report.summary())

    if failures:
        print(ScenarioError(failures))
        return 1
    return 0
