# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

# Operator upgrades against a live kubernetes cluster. Needs a kube context
# with the operator image under test available, and UPGRADE_TEST_OPERATOR_MANIFEST
# plus UPGRADE_TEST_RELEASES_DIR pointing to the manifests to upgrade between.
#
#   python3 -m pytest tests/e2e/upgrade/upgrade_t.py

import logging
import sys
import unittest

from pgupgradecheck.run_main import cleanup_scenario, prepare_operator
from pgupgradecheck.verifier import kubeutils, operator
from pgupgradecheck.verifier.cluster_api import Transition, UpgradeMode
from pgupgradecheck.verifier.config import Config
from pgupgradecheck.verifier.manifests import load_manifest
from pgupgradecheck.verifier.scenario import ScenarioFixtures, ScenarioSettings, UpgradeScenario


class UpgradeTestBase(unittest.TestCase):
    logger = logging
    scenario = None

    @classmethod
    def setUpClass(cls):
        cls.logger = logging.getLogger(__name__+":"+cls.__name__)
        cls.stream_handler = logging.StreamHandler(sys.stdout)
        cls.logger.addHandler(cls.stream_handler)

        cls.cfg = Config()
        cls.cfg.commit()
        if not cls.cfg.operator_manifest:
            raise unittest.SkipTest("UPGRADE_TEST_OPERATOR_MANIFEST not set")

        cls.env = kubeutils.connect(cls.cfg.kubectl_path, cls.cfg.k8s_context)
        cls.ns = cls.cfg.get_namespace(cls.scenario)
        cls.fixtures = ScenarioFixtures.from_dir(cls.cfg.fixtures_dir)
        cls.logger.info(f"Starting {cls.__name__} in {cls.ns}")

    @classmethod
    def tearDownClass(cls):
        cleanup_scenario(cls.env, cls.cfg, cls.scenario)
        cls.logger.removeHandler(cls.stream_handler)

    def run_upgrade(self):
        mode = prepare_operator(self.env, self.cfg, self.scenario)
        upgrade = operator.operator_upgrade_action(self.env, load_manifest(self.cfg.operator_manifest))
        scenario = UpgradeScenario(self.env, self.fixtures, ScenarioSettings(self.ns), upgrade, mode)
        return mode, scenario.run()


class RollingUpgradeTest(UpgradeTestBase):
    scenario = "rolling"

    def test_0_upgrade(self):
        mode, report = self.run_upgrade()

        self.assertEqual(mode, UpgradeMode.Rolling)
        self.assertEqual(report.transition.classify(), Transition.Rolling)
        self.assertEqual(len(report.switchovers), 2)
        self.assertGreater(report.base_backups, 2)


class OnlineUpgradeTest(UpgradeTestBase):
    scenario = "inplace"

    def test_0_upgrade(self):
        mode, report = self.run_upgrade()

        self.assertEqual(mode, UpgradeMode.InPlace)
        self.assertEqual(report.transition.classify(), Transition.InPlace)
        self.assertEqual(report.rollout.count, len(report.transition.before))
        self.assertEqual(len(report.switchovers), 2)
