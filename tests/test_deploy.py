"""
Tests for script deployment into the guest
"""

import os
import subprocess
import tempfile
import unittest
from unittest import mock

import fakes  # noqa: F401
from vmwatch.deploy import REMOTE_OUTPUT, REMOTE_SCRIPT, ScriptDeployer
from vmwatch.errors import DeploymentFailed


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestScriptDeployer(unittest.TestCase):

    def setUp(self):
        fd, self.script = tempfile.mkstemp(suffix=".sh")
        os.write(fd, b"#!/bin/sh\necho hi\n")
        os.close(fd)
        self.sleeps = []
        self.deployer = ScriptDeployer("10.0.0.5", "ubuntu", sleep=self.sleeps.append)

    def tearDown(self):
        os.remove(self.script)

    def test_missing_script(self):
        with self.assertRaises(DeploymentFailed):
            self.deployer.deploy("/nonexistent/script.sh")

    @mock.patch("vmwatch.deploy.subprocess.run")
    def test_copy_chmod_launch(self, run):
        run.return_value = completed()
        self.deployer.deploy(self.script, init_wait_s=5.0)
        commands = [c.args[0] for c in run.call_args_list]
        self.assertEqual(commands[0][0], "scp")
        self.assertEqual(commands[0][-1], f"ubuntu@10.0.0.5:{REMOTE_SCRIPT}")
        self.assertEqual(commands[1][-1], f"chmod +x {REMOTE_SCRIPT}")
        self.assertTrue(commands[2][-1].startswith(f"{REMOTE_SCRIPT} > {REMOTE_OUTPUT}"))
        self.assertEqual(self.sleeps, [5.0])

    @mock.patch("vmwatch.deploy.subprocess.run")
    def test_copy_failure_is_fatal(self, run):
        run.return_value = completed(returncode=1, stderr="Permission denied")
        with self.assertRaises(DeploymentFailed):
            self.deployer.deploy(self.script)
        self.assertEqual(run.call_count, 1)

    @mock.patch("vmwatch.deploy.subprocess.run")
    def test_chmod_failure_only_warns(self, run):
        run.side_effect = [completed(), completed(returncode=1, stderr="read-only"), completed()]
        with self.assertLogs("vmwatch.deploy", level="WARNING") as logs:
            self.deployer.deploy(self.script, init_wait_s=0)
        self.assertIn("failed to make script executable", logs.output[0])
        self.assertEqual(run.call_count, 3)

    @mock.patch("vmwatch.deploy.subprocess.run")
    def test_fetch_output(self, run):
        run.return_value = completed(stdout="hello\n")
        self.assertEqual(self.deployer.fetch_output(), "hello\n")

    @mock.patch("vmwatch.deploy.subprocess.run")
    def test_fetch_output_from_dead_guest(self, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="ssh", timeout=60)
        with self.assertLogs("vmwatch.deploy", level="WARNING"):
            self.assertEqual(self.deployer.fetch_output(), "")


if __name__ == '__main__':
    unittest.main()
