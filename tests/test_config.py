"""
Tests for configuration loading
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

import fakes  # noqa: F401
from vmwatch.config import MonitorConfig, load_config, override, save_config


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.path = self.tmp / "nested" / "config.json"

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_defaults_written_on_first_load(self):
        cfg = load_config(self.path)
        self.assertEqual(cfg, MonitorConfig())
        self.assertTrue(self.path.exists())
        self.assertEqual(json.loads(self.path.read_text())["rounds"], 60)

    def test_defaults_match_detection_constants(self):
        cfg = MonitorConfig()
        self.assertEqual((cfg.rounds, cfg.interval_s, cfg.probe_timeout_s), (60, 2.0, 10.0))
        self.assertEqual((cfg.ram_spike_pct, cfg.ram_spike_abs_mb, cfg.critical_ram_pct), (30.0, 100.0, 80.0))
        self.assertEqual((cfg.net_spike_bytes, cfg.fork_spike, cfg.activity_spike), (1_000_000, 50, 1000))
        self.assertEqual((cfg.sustained_spikes, cfg.crash_failures), (3, 3))

    def test_unknown_keys_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"rounds": 10, "colour": "red"}))
        cfg = load_config(self.path)
        self.assertEqual(cfg.rounds, 10)
        self.assertEqual(cfg.interval_s, 2.0)

    def test_corrupt_file_falls_back_to_defaults(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json")
        self.assertEqual(load_config(self.path), MonitorConfig())
        self.assertEqual(json.loads(self.path.read_text())["ssh_user"], "ubuntu")

    def test_round_trip(self):
        save_config(MonitorConfig(ssh_user="debian", fork_spike=20), self.path)
        cfg = load_config(self.path)
        self.assertEqual((cfg.ssh_user, cfg.fork_spike), ("debian", 20))

    def test_override_skips_none(self):
        cfg = override(MonitorConfig(), rounds=5, interval_s=None, bogus=1)
        self.assertEqual(cfg.rounds, 5)
        self.assertEqual(cfg.interval_s, 2.0)


if __name__ == '__main__':
    unittest.main()
