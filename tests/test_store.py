"""
Tests for the run journal
"""

import unittest

from fakes import FakeControl, ScriptedProbe, fast_cfg, mem
from vmwatch.monitor import MonitorRun, contain
from vmwatch.store import Journal


class TestJournal(unittest.TestCase):

    def setUp(self):
        self.journal = Journal(":memory:")

    def tearDown(self):
        self.journal.close()

    def test_requires_a_run(self):
        with self.assertRaises(RuntimeError):
            self.journal.add_timeline(1, "round", "x")

    def test_records_a_terminated_run(self):
        run_id = self.journal.start_run("sandbox-vm", "10.0.0.5", "./evil.sh")
        probe = ScriptedProbe([mem(500_000), mem(500_000), mem(3_900_000)])
        run = MonitorRun(probe, fast_cfg(), sleep=lambda s: None)
        contain(run, FakeControl(), "sandbox-vm", [self.journal])

        kinds = [row[1] for row in self.journal.list_timeline(run_id)]
        self.assertEqual(kinds, ["baseline", "round", "round", "verdict", "containment"])
        rounds = [row[0] for row in self.journal.list_timeline(run_id)]
        self.assertEqual(rounds, [0, 1, 2, 2, 2])

        (row,) = self.journal.list_runs()
        self.assertEqual(row[0], run_id)
        self.assertEqual(row[6], "terminated_critical")
        self.assertIsNotNone(row[5])

    def test_runs_are_separate(self):
        first = self.journal.start_run("a", "10.0.0.1", "s.sh")
        self.journal.add_timeline(1, "round", "first")
        second = self.journal.start_run("b", "10.0.0.2", "s.sh")
        self.journal.add_timeline(1, "round", "second")
        self.assertEqual([r[2] for r in self.journal.list_timeline(first)], ["first"])
        self.assertEqual([r[2] for r in self.journal.list_timeline(second)], ["second"])
        self.assertEqual([r[0] for r in self.journal.list_runs()], [second, first])


if __name__ == '__main__':
    unittest.main()
