"""
Tests for libvirt control, against a fake connection
"""

import importlib.util
import sys
import unittest
from unittest import mock

import fakes  # noqa: F401
from vmwatch.errors import ControlActionFailed
from vmwatch.hypervisor import LibvirtControl

HAVE_LIBVIRT = importlib.util.find_spec("libvirt") is not None

if HAVE_LIBVIRT:
    import libvirt


class FakeDomain:
    def __init__(self, active=False, fail_destroy=False):
        self.active = active
        self.fail_destroy = fail_destroy
        self.created = 0
        self.destroyed = 0

    def isActive(self):
        return 1 if self.active else 0

    def create(self):
        self.created += 1
        self.active = True
        return 0

    def destroy(self):
        self.destroyed += 1
        if self.fail_destroy:
            raise libvirt.libvirtError("Requested operation is not valid: domain is not running")
        self.active = False
        return 0


class FakeConnection:
    def __init__(self, domains):
        self.domains = domains
        self.closed = False

    def lookupByName(self, name):
        if name not in self.domains:
            raise libvirt.libvirtError(f"Domain not found: no domain with matching name '{name}'")
        return self.domains[name]

    def close(self):
        self.closed = True
        return 0


@unittest.skipUnless(HAVE_LIBVIRT, "libvirt-python not installed")
class TestLibvirtControl(unittest.TestCase):

    def setUp(self):
        self.domain = FakeDomain()
        self.conn = FakeConnection({"sandbox-vm": self.domain})
        self.sleeps = []
        self.control = LibvirtControl("qemu:///system", boot_wait_s=5.0,
                                      opener=lambda uri: self.conn, sleep=self.sleeps.append)

    def test_starts_inactive_domain_and_waits(self):
        self.assertTrue(self.control.ensure_running("sandbox-vm"))
        self.assertEqual(self.domain.created, 1)
        self.assertEqual(self.sleeps, [5.0])
        self.assertTrue(self.conn.closed)

    def test_running_domain_is_left_alone(self):
        self.domain.active = True
        self.assertFalse(self.control.ensure_running("sandbox-vm"))
        self.assertEqual(self.domain.created, 0)
        self.assertEqual(self.sleeps, [])

    def test_unknown_domain(self):
        with self.assertRaises(ControlActionFailed):
            self.control.ensure_running("other-vm")
        self.assertTrue(self.conn.closed)

    def test_force_stop(self):
        self.domain.active = True
        self.control.force_stop("sandbox-vm")
        self.assertEqual(self.domain.destroyed, 1)

    def test_force_stop_failure(self):
        self.domain.fail_destroy = True
        with self.assertRaises(ControlActionFailed):
            self.control.force_stop("sandbox-vm")
        self.assertTrue(self.conn.closed)

    def test_no_connection(self):
        control = LibvirtControl(opener=lambda uri: None)
        with self.assertRaises(ControlActionFailed):
            control.force_stop("sandbox-vm")


class TestMissingBinding(unittest.TestCase):

    def test_control_reports_missing_libvirt(self):
        with mock.patch.dict(sys.modules, {"libvirt": None}):
            with self.assertRaises(ControlActionFailed) as ctx:
                LibvirtControl()
        self.assertIn("libvirt-python is required", str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
