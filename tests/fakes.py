"""
Scripted probe and hypervisor stand-ins for monitor tests
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from vmwatch.config import MonitorConfig
from vmwatch.errors import ControlActionFailed, ProbeTimeout, ProbeUnreachable
from vmwatch.models import MemorySample, NetworkSample, ProcessSample

TOTAL_KB = 4_000_000


def mem(used, total=TOTAL_KB):
    return MemorySample(total=total, used=used)


def down(family="memory"):
    return ProbeUnreachable(family, "ssh exited 255: connection refused")


def slow(family="memory"):
    return ProbeTimeout(family, "no answer within 10s")


def fast_cfg(**overrides):
    overrides.setdefault("interval_s", 0.0)
    return MonitorConfig(**overrides)


class ScriptedProbe:
    """
    Replays a list of samples (or exceptions) per family.
    The last entry repeats once the script runs out.
    """

    def __init__(self, memory, network=None, processes=None):
        self.script = {
            "memory": list(memory),
            "network": list(network or [NetworkSample()]),
            "processes": list(processes or [ProcessSample()]),
        }
        self.calls = {name: 0 for name in self.script}

    def _next(self, family):
        self.calls[family] += 1
        items = self.script[family]
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return item

    def memory(self, timeout):
        return self._next("memory")

    def network(self, timeout):
        return self._next("network")

    def processes(self, timeout):
        return self._next("processes")


class FakeControl:
    def __init__(self, fail=False):
        self.fail = fail
        self.stopped = []

    def force_stop(self, vm_name):
        self.stopped.append(vm_name)
        if self.fail:
            raise ControlActionFailed("virDomainDestroy failed: domain is not running")


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]
