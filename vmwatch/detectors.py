from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .config import MonitorConfig
from .models import (Delta, MemoryDelta, MemorySample, NetworkDelta, NetworkSample,
                     ProcessDelta, ProcessSample, Sample)
from .tracker import memory_delta, network_delta, process_delta


# ──────────────────────────────────────────────
# Spike rules
# ──────────────────────────────────────────────
def ram_spike(delta: MemoryDelta, cfg: MonitorConfig) -> bool:
    relative = (
        delta.used_pct > cfg.ram_spike_pct
        and delta.used_abs > 0
        and delta.baseline_used > cfg.significance_floor_kb
    )
    return relative or delta.used_abs_mb > cfg.ram_spike_abs_mb


def net_spike(delta: NetworkDelta, cfg: MonitorConfig) -> bool:
    # Either direction may trip on its own.
    half = cfg.net_spike_bytes / 2
    return delta.rx > half or delta.tx > half


def process_spike(delta: ProcessDelta, cfg: MonitorConfig) -> bool:
    return delta.fork > cfg.fork_spike or delta.activity > cfg.activity_spike


def ram_critical(sample: MemorySample, cfg: MonitorConfig) -> bool:
    return sample.usage_percent > cfg.critical_ram_pct


# ──────────────────────────────────────────────
# Family registry
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class MetricFamily:
    """
    One telemetry family: how to sample it, diff it, and judge the diff.

    A required family that fails to sample fails the whole round. Optional
    families fall back to their previous sample, or to empty() when even the
    baseline fetch failed.
    """
    name: str
    label: str
    sample: Callable[[Any, float], Sample]
    delta: Callable[[Sample, Sample, MonitorConfig], Delta]
    spike: Callable[[Delta, MonitorConfig], bool]
    required: bool = False
    empty: Optional[Callable[[], Sample]] = None
    critical: Optional[Callable[[Sample, MonitorConfig], bool]] = None


MEMORY = MetricFamily(
    name="memory", label="RAM",
    sample=lambda probe, timeout: probe.memory(timeout),
    delta=memory_delta, spike=ram_spike,
    required=True, critical=ram_critical,
)

NETWORK = MetricFamily(
    name="network", label="NET",
    sample=lambda probe, timeout: probe.network(timeout),
    delta=network_delta, spike=net_spike,
    empty=NetworkSample,
)

PROCESSES = MetricFamily(
    name="processes", label="SYSCALL",
    sample=lambda probe, timeout: probe.processes(timeout),
    delta=process_delta, spike=process_spike,
    empty=ProcessSample,
)

DEFAULT_FAMILIES: Tuple[MetricFamily, ...] = (MEMORY, NETWORK, PROCESSES)


def ordered(families: Iterable[MetricFamily]) -> Tuple[MetricFamily, ...]:
    """Required families first, so a failing one short-circuits the round."""
    families = tuple(families)
    names = [f.name for f in families]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate metric family in {names}")
    for f in families:
        if not f.required and f.empty is None:
            raise ValueError(f"optional family {f.name!r} needs an empty() factory")
    return tuple(f for f in families if f.required) + tuple(f for f in families if not f.required)


# ──────────────────────────────────────────────
# SpikeClassifier
# ──────────────────────────────────────────────
class SpikeClassifier:
    def __init__(self, families: Iterable[MetricFamily], cfg: MonitorConfig):
        self.cfg = cfg
        self._families = {f.name: f for f in families}

    def classify(self, deltas: Dict[str, Delta]) -> Dict[str, bool]:
        return {name: bool(self._families[name].spike(d, self.cfg)) for name, d in deltas.items()}

    def critical(self, samples: Dict[str, Sample]) -> bool:
        for name, s in samples.items():
            rule = self._families[name].critical
            if rule is not None and rule(s, self.cfg):
                return True
        return False
