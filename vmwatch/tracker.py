from __future__ import annotations
from typing import Dict, Iterable, TYPE_CHECKING

from .config import MonitorConfig
from .models import (Delta, MemoryDelta, MemorySample, NetworkDelta, NetworkSample,
                     ProcessDelta, ProcessSample, Sample)

if TYPE_CHECKING:
    from .detectors import MetricFamily


# ──────────────────────────────────────────────
# Per-family delta functions
# ──────────────────────────────────────────────
def memory_delta(baseline: MemorySample, current: MemorySample, cfg: MonitorConfig) -> MemoryDelta:
    used_abs = current.used - baseline.used
    used_pct = 0.0
    # Near-zero baselines make the ratio meaningless.
    if baseline.used > cfg.significance_floor_kb:
        used_pct = used_abs * 100.0 / baseline.used
    return MemoryDelta(baseline_used=baseline.used, used_abs=used_abs, used_pct=used_pct)


def network_delta(baseline: NetworkSample, current: NetworkSample, cfg: MonitorConfig) -> NetworkDelta:
    raw = (
        current.rx_bytes - baseline.rx_bytes,
        current.tx_bytes - baseline.tx_bytes,
        current.rx_packets - baseline.rx_packets,
        current.tx_packets - baseline.tx_packets,
    )
    wrapped = any(v < 0 for v in raw)
    rx, tx, rx_packets, tx_packets = (max(0, v) for v in raw)
    return NetworkDelta(rx=rx, tx=tx, rx_packets=rx_packets, tx_packets=tx_packets, wrapped=wrapped)


def process_delta(baseline: ProcessSample, current: ProcessSample, cfg: MonitorConfig) -> ProcessDelta:
    return ProcessDelta(
        fork=current.fork_estimate - baseline.fork_estimate,
        activity=current.total_processes - baseline.total_processes,
    )


# ──────────────────────────────────────────────
# BaselineTracker
# ──────────────────────────────────────────────
class BaselineTracker:
    """
    Holds exactly one baseline sample per family.
    Baselines are overwritten wholesale by commit(); a failed round never
    reaches commit(), so the previous baseline survives it.
    """

    def __init__(self, families: Iterable["MetricFamily"], cfg: MonitorConfig):
        self.cfg = cfg
        self._families = {f.name: f for f in families}
        self._baseline: Dict[str, Sample] = {}

    def establish(self, samples: Dict[str, Sample]) -> None:
        missing = set(self._families) - set(samples)
        if missing:
            raise ValueError(f"baseline missing families: {sorted(missing)}")
        self._baseline = dict(samples)

    def baseline(self, family: str) -> Sample:
        return self._baseline[family]

    def delta(self, family: str, current: Sample) -> Delta:
        return self._families[family].delta(self._baseline[family], current, self.cfg)

    def deltas(self, samples: Dict[str, Sample]) -> Dict[str, Delta]:
        return {name: self.delta(name, s) for name, s in samples.items()}

    def commit(self, samples: Dict[str, Sample]) -> None:
        for name, s in samples.items():
            if name not in self._families:
                raise KeyError(name)
            self._baseline[name] = s
