from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union


# ──────────────────────────────────────────────
# Samples – one per family per round
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class MemorySample:
    total: int          # kB
    used: int           # kB

    @property
    def usage_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used * 100.0 / self.total

@dataclass(frozen=True)
class NetworkSample:
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0

@dataclass(frozen=True)
class ProcessSample:
    total_processes: int = 0    # /proc/stat "processes" – forks since boot
    fork_estimate: int = 0      # live process count - 2
    running_estimate: int = 0   # /proc/stat "procs_running"

Sample = Union[MemorySample, NetworkSample, ProcessSample]


# ──────────────────────────────────────────────
# Deltas – baseline vs current
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class MemoryDelta:
    baseline_used: int
    used_abs: int
    used_pct: float

    @property
    def used_abs_mb(self) -> float:
        return self.used_abs / 1024.0

@dataclass(frozen=True)
class NetworkDelta:
    rx: int
    tx: int
    rx_packets: int
    tx_packets: int
    wrapped: bool = False       # a counter went backwards; clamped to 0

@dataclass(frozen=True)
class ProcessDelta:
    fork: int
    activity: int

Delta = Union[MemoryDelta, NetworkDelta, ProcessDelta]


# ──────────────────────────────────────────────
# Escalation
# ──────────────────────────────────────────────
class Outcome(str, Enum):
    BASELINING = "baselining"
    MONITORING = "monitoring"
    COMPLETED_CLEAN = "completed_clean"
    COMPLETED_SUSPICIOUS = "completed_suspicious"
    TERMINATED_CRITICAL = "terminated_critical"
    TERMINATED_SUSTAINED = "terminated_sustained"
    TERMINATED_CRASH = "terminated_crash"
    CANCELLED = "cancelled"
    SETUP_FAILED = "setup_failed"

    @property
    def terminated(self) -> bool:
        return self.name.startswith("TERMINATED_")

    @property
    def final(self) -> bool:
        return self not in (Outcome.BASELINING, Outcome.MONITORING)

    @property
    def exit_code(self) -> int:
        if self is Outcome.COMPLETED_CLEAN:
            return 0
        if self.terminated:
            return 1
        if self is Outcome.COMPLETED_SUSPICIOUS:
            return 2
        if self is Outcome.CANCELLED:
            return 130
        return 3

@dataclass
class EscalationCounters:
    spikes: Dict[str, int] = field(default_factory=dict)   # family -> count
    consecutive_failures: int = 0
    total_failures: int = 0

    def count(self, family: str) -> int:
        return self.spikes.get(family, 0)

    @property
    def ram_spikes(self) -> int:
        return self.count("memory")

    @property
    def net_spikes(self) -> int:
        return self.count("network")

    @property
    def syscall_spikes(self) -> int:
        return self.count("processes")

    @property
    def any_spike(self) -> bool:
        return any(v > 0 for v in self.spikes.values())

    def snapshot(self) -> Dict[str, int]:
        return dict(self.spikes)


# ──────────────────────────────────────────────
# Events – emitted by the monitor, consumed by reporters/actions
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class BaselineEstablished:
    samples: Dict[str, Sample]
    missing: Tuple[str, ...] = ()       # families that fell back to zero
    errors: Dict[str, str] = field(default_factory=dict)

@dataclass(frozen=True)
class RoundCompleted:
    round_no: int
    samples: Dict[str, Sample]
    deltas: Dict[str, Delta]
    spikes: Dict[str, bool]
    critical: bool
    counters: Dict[str, int]
    substituted: Dict[str, str] = field(default_factory=dict)   # family -> error
    substitutions: Dict[str, int] = field(default_factory=dict)  # family -> reuses so far

    @property
    def flagged(self) -> Tuple[str, ...]:
        return tuple(name for name, hit in self.spikes.items() if hit)

@dataclass(frozen=True)
class RoundFailed:
    round_no: int
    error: str
    consecutive_failures: int

@dataclass(frozen=True)
class DataQualityIssue:
    round_no: int
    family: str
    summary: str

@dataclass(frozen=True)
class Verdict:
    outcome: Outcome
    round_no: int                       # 0 = decided before the first round
    reason: str
    counters: Dict[str, int]
    consecutive_failures: int = 0
    total_failures: int = 0
    details: Tuple[str, ...] = ()

@dataclass(frozen=True)
class ContainmentResult:
    vm_name: str
    stopped: bool
    error: Optional[str] = None

Event = Union[BaselineEstablished, RoundCompleted, RoundFailed, DataQualityIssue,
              Verdict, ContainmentResult]
