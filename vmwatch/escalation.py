from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from .config import MonitorConfig
from .models import EscalationCounters, Outcome


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: str = ""
    details: Tuple[str, ...] = ()

    @property
    def final(self) -> bool:
        return self.outcome.final


class EscalationMachine:
    """
    BASELINING -> MONITORING -> one final outcome.

    Every record_* call returns a Decision and never performs side effects;
    the caller decides what to print and whom to stop. Once a final outcome
    is reached the machine refuses further input.
    """

    def __init__(self, cfg: MonitorConfig, families: Iterable[str]):
        self.cfg = cfg
        self.state = Outcome.BASELINING
        self.counters = EscalationCounters(spikes={name: 0 for name in families})

    def start(self) -> Decision:
        if self.state is not Outcome.BASELINING:
            raise RuntimeError(f"cannot start monitoring from {self.state.value}")
        self.state = Outcome.MONITORING
        return Decision(self.state)

    # ── failure path ──────────────────────────
    def record_failure(self) -> Decision:
        self._require_monitoring()
        c = self.counters
        c.consecutive_failures += 1
        c.total_failures += 1
        if c.consecutive_failures >= self.cfg.crash_failures:
            return self._finish(
                Outcome.TERMINATED_CRASH,
                f"guest unreachable for {c.consecutive_failures} consecutive attempts",
                (f"{self.counters.ram_spikes} memory spike(s) detected before the crash",),
            )
        return Decision(self.state)

    # ── success path ──────────────────────────
    def record_round(self, spikes: Dict[str, bool], critical: bool) -> Decision:
        self._require_monitoring()
        c = self.counters
        c.consecutive_failures = 0
        for name, hit in spikes.items():
            if hit:
                c.spikes[name] = c.spikes.get(name, 0) + 1

        if critical:
            return self._finish(
                Outcome.TERMINATED_CRITICAL,
                f"RAM usage exceeded {self.cfg.critical_ram_pct:.0f}%",
            )

        sustained = tuple(n for n, count in c.spikes.items() if count >= self.cfg.sustained_spikes)
        if sustained:
            return self._finish(
                Outcome.TERMINATED_SUSTAINED,
                "sustained attack pattern: " + ", ".join(sustained),
                sustained,
            )
        return Decision(self.state)

    # ── end of horizon / abort ────────────────
    def finish(self) -> Decision:
        self._require_monitoring()
        if self.counters.any_spike:
            return self._finish(Outcome.COMPLETED_SUSPICIOUS,
                                "spikes recorded but never escalated")
        return self._finish(Outcome.COMPLETED_CLEAN, "no suspicious behavior detected")

    def cancel(self) -> Decision:
        self._require_monitoring()
        return self._finish(Outcome.CANCELLED, "monitoring cancelled")

    def _finish(self, outcome: Outcome, reason: str, details: Tuple[str, ...] = ()) -> Decision:
        self.state = outcome
        return Decision(outcome, reason, details)

    def _require_monitoring(self) -> None:
        if self.state is not Outcome.MONITORING:
            raise RuntimeError(f"escalation is {self.state.value}, not monitoring")
