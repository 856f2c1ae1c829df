from __future__ import annotations
import sys
from typing import Dict, Iterable, List, Optional, TextIO

from .config import MonitorConfig
from .detectors import DEFAULT_FAMILIES, MetricFamily
from .models import (BaselineEstablished, ContainmentResult, DataQualityIssue, Delta, Event,
                     MemoryDelta, MemorySample, NetworkDelta, NetworkSample, Outcome,
                     ProcessDelta, ProcessSample, RoundCompleted, RoundFailed, Sample, Verdict)

RULE = "=" * 46


def banner(title: str, out: TextIO = sys.stdout) -> None:
    print(RULE, file=out)
    print(title, file=out)
    print(RULE, file=out)


def format_sample(sample: Sample) -> str:
    if isinstance(sample, MemorySample):
        return f"Memory: {sample.used / 1024.0:.2f} MB ({sample.usage_percent:.1f}%)"
    if isinstance(sample, NetworkSample):
        return f"Network: RX {sample.rx_bytes / (1024.0 * 1024.0):.2f} MB"
    if isinstance(sample, ProcessSample):
        return f"Syscalls: {sample.total_processes}"
    return repr(sample)


def format_delta(sample: Sample, delta: Delta) -> str:
    if isinstance(delta, MemoryDelta) and isinstance(sample, MemorySample):
        return (f"RAM: {sample.used / 1024.0:.2f} MB ({sample.usage_percent:.1f}%) "
                f"{delta.used_abs_mb:+.1f} MB")
    if isinstance(delta, NetworkDelta):
        return f"NET: RX {delta.rx / 1024.0:+.2f} KB TX {delta.tx / 1024.0:+.2f} KB"
    if isinstance(delta, ProcessDelta) and isinstance(sample, ProcessSample):
        return f"SYS: {sample.total_processes} procs {delta.fork:+d} forks"
    return repr(delta)


class ConsoleReporter:
    """Turns monitor events into the operator-facing console transcript."""

    def __init__(self, cfg: MonitorConfig, families: Iterable[MetricFamily] = DEFAULT_FAMILIES,
                 out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.cfg = cfg
        self.labels: Dict[str, str] = {f.name: f.label for f in families}
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def __call__(self, event: Event) -> None:
        self.handle(event)

    def _print(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    def _warn(self, text: str) -> None:
        print(text, file=self.err, flush=True)

    def handle(self, event: Event) -> None:
        if isinstance(event, BaselineEstablished):
            self.on_baseline(event)
        elif isinstance(event, RoundCompleted):
            self.on_round(event)
        elif isinstance(event, RoundFailed):
            self._warn(f"[WARN] Failed at iteration {event.round_no} "
                       f"(failures: {event.consecutive_failures}): {event.error}")
        elif isinstance(event, DataQualityIssue):
            self._warn(f"[WARN] Round {event.round_no}: {event.family} {event.summary}")
        elif isinstance(event, Verdict):
            self.on_verdict(event)
        elif isinstance(event, ContainmentResult):
            self.on_containment(event)

    # ── handlers ──────────────────────────────
    def on_baseline(self, ev: BaselineEstablished) -> None:
        banner(f"Starting Comprehensive Monitoring ({self.cfg.rounds} rounds)", self.out)
        self._print()
        for name in ev.missing:
            self._warn(f"[WARN] Failed to get baseline {name} stats: {ev.errors.get(name, '')}")
        parts = [format_sample(s) for s in ev.samples.values()]
        self._print("[BASELINE] " + " | ".join(parts))
        self._print()

    def on_round(self, ev: RoundCompleted) -> None:
        parts = [format_delta(ev.samples[name], d) for name, d in ev.deltas.items()]
        line = f"[{ev.round_no:03d}] " + " | ".join(parts)
        for name in ev.flagged:
            line += f"  {self.labels.get(name, name.upper())}-SPIKE!"
        if ev.critical:
            line += "  CRITICAL!"
        if ev.substituted:
            line += "  (reused: " + ", ".join(
                f"{name} x{ev.substitutions.get(name, 1)}" for name in ev.substituted) + ")"
        self._print(line)

    def counter_summary(self, counters: Dict[str, int]) -> str:
        return ", ".join(f"{count} {self.labels.get(name, name)}" for name, count in counters.items())

    def on_verdict(self, v: Verdict) -> None:
        lines: List[str] = []
        if v.outcome is Outcome.TERMINATED_CRASH:
            lines = [
                "!! VM CRASHED - MALICIOUS BEHAVIOR CONFIRMED !!",
                f"   - Could not connect for {v.consecutive_failures} consecutive attempts",
                f"   - Failed rounds in total: {v.total_failures}",
                "   - Script caused complete system crash",
                *(f"   - {d}" for d in v.details),
            ]
        elif v.outcome is Outcome.TERMINATED_CRITICAL:
            lines = [
                "!! STOPPING VM - MALICIOUS BEHAVIOR CONFIRMED !!",
                f"   - {v.reason} (round {v.round_no})",
                f"   - Spikes so far: {self.counter_summary(v.counters)}",
            ]
        elif v.outcome is Outcome.TERMINATED_SUSTAINED:
            lines = [
                "!! STOPPING VM - MALICIOUS BEHAVIOR CONFIRMED !!",
                f"   - Multiple anomalies detected ({self.counter_summary(v.counters)})",
                "   - Sustained attack pattern identified in: "
                + ", ".join(self.labels.get(n, n) for n in v.details),
            ]
        if lines:
            self._print()
            for text in lines:
                self._print(text)
            return

        self._print()
        banner("Monitoring Complete" if v.outcome is not Outcome.CANCELLED else "Monitoring Cancelled",
               self.out)
        if v.outcome is Outcome.COMPLETED_SUSPICIOUS:
            self._print("")
            self._print("WARNING: suspicious behavior detected but never escalated")
            self._print(f"   - Spikes: {self.counter_summary(v.counters)}")
            self._print(f"   - RAM threshold: >{self.cfg.ram_spike_pct:.0f}% increase; "
                        f"network threshold: >{self.cfg.net_spike_bytes / (1024.0 * 1024.0):.2f} MB per round")
            self._print("   - Possible fork bomb, memory attack, or data exfiltration")
        elif v.outcome is Outcome.COMPLETED_CLEAN:
            self._print("")
            self._print("No suspicious behavior detected")
            self._print("   - Memory usage remained stable")
            self._print("   - Network activity was normal")
            self._print("   - Syscall activity was normal")
        else:
            self._print(f"   - {v.reason} after round {v.round_no}")

    def on_containment(self, r: ContainmentResult) -> None:
        if r.stopped:
            self._print(f"[ACTION] VM '{r.vm_name}' stopped")
        else:
            self._warn(f"[ERROR] Failed to stop VM '{r.vm_name}': {r.error}")
        self._print("[TERMINATED] Malicious behavior detected")

    def script_output(self, text: str) -> None:
        self._print()
        banner("Script Output from VM", self.out)
        self._print(text.rstrip("\n") if text else "[No output captured]")
