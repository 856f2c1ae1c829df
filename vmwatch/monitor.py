from __future__ import annotations
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Sequence

from .config import MonitorConfig
from .detectors import DEFAULT_FAMILIES, MetricFamily, SpikeClassifier, ordered
from .errors import BaselineUnavailable, ControlActionFailed, ProbeError
from .escalation import Decision, EscalationMachine
from .models import (BaselineEstablished, ContainmentResult, DataQualityIssue, Event,
                     Outcome, RoundCompleted, RoundFailed, Sample, Verdict)
from .tracker import BaselineTracker

log = logging.getLogger(__name__)

Handler = Callable[[Event], None]


class MonitorRun:
    """
    One monitoring run against one guest.

    events() fetches the baseline, then walks the fixed number of rounds and
    yields an Event for everything that happens. The last event is always a
    Verdict; nothing is sampled after it. Baseline, counters and escalation
    state belong to this object and die with it.
    """

    def __init__(
        self,
        probe: Any,
        cfg: MonitorConfig,
        families: Iterable[MetricFamily] = DEFAULT_FAMILIES,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ):
        self.probe = probe
        self.cfg = cfg
        self.families = ordered(families)
        self.tracker = BaselineTracker(self.families, cfg)
        self.classifier = SpikeClassifier(self.families, cfg)
        self.machine = EscalationMachine(cfg, [f.name for f in self.families])
        self._sleep = sleep
        self._cancel = cancel
        self._started = False
        self._substitutions: Dict[str, int] = {}

    @property
    def outcome(self) -> Outcome:
        return self.machine.state

    def events(self) -> Iterator[Event]:
        if self._started:
            raise RuntimeError("a MonitorRun can only be consumed once")
        self._started = True

        yield self._establish_baseline()
        self.machine.start()

        for round_no in range(1, self.cfg.rounds + 1):
            if self._wait():
                yield self._verdict(self.machine.cancel(), round_no)
                return

            try:
                samples, substituted = self._sample_round(round_no)
            except ProbeError as e:
                decision = self.machine.record_failure()
                yield RoundFailed(round_no, str(e), self.machine.counters.consecutive_failures)
                if decision.final:
                    yield self._verdict(decision, round_no)
                    return
                continue

            deltas = self.tracker.deltas(samples)
            for name, d in deltas.items():
                if getattr(d, "wrapped", False):
                    yield DataQualityIssue(round_no, name, "counter went backwards; delta clamped to 0")

            spikes = self.classifier.classify(deltas)
            critical = self.classifier.critical(samples)
            decision = self.machine.record_round(spikes, critical)

            yield RoundCompleted(
                round_no=round_no,
                samples=samples,
                deltas=deltas,
                spikes=spikes,
                critical=critical,
                counters=self.machine.counters.snapshot(),
                substituted=substituted,
                substitutions=dict(self._substitutions),
            )
            if decision.final:
                yield self._verdict(decision, round_no)
                return
            self.tracker.commit(samples)

        yield self._verdict(self.machine.finish(), self.cfg.rounds)

    # ── internals ─────────────────────────────
    def _establish_baseline(self) -> BaselineEstablished:
        samples: Dict[str, Sample] = {}
        errors: Dict[str, str] = {}
        for fam in self.families:
            try:
                samples[fam.name] = fam.sample(self.probe, self.cfg.probe_timeout_s)
            except ProbeError as e:
                if fam.required:
                    raise BaselineUnavailable(f"failed to get baseline {fam.name} stats: {e}") from e
                log.warning("baseline %s unavailable, starting from zero: %s", fam.name, e)
                samples[fam.name] = fam.empty()
                errors[fam.name] = str(e)
        self.tracker.establish(samples)
        return BaselineEstablished(samples=samples, missing=tuple(errors), errors=errors)

    def _sample_round(self, round_no: int):
        """Raises ProbeError only when a required family fails."""
        samples: Dict[str, Sample] = {}
        substituted: Dict[str, str] = {}
        for fam in self.families:
            try:
                samples[fam.name] = fam.sample(self.probe, self.cfg.probe_timeout_s)
            except ProbeError as e:
                if fam.required:
                    raise
                n = self._substitutions.get(fam.name, 0) + 1
                self._substitutions[fam.name] = n
                log.warning("round %d: %s sample failed (%d so far), reusing previous value: %s",
                            round_no, fam.name, n, e)
                samples[fam.name] = self.tracker.baseline(fam.name)
                substituted[fam.name] = str(e)
        return samples, substituted

    def _wait(self) -> bool:
        """Sleep one interval; True if the run was cancelled."""
        if self._cancel is not None:
            return self._cancel.wait(self.cfg.interval_s)
        self._sleep(self.cfg.interval_s)
        return False

    def _verdict(self, decision: Decision, round_no: int) -> Verdict:
        c = self.machine.counters
        return Verdict(
            outcome=decision.outcome,
            round_no=round_no,
            reason=decision.reason,
            counters=c.snapshot(),
            consecutive_failures=c.consecutive_failures,
            total_failures=c.total_failures,
            details=decision.details,
        )


# ──────────────────────────────────────────────
# Containment – the only place a stop is issued
# ──────────────────────────────────────────────
def force_stop(control: Any, vm_name: str) -> ContainmentResult:
    try:
        control.force_stop(vm_name)
    except ControlActionFailed as e:
        log.error("failed to stop %s: %s", vm_name, e)
        return ContainmentResult(vm_name=vm_name, stopped=False, error=str(e))
    return ContainmentResult(vm_name=vm_name, stopped=True)


def contain(run: MonitorRun, control: Any, vm_name: str,
            handlers: Sequence[Handler] = ()) -> Verdict:
    """
    Drive run to its verdict, fanning every event out to handlers.
    A terminating verdict triggers exactly one force_stop; a failed stop is
    reported but does not change the verdict. The stop is issued even when a
    handler raises on the verdict; the handler's exception still propagates.
    """
    verdict: Optional[Verdict] = None
    for event in run.events():
        if isinstance(event, Verdict):
            verdict = event
        if verdict is None or not verdict.outcome.terminated:
            _dispatch(event, handlers)
            continue
        try:
            _dispatch(event, handlers)
        finally:
            result = force_stop(control, vm_name)
        _dispatch(result, handlers)
    if verdict is None:
        raise RuntimeError("monitoring ended without a verdict")
    return verdict


def _dispatch(event: Event, handlers: Sequence[Handler]) -> None:
    for handle in handlers:
        handle(event)
