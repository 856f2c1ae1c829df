from __future__ import annotations


class VMWatchError(Exception):
    """Base for every error raised by vmwatch."""


# ── probe ─────────────────────────────────────
class ProbeError(VMWatchError):
    def __init__(self, family: str, message: str):
        super().__init__(f"{family}: {message}")
        self.family = family
        self.message = message

class ProbeTimeout(ProbeError):
    pass

class ProbeUnreachable(ProbeError):
    pass

class ProbeMalformedResponse(ProbeError):
    pass


# ── run setup / actions ───────────────────────
class BaselineUnavailable(VMWatchError):
    """Memory baseline could not be fetched; monitoring never starts."""

class ControlActionFailed(VMWatchError):
    """Hypervisor refused or failed a start/stop request."""

class DeploymentFailed(VMWatchError):
    """The script could not be copied into the guest."""
