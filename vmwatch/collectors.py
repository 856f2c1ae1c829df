from __future__ import annotations
import logging
import subprocess
from pathlib import Path
from typing import List

import psutil

from .errors import ProbeMalformedResponse, ProbeTimeout, ProbeUnreachable
from .models import MemorySample, NetworkSample, ProcessSample

log = logging.getLogger(__name__)

SSH_OPTS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
    "-o", "BatchMode=yes",
]

# Remote one-liners. Each prints exactly the fields its parser expects.
MEMINFO_CMD = "grep -E '^(MemTotal|MemAvailable):' /proc/meminfo | awk '{print $2}'"
NETDEV_CMD = ("grep ':' /proc/net/dev | grep -v 'lo:' | head -1 "
              "| sed 's/:/ /' | awk '{print $2,$3,$10,$11}'")
PROCSTAT_CMD = ("ps aux | wc -l; "
                "awk '/^processes/ {print $2} /^procs_running/ {print $2}' /proc/stat")


def parse_fields(family: str, text: str, count: int) -> List[int]:
    parts = text.split()
    if len(parts) != count:
        raise ProbeMalformedResponse(family, f"expected {count} fields, got {len(parts)}: {text.strip()!r}")
    try:
        return [int(p) for p in parts]
    except ValueError:
        raise ProbeMalformedResponse(family, f"non-numeric field in {text.strip()!r}") from None


def memory_from_meminfo(text: str) -> MemorySample:
    total, available = parse_fields("memory", text, 2)
    return MemorySample(total=total, used=max(0, total - available))


def network_from_netdev(text: str) -> NetworkSample:
    rx_bytes, rx_packets, tx_bytes, tx_packets = parse_fields("network", text, 4)
    return NetworkSample(rx_bytes=rx_bytes, tx_bytes=tx_bytes,
                         rx_packets=rx_packets, tx_packets=tx_packets)


def processes_from_procstat(text: str) -> ProcessSample:
    proc_count, total, running = parse_fields("processes", text, 3)
    return ProcessSample(
        total_processes=total,
        fork_estimate=max(0, proc_count - 2),   # ps header + ps itself
        running_estimate=running,
    )


# ──────────────────────────────────────────────
# SshProbe – guest counters over ssh
# ──────────────────────────────────────────────
class SshProbe:
    """
    Samples a guest by running /proc one-liners over ssh.
    Every call is bounded by the caller's timeout and raises a ProbeError
    subclass on timeout, unreachable guest, or an unparseable answer.
    """

    def __init__(self, address: str, user: str = "ubuntu", connect_timeout: int = 5):
        self.address = address
        self.user = user
        self.connect_timeout = connect_timeout

    @property
    def target(self) -> str:
        return f"{self.user}@{self.address}"

    def ssh_command(self, remote_cmd: str) -> List[str]:
        return ["ssh", *SSH_OPTS, "-o", f"ConnectTimeout={self.connect_timeout}",
                self.target, remote_cmd]

    def _query(self, family: str, remote_cmd: str, timeout: float) -> str:
        try:
            proc = subprocess.run(
                self.ssh_command(remote_cmd),
                capture_output=True, text=True, timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ProbeTimeout(family, f"no answer from {self.address} within {timeout:g}s") from None
        except OSError as e:
            raise ProbeUnreachable(family, f"cannot run ssh: {e}") from e
        except UnicodeDecodeError as e:
            raise ProbeMalformedResponse(family, f"undecodable output from {self.address}: {e}") from e
        if proc.returncode != 0:
            raise ProbeUnreachable(
                family, f"ssh to {self.address} exited {proc.returncode}: {proc.stderr.strip()}"
            )
        log.debug("%s probe on %s -> %r", family, self.address, proc.stdout)
        return proc.stdout

    # ── families ──────────────────────────────
    def memory(self, timeout: float) -> MemorySample:
        return memory_from_meminfo(self._query("memory", MEMINFO_CMD, timeout))

    def network(self, timeout: float) -> NetworkSample:
        return network_from_netdev(self._query("network", NETDEV_CMD, timeout))

    def processes(self, timeout: float) -> ProcessSample:
        return processes_from_procstat(self._query("processes", PROCSTAT_CMD, timeout))


# ──────────────────────────────────────────────
# LocalProbe – the monitoring host itself (dry runs)
# ──────────────────────────────────────────────
class LocalProbe:
    """Same contract as SshProbe, backed by psutil on the local host."""

    PROC_STAT = Path("/proc/stat")

    def memory(self, timeout: float) -> MemorySample:
        try:
            mem = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            raise ProbeUnreachable("memory", str(e)) from e
        total = int(mem.total) // 1024
        return MemorySample(total=total, used=max(0, total - int(mem.available) // 1024))

    def network(self, timeout: float) -> NetworkSample:
        try:
            net = psutil.net_io_counters()
        except (psutil.Error, OSError) as e:
            raise ProbeUnreachable("network", str(e)) from e
        if net is None:
            raise ProbeMalformedResponse("network", "no network interfaces")
        return NetworkSample(
            rx_bytes=int(net.bytes_recv), tx_bytes=int(net.bytes_sent),
            rx_packets=int(net.packets_recv), tx_packets=int(net.packets_sent),
        )

    def processes(self, timeout: float) -> ProcessSample:
        try:
            pids = psutil.pids()
            running = 0
            for p in psutil.process_iter(["status"]):
                if p.info.get("status") == psutil.STATUS_RUNNING:
                    running += 1
        except (psutil.Error, OSError) as e:
            raise ProbeUnreachable("processes", str(e)) from e
        return ProcessSample(
            total_processes=self._forks_since_boot(default=len(pids)),
            fork_estimate=max(0, len(pids) - 2),
            running_estimate=running,
        )

    def _forks_since_boot(self, default: int) -> int:
        try:
            for line in self.PROC_STAT.read_text(encoding="utf-8").splitlines():
                if line.startswith("processes "):
                    return int(line.split()[1])
        except (OSError, ValueError, IndexError):
            pass
        return default
