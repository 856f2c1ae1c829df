from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional
import json

APP_DIR = Path.home() / ".vmwatch"
CFG_PATH = APP_DIR / "config.json"
JOURNAL_PATH = APP_DIR / "journal.db"

@dataclass
class MonitorConfig:
    # Loop cadence
    rounds: int = 60
    interval_s: float = 2.0

    # Probe
    probe_timeout_s: float = 10.0
    ssh_connect_timeout_s: int = 5
    ssh_user: str = "ubuntu"

    # Memory family (units are kB, as /proc/meminfo reports them)
    significance_floor_kb: int = 10240
    ram_spike_pct: float = 30.0
    ram_spike_abs_mb: float = 100.0
    critical_ram_pct: float = 80.0

    # Network family – bytes per round, split evenly across rx/tx
    net_spike_bytes: int = 1_000_000

    # Process-activity family
    fork_spike: int = 50
    activity_spike: int = 1000

    # Escalation
    sustained_spikes: int = 3
    crash_failures: int = 3

    # Hypervisor / deployment
    libvirt_uri: str = "qemu:///system"
    boot_wait_s: float = 5.0
    script_init_wait_s: float = 5.0

def ensure_dirs(path: Path = APP_DIR) -> None:
    path.mkdir(parents=True, exist_ok=True)

def load_config(path: Optional[Path] = None) -> MonitorConfig:
    path = Path(path) if path else CFG_PATH
    ensure_dirs(path.parent)
    if not path.exists():
        cfg = MonitorConfig()
        save_config(cfg, path)
        return cfg
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        known = {k: data[k] for k in data if k in MonitorConfig.__dataclass_fields__}
        return MonitorConfig(**known)
    except (OSError, ValueError, TypeError):
        cfg = MonitorConfig()
        save_config(cfg, path)
        return cfg

def save_config(cfg: MonitorConfig, path: Optional[Path] = None) -> None:
    path = Path(path) if path else CFG_PATH
    ensure_dirs(path.parent)
    path.write_text(json.dumps(cfg.__dict__, indent=2), encoding="utf-8")

def override(cfg: MonitorConfig, **values) -> MonitorConfig:
    """Return a copy of cfg with every non-None value applied (CLI flags)."""
    names = {f.name for f in fields(cfg)}
    merged = dict(cfg.__dict__)
    merged.update({k: v for k, v in values.items() if k in names and v is not None})
    return MonitorConfig(**merged)
