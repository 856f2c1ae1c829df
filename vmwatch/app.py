from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

from .config import load_config, override
from .collectors import LocalProbe, SshProbe
from .deploy import ScriptDeployer
from .errors import BaselineUnavailable, ControlActionFailed, DeploymentFailed
from .hypervisor import LibvirtControl
from .models import Outcome
from .monitor import MonitorRun, contain
from .report import ConsoleReporter
from .store import Journal


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="vmwatch",
        description="Run an untrusted script in a VM and destroy the VM if it misbehaves.",
    )
    p.add_argument("vm_name", help="libvirt domain name")
    p.add_argument("address", help="guest IP address or hostname reachable over ssh")
    p.add_argument("script", help="path of the script to run inside the guest")
    p.add_argument("--user", dest="ssh_user", default=None, help="ssh user in the guest (default: ubuntu)")
    p.add_argument("--config", default=None, help="JSON config file (default: ~/.vmwatch/config.json)")
    p.add_argument("--rounds", type=int, default=None, help="number of sampling rounds")
    p.add_argument("--interval", dest="interval_s", type=float, default=None,
                   help="seconds between rounds")
    p.add_argument("--journal", default=None, help="record the run in this sqlite file")
    p.add_argument("--local", action="store_true",
                   help="sample this host with psutil instead of the guest over ssh")
    p.add_argument("--skip-start", action="store_true", help="do not start the VM, assume it is running")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = override(load_config(args.config), ssh_user=args.ssh_user,
                   rounds=args.rounds, interval_s=args.interval_s)

    print()
    print("VMWatch - Security Monitor")
    print(f"VM: {args.vm_name} | IP: {args.address} | Script: {args.script}")
    print()

    deployer = ScriptDeployer(args.address, cfg.ssh_user)
    try:
        control = LibvirtControl(cfg.libvirt_uri, boot_wait_s=cfg.boot_wait_s)
        if not args.skip_start:
            control.ensure_running(args.vm_name)
        deployer.deploy(args.script, init_wait_s=cfg.script_init_wait_s)
    except (ControlActionFailed, DeploymentFailed) as e:
        print(f"[FATAL] {e}", file=sys.stderr)
        return Outcome.SETUP_FAILED.exit_code

    probe = LocalProbe() if args.local else SshProbe(
        args.address, cfg.ssh_user, cfg.ssh_connect_timeout_s)
    run = MonitorRun(probe, cfg)
    reporter = ConsoleReporter(cfg, run.families)
    handlers = [reporter]

    journal = None
    if args.journal:
        journal = Journal(args.journal)
        journal.start_run(args.vm_name, args.address, args.script)
        handlers.append(journal)

    try:
        verdict = contain(run, control, args.vm_name, handlers)
        outcome = verdict.outcome
    except BaselineUnavailable as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        outcome = Outcome.SETUP_FAILED
        if journal is not None:
            journal.finish_run(outcome.value)
    finally:
        if journal is not None:
            journal.close()

    # A destroyed guest has nothing left to show.
    if not outcome.terminated:
        reporter.script_output(deployer.fetch_output())
    return outcome.exit_code
