from __future__ import annotations
import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, List

from .collectors import SSH_OPTS
from .errors import DeploymentFailed

log = logging.getLogger(__name__)

REMOTE_SCRIPT = "/tmp/script.sh"
REMOTE_OUTPUT = "/tmp/script_output.log"


class ScriptDeployer:
    """Copies the untrusted script into the guest and starts it in the background."""

    def __init__(self, address: str, user: str = "ubuntu", timeout_s: float = 60.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.address = address
        self.user = user
        self.timeout_s = timeout_s
        self._sleep = sleep

    @property
    def target(self) -> str:
        return f"{self.user}@{self.address}"

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)

    def _ssh(self, remote_cmd: str) -> subprocess.CompletedProcess:
        return self._run(["ssh", *SSH_OPTS, self.target, remote_cmd])

    def deploy(self, script_path: str, init_wait_s: float = 5.0) -> None:
        path = Path(script_path)
        if not path.is_file():
            raise DeploymentFailed(f"script not found: {script_path}")

        log.info("Copying %s to %s:%s", path, self.target, REMOTE_SCRIPT)
        try:
            res = self._run(["scp", *SSH_OPTS, str(path), f"{self.target}:{REMOTE_SCRIPT}"])
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DeploymentFailed(f"failed to copy script: {e}") from e
        if res.returncode != 0:
            raise DeploymentFailed(f"failed to copy script: {res.stderr.strip()}")

        self._step(f"chmod +x {REMOTE_SCRIPT}", "failed to make script executable")
        self._step(f"{REMOTE_SCRIPT} > {REMOTE_OUTPUT} 2>&1 &", "script execution may have failed")
        log.info("Script started, output logged to %s in the guest", REMOTE_OUTPUT)

        if init_wait_s > 0:
            self._sleep(init_wait_s)

    def _step(self, remote_cmd: str, warning: str) -> bool:
        try:
            res = self._ssh(remote_cmd)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("%s: %s", warning, e)
            return False
        if res.returncode != 0:
            log.warning("%s (exit %d): %s", warning, res.returncode, res.stderr.strip())
            return False
        return True

    def fetch_output(self) -> str:
        try:
            res = self._ssh(f"cat {REMOTE_OUTPUT} 2>/dev/null || echo '[No output captured]'")
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("failed to fetch script output: %s", e)
            return ""
        if res.returncode != 0:
            log.warning("failed to fetch script output (exit %d)", res.returncode)
            return ""
        return res.stdout
