from __future__ import annotations
import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

from .errors import ControlActionFailed

if TYPE_CHECKING:
    import libvirt

log = logging.getLogger(__name__)


def _import_libvirt() -> Any:
    try:
        import libvirt
    except ImportError as e:
        raise ControlActionFailed(
            "libvirt-python is required. Install with: pip install libvirt-python"
        ) from e
    return libvirt


class LibvirtControl:
    """Start/destroy a named domain. Each call opens and closes its own connection."""

    def __init__(
        self,
        uri: str = "qemu:///system",
        boot_wait_s: float = 5.0,
        opener: Optional[Callable[[str], "libvirt.virConnect"]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._libvirt = _import_libvirt()
        self.uri = uri
        self.boot_wait_s = boot_wait_s
        self._open = opener or self._libvirt.open
        self._sleep = sleep

    @contextmanager
    def _domain(self, vm_name: str) -> Iterator["libvirt.virDomain"]:
        try:
            conn = self._open(self.uri)
        except self._libvirt.libvirtError as e:
            raise ControlActionFailed(f"cannot connect to {self.uri}: {e}") from e
        if conn is None:
            raise ControlActionFailed(f"cannot connect to {self.uri}")
        try:
            try:
                dom = conn.lookupByName(vm_name)
            except self._libvirt.libvirtError as e:
                raise ControlActionFailed(f"VM {vm_name!r} not found: {e}") from e
            yield dom
        finally:
            conn.close()

    def ensure_running(self, vm_name: str) -> bool:
        """Start vm_name unless it is already active. True if it was started now."""
        log.info("Looking up VM %s on %s", vm_name, self.uri)
        with self._domain(vm_name) as dom:
            try:
                if dom.isActive() == 1:
                    log.info("VM %s already running", vm_name)
                    return False
                dom.create()
            except self._libvirt.libvirtError as e:
                raise ControlActionFailed(f"failed to start VM {vm_name!r}: {e}") from e
        log.info("VM %s started, waiting %gs for boot", vm_name, self.boot_wait_s)
        self._sleep(self.boot_wait_s)
        return True

    def force_stop(self, vm_name: str) -> None:
        with self._domain(vm_name) as dom:
            try:
                dom.destroy()
            except self._libvirt.libvirtError as e:
                raise ControlActionFailed(f"failed to stop VM {vm_name!r}: {e}") from e
        log.info("VM %s destroyed", vm_name)
