import logging
import os
from pathlib import Path
from typing import List, Set

from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.engine.tools import tool_available

log = logging.getLogger("hotspot_enabler.engine.nm_exclusion")

SETTLE_S = 0.5


def render_dropin(ifnames: List[str]) -> str:
    devices = ";".join(f"interface-name:{n}" for n in ifnames)
    return "[keyfile]\n" f"unmanaged-devices={devices}\n"


class NetworkManagerExclusion:
    """
    Keeps network managers away from our AP interface.

    The host's manager stack is unknown, so NetworkManager, connman and
    wpa_supplicant are each addressed; a missing tool is skipped.
    """

    def __init__(self, runner: CommandRunner, dropin_path: Path):
        self.runner = runner
        self.dropin_path = dropin_path
        self._names: Set[str] = set()

    @property
    def excluded(self) -> List[str]:
        return sorted(self._names)

    def _reload_nm(self) -> None:
        if tool_available(self.runner, "nmcli"):
            self.runner.run_silent(["nmcli", "general", "reload", "conf"])

    def register(self, ifname: str) -> None:
        """
        Drop-in + reload only; used before the interface exists so the
        manager never grabs it.
        """
        self._names.add(ifname)
        try:
            self.dropin_path.parent.mkdir(parents=True, exist_ok=True)
            self.dropin_path.write_text(render_dropin(self.excluded), encoding="utf-8")
        except OSError as exc:
            log.warning("nm_dropin_write_failed path=%s err=%s", self.dropin_path, exc)
            return
        self._reload_nm()

    def detach_supplicant(self, ifname: str) -> None:
        if tool_available(self.runner, "wpa_cli"):
            self.runner.run_silent(["wpa_cli", "-i", ifname, "disconnect"])
            self.runner.run_silent(["wpa_cli", "-i", ifname, "terminate"])

    def set_unmanaged(self, ifname: str) -> None:
        if tool_available(self.runner, "nmcli"):
            self.runner.run_silent(["nmcli", "device", "set", ifname, "managed", "no"])

    def exclude(self, ifname: str) -> None:
        self.register(ifname)
        self.runner.sleep(SETTLE_S)

        self.set_unmanaged(ifname)
        self.runner.sleep(SETTLE_S)

        if tool_available(self.runner, "connmanctl"):
            self.runner.run_silent(["connmanctl", "disable", "wifi", ifname])
            self.runner.sleep(SETTLE_S)

        self.detach_supplicant(ifname)
        self.runner.sleep(SETTLE_S)
        log.info("nm_exclusion_applied iface=%s", ifname)

    def restore(self) -> None:
        """Safe without a prior exclude()."""
        self._names.clear()
        existed = self.dropin_path.exists()
        try:
            os.unlink(self.dropin_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("nm_dropin_remove_failed path=%s err=%s", self.dropin_path, exc)
        self._reload_nm()
        if existed:
            log.info("nm_exclusion_restored")
