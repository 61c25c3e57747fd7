import logging
import re
from typing import List, Optional, Sequence, Tuple

from hotspot_enabler.engine.nm_exclusion import NetworkManagerExclusion
from hotspot_enabler.engine.runner import CommandRunner

log = logging.getLogger("hotspot_enabler.engine.virt_iface")

AP_IFACE_CANDIDATES: Tuple[str, ...] = ("ap0", "ap1", "hsap0", "hsap1")

_SETTLE_S = 0.3
_CREATE_SETTLE_S = 0.5
_REMOVE_VERIFY_ATTEMPTS = 5
_IW_PHY_RE = re.compile(r"^phy#(\d+)$")


def parse_iw_dev_ifaces(iw_text: str) -> List[Tuple[str, Optional[str]]]:
    """
    `iw dev` -> [(ifname, type)] in listing order.
    """
    out: List[Tuple[str, Optional[str]]] = []
    cur: Optional[str] = None
    cur_type: Optional[str] = None
    for raw in (iw_text or "").splitlines():
        line = raw.strip()
        if _IW_PHY_RE.match(line) or line.startswith("Interface "):
            if cur:
                out.append((cur, cur_type))
            cur, cur_type = None, None
            if line.startswith("Interface "):
                parts = line.split()
                cur = parts[1] if len(parts) > 1 else None
            continue
        if cur and line.startswith("type "):
            cur_type = line.split(" ", 1)[1].strip()
    if cur:
        out.append((cur, cur_type))
    return out


class VirtualInterfaceManager:
    def __init__(
        self,
        runner: CommandRunner,
        nm: NetworkManagerExclusion,
        candidates: Sequence[str] = AP_IFACE_CANDIDATES,
    ):
        self.runner = runner
        self.nm = nm
        self.candidates = tuple(candidates)

    def exists(self, ifname: str) -> bool:
        return self.runner.run_silent(["iw", "dev", ifname, "info"]) == 0

    def force_remove(self, ifname: str) -> bool:
        """
        Tear down a stale interface of this name. Returns True once it is
        gone (or never existed).
        """
        if not self.exists(ifname):
            return True
        log.info("stale_iface_removing iface=%s", ifname)
        self.runner.run_silent(["ip", "link", "set", ifname, "down"])
        self.runner.run_silent(["ip", "addr", "flush", "dev", ifname])
        self.nm.detach_supplicant(ifname)
        self.nm.set_unmanaged(ifname)
        self.runner.run_silent(["iw", "dev", ifname, "del"])
        for _ in range(_REMOVE_VERIFY_ATTEMPTS):
            self.runner.sleep(_SETTLE_S)
            if not self.exists(ifname):
                return True
        log.warning("stale_iface_still_present iface=%s", ifname)
        return False

    def _add_ap_iface(self, phy: str, client_iface: str, ifname: str) -> bool:
        rc = self.runner.run_silent(["iw", "phy", phy, "interface", "add", ifname, "type", "__ap"])
        if rc == 0:
            return True
        rc = self.runner.run_silent(["iw", "dev", client_iface, "interface", "add", ifname, "type", "__ap"])
        return rc == 0

    def create(self, phy: str, client_iface: str) -> str:
        tried: List[str] = []
        for cand in self.candidates:
            tried.append(cand)
            if not self.force_remove(cand):
                continue
            self.nm.register(cand)
            if self._add_ap_iface(phy, client_iface, cand):
                self.runner.sleep(_CREATE_SETTLE_S)
                log.info("ap_iface_created iface=%s phy=%s parent=%s", cand, phy, client_iface)
                return cand
            log.warning("ap_iface_create_failed iface=%s phy=%s", cand, phy)
        raise RuntimeError(
            f"Failed to create virtual AP interface (tried {', '.join(tried)}). "
            "Your WiFi driver may not support AP/STA concurrency."
        )

    def assign_address(self, ifname: str, cidr: str) -> None:
        """
        Never raises; hostapd may already have the link in a usable state.
        """
        self.runner.run_silent(["ip", "link", "set", ifname, "up"])
        self.runner.run_silent(["ip", "addr", "flush", "dev", ifname])
        if self.runner.run_silent(["ip", "addr", "add", cidr, "dev", ifname]) == 0:
            return
        # RTNETLINK "File exists"
        self.runner.sleep(0.2)
        if self.runner.run_silent(["ip", "addr", "replace", cidr, "dev", ifname]) != 0:
            log.warning("ap_addr_assign_failed iface=%s cidr=%s", ifname, cidr)

    def destroy(self, ifname: Optional[str]) -> None:
        if not ifname:
            return
        self.runner.run_silent(["iw", "dev", ifname, "del"])

    def sweep_stale_ap_ifaces(self) -> List[str]:
        """
        Delete leftover AP-type interfaces carrying one of our names.
        """
        out, ok = self.runner.run_capturing(["iw", "dev"])
        if not ok:
            return []
        removed: List[str] = []
        for ifname, iface_type in parse_iw_dev_ifaces(out):
            if ifname not in self.candidates:
                continue
            if not (iface_type or "").upper().startswith("AP"):
                continue
            self.runner.run_silent(["iw", "dev", ifname, "del"])
            removed.append(ifname)
        return removed
