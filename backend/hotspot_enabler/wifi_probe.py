from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.state import ANONYMOUS_HOSTNAME, ConnectedClient, WifiClientInterface

log = logging.getLogger("hotspot_enabler.wifi_probe")

_SYS_CLASS_NET = Path("/sys/class/net")

_IW_SSID_RE = re.compile(r"^\s*SSID:\s?(.*)$")
_IW_SIGNAL_RE = re.compile(r"^\s*signal:\s*(-?\d+)")
_IW_CHANNEL_RE = re.compile(r"^\s*channel\s+(\d+)")
_INET_RE = re.compile(r"^\s*inet\s+(\d{1,3}(?:\.\d{1,3}){3})")
_MAC_RE = re.compile(r"^[0-9a-fA-F]{2}(?::[0-9a-fA-F]{2}){5}$")

# Lines inspected after each capability header in `iw phy <phy> info`.
_COMBINATION_WINDOW = 8
_MODES_WINDOW = 10


def phy_name(ifname: str, sys_class_net: Path = _SYS_CLASS_NET) -> Optional[str]:
    try:
        raw = (sys_class_net / ifname / "phy80211" / "name").read_text(encoding="utf-8")
    except OSError:
        return None
    name = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    return name or None


def _wireless_ifaces(sys_class_net: Path) -> List[str]:
    try:
        names = sorted(p.name for p in sys_class_net.iterdir())
    except OSError:
        return []
    return [n for n in names if not n.startswith(".") and (sys_class_net / n / "wireless").exists()]


def detect_client_interface(
    runner: CommandRunner,
    exclude: Iterable[str] = (),
    sys_class_net: Path = _SYS_CLASS_NET,
) -> Optional[WifiClientInterface]:
    """
    First wireless interface that is not one of our AP interfaces, with its
    link facts and AP/STA capability filled in. None when nothing matches.
    """
    skip = set(exclude)
    for name in _wireless_ifaces(sys_class_net):
        if name in skip:
            continue
        iface = WifiClientInterface(name=name, phy=phy_name(name, sys_class_net))
        refresh(iface, runner, sys_class_net=sys_class_net)
        if iface.phy:
            iface.supports_ap = check_ap_concurrency(iface.phy, runner)
        log.info(
            "client_iface_detected iface=%s phy=%s connected=%s channel=%d ap_sta=%s",
            iface.name,
            iface.phy,
            iface.connected,
            iface.channel,
            iface.supports_ap,
        )
        return iface
    return None


# -- iw / ip output parsing ---------------------------------------------------


def parse_iw_link(text: str) -> dict:
    """
    `iw dev <if> link`: returns {"connected", "ssid", "signal_dbm"}.
    "Not connected." yields connected=False.
    """
    out = {"connected": False, "ssid": "", "signal_dbm": None}
    for raw in (text or "").splitlines():
        m = _IW_SSID_RE.match(raw)
        if m:
            out["ssid"] = m.group(1).strip()
            out["connected"] = True
            continue
        m = _IW_SIGNAL_RE.match(raw)
        if m:
            out["signal_dbm"] = int(m.group(1))
    return out


def parse_iw_info_channel(text: str) -> int:
    for raw in (text or "").splitlines():
        m = _IW_CHANNEL_RE.match(raw)
        if m:
            return int(m.group(1))
    return 0


def parse_inet_addr(text: str) -> Optional[str]:
    for raw in (text or "").splitlines():
        m = _INET_RE.match(raw)
        if m:
            return m.group(1)
    return None


def refresh(
    iface: WifiClientInterface,
    runner: CommandRunner,
    sys_class_net: Path = _SYS_CLASS_NET,
) -> None:
    """
    Re-read link state in place. Fields that cannot be read keep their
    previous values; never raises.
    """
    try:
        out, ok = runner.run_capturing(["iw", "dev", iface.name, "link"])
        if ok:
            link = parse_iw_link(out)
            iface.connected = link["connected"]
            iface.ssid = link["ssid"]
            if link["signal_dbm"] is not None:
                iface.signal_dbm = link["signal_dbm"]

        out, ok = runner.run_capturing(["ip", "-4", "addr", "show", iface.name])
        if ok:
            addr = parse_inet_addr(out)
            if addr:
                iface.ip = addr

        try:
            mac = (sys_class_net / iface.name / "address").read_text(encoding="utf-8").strip()
        except OSError:
            mac = ""
        if mac:
            iface.mac = mac

        out, ok = runner.run_capturing(["iw", "dev", iface.name, "info"])
        if ok:
            iface.channel = parse_iw_info_channel(out)
    except Exception:
        log.exception("client_iface_refresh_failed iface=%s", iface.name)


# -- AP/STA concurrency ---------------------------------------------------------


def _section_after(text: str, header: str, window: int) -> Optional[str]:
    lines = text.splitlines()
    for idx, raw in enumerate(lines):
        if header in raw:
            return "\n".join(lines[idx + 1 : idx + 1 + window])
    return None


def _mentions_managed_and_ap(section: Optional[str]) -> bool:
    if not section:
        return False
    return "managed" in section and re.search(r"\bAP\b", section) is not None


def parse_ap_managed_concurrency(iw_phy_text: str) -> Optional[bool]:
    """Combination-block heuristic. None when the block is absent."""
    section = _section_after(iw_phy_text or "", "valid interface combinations:", _COMBINATION_WINDOW)
    if section is None:
        return None
    return _mentions_managed_and_ap(section)


def parse_supported_interface_modes(iw_phy_text: str) -> Optional[bool]:
    """Supported-modes heuristic. None when the list is absent."""
    section = _section_after(iw_phy_text or "", "Supported interface modes:", _MODES_WINDOW)
    if section is None:
        return None
    return _mentions_managed_and_ap(section)


def check_ap_concurrency(phy: str, runner: CommandRunner) -> bool:
    """
    Advisory only: start() is attempted regardless of the answer.
    """
    out, _ok = runner.run_capturing(["iw", "phy", phy, "info"])
    if not out:
        return False
    if parse_ap_managed_concurrency(out):
        return True
    return bool(parse_supported_interface_modes(out))


# -- DHCP leases ------------------------------------------------------------------


def parse_lease_line(line: str) -> Optional[ConnectedClient]:
    """
    dnsmasq lease record: `<expiry> <mac> <ip> <hostname> [<client-id>]`.
    """
    parts = line.split()
    if len(parts) < 3:
        return None
    _ts, mac, ip = parts[0], parts[1], parts[2]
    if not _MAC_RE.match(mac):
        return None
    hostname = parts[3] if len(parts) > 3 else ""
    if not hostname or hostname == "*":
        hostname = ANONYMOUS_HOSTNAME
    return ConnectedClient(mac=mac.lower(), ip=ip, hostname=hostname)


def list_connected_clients(lease_file: Path, max_clients: int) -> List[ConnectedClient]:
    try:
        text = lease_file.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return []
    clients: List[ConnectedClient] = []
    for raw in text.splitlines():
        if len(clients) >= max_clients:
            break
        client = parse_lease_line(raw)
        if client is not None:
            clients.append(client)
    return clients
