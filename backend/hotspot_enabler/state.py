import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from hotspot_enabler.config import HotspotConfig, config_as_dict

MAX_CLIENTS = 64
ANONYMOUS_HOSTNAME = "(unknown)"


class HotspotPhase(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class WifiClientInterface:
    name: str
    phy: Optional[str] = None
    ssid: str = ""
    ip: str = ""
    mac: str = ""
    channel: int = 0
    signal_dbm: int = 0
    connected: bool = False
    supports_ap: bool = False


@dataclass(frozen=True)
class ConnectedClient:
    mac: str
    ip: str
    hostname: str = ANONYMOUS_HOSTNAME


def _client_roster() -> Deque[ConnectedClient]:
    return deque(maxlen=MAX_CLIENTS)


@dataclass
class HotspotRuntimeState:
    """
    One per process. Owns the AP interface name, both daemon pids and the
    NAT bookkeeping; only the lifecycle orchestrator mutates it.
    """

    phase: HotspotPhase = HotspotPhase.STOPPED
    config: HotspotConfig = field(default_factory=HotspotConfig)
    wifi: Optional[WifiClientInterface] = None
    ap_iface: Optional[str] = None
    phy: Optional[str] = None
    ap_channel: Optional[int] = None
    ap_phase: Optional[str] = None
    clients: Deque[ConnectedClient] = field(default_factory=_client_roster)
    start_time: float = 0.0
    last_error: str = ""
    hostapd_pid: Optional[int] = None
    dnsmasq_pid: Optional[int] = None
    ip_forward_was_enabled: bool = False
    nat_active: bool = False

    def set_clients(self, clients: List[ConnectedClient]) -> None:
        self.clients.clear()
        self.clients.extend(clients)

    def snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "config": config_as_dict(self.config),
            "wifi": asdict(self.wifi) if self.wifi else None,
            "ap_interface": self.ap_iface,
            "phy": self.phy,
            "ap_channel": self.ap_channel,
            "ap_phase": self.ap_phase,
            "clients": [asdict(c) for c in self.clients],
            "client_count": len(self.clients),
            "start_time": self.start_time,
            "uptime": format_uptime(self.start_time, now),
            "last_error": self.last_error,
            "hostapd_pid": self.hostapd_pid,
            "dnsmasq_pid": self.dnsmasq_pid,
            "ip_forward_was_enabled": self.ip_forward_was_enabled,
            "nat_active": self.nat_active,
        }


def format_uptime(start_time: float, now: Optional[float] = None) -> str:
    if not start_time:
        return "--"
    now = time.time() if now is None else now
    elapsed = max(0, int(now - start_time))
    hours, rem = divmod(elapsed, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
