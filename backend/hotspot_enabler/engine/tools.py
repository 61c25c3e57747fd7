from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from hotspot_enabler.engine.runner import CommandRunner

# (tool, purpose, required)
_TOOLS: Tuple[Tuple[str, str, bool], ...] = (
    ("iw", "wireless configuration tool", True),
    ("ip", "link and address configuration", True),
    ("hostapd", "access point daemon", True),
    ("dnsmasq", "DHCP/DNS server", True),
    ("iptables", "firewall/NAT rules", True),
    ("sysctl", "kernel IP forwarding switch", False),
    ("nmcli", "NetworkManager control", False),
    ("connmanctl", "connman control", False),
    ("wpa_cli", "wpa_supplicant control", False),
    ("rfkill", "radio kill-switch control", False),
)


@dataclass(frozen=True)
class ToolStatus:
    name: str
    purpose: str
    required: bool
    path: Optional[str]

    @property
    def available(self) -> bool:
        return self.path is not None


def check_tools(runner: CommandRunner) -> Dict[str, ToolStatus]:
    out: Dict[str, ToolStatus] = {}
    for name, purpose, required in _TOOLS:
        out[name] = ToolStatus(name=name, purpose=purpose, required=required, path=runner.which(name))
    return out


def missing_required(statuses: Dict[str, ToolStatus]) -> List[str]:
    return [s.name for s in statuses.values() if s.required and not s.available]


def tool_available(runner: CommandRunner, name: str) -> bool:
    return runner.which(name) is not None
