import signal
from typing import Callable, List, Optional, Tuple

import pytest

from hotspot_enabler.config import RuntimePaths

DEFAULT_TOOLS = {
    "iw",
    "ip",
    "hostapd",
    "dnsmasq",
    "iptables",
    "sysctl",
    "nmcli",
    "connmanctl",
    "wpa_cli",
    "rfkill",
}


class FakeRunner:
    """
    Command runner double. Rules match on a command prefix; the most
    recently added matching rule wins. Unmatched commands succeed silently.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.rules: List[Tuple[Tuple[str, ...], Callable[[List[str]], Tuple[str, int]]]] = []
        self.tools = set(DEFAULT_TOOLS)
        self.alive = set()
        self.signals: List[Tuple[int, int]] = []
        self.slept = 0.0

    def on(
        self,
        *prefix: str,
        out: str = "",
        rc: int = 0,
        fn: Optional[Callable[[List[str]], Tuple[str, int]]] = None,
    ) -> None:
        handler = fn if fn is not None else (lambda _cmd: (out, rc))
        self.rules.insert(0, (tuple(prefix), handler))

    def _dispatch(self, cmd: List[str]) -> Tuple[str, int]:
        self.calls.append(list(cmd))
        for prefix, handler in self.rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                return handler(list(cmd))
        return "", 0

    def run_capturing(self, cmd: List[str]) -> Tuple[str, bool]:
        out, rc = self._dispatch(cmd)
        return out, rc == 0

    def run_silent(self, cmd: List[str]) -> int:
        _out, rc = self._dispatch(cmd)
        return rc

    def which(self, tool: str) -> Optional[str]:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def pid_alive(self, pid: Optional[int]) -> bool:
        return bool(pid) and pid in self.alive

    def send_signal(self, pid: int, sig: int) -> bool:
        self.signals.append((pid, sig))
        if pid not in self.alive:
            return False
        if sig in (signal.SIGTERM, signal.SIGKILL):
            self.alive.discard(pid)
        return True

    def sleep(self, seconds: float) -> None:
        self.slept += seconds

    def ran(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == tuple(prefix)]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def paths(tmp_path) -> RuntimePaths:
    return RuntimePaths.under(tmp_path / "run")


def make_wireless_iface(sys_class_net, name: str, phy: str = "phy0", mac: str = "00:11:22:33:44:55") -> None:
    d = sys_class_net / name
    (d / "wireless").mkdir(parents=True)
    (d / "phy80211").mkdir()
    (d / "phy80211" / "name").write_text(phy + "\n")
    (d / "address").write_text(mac + "\n")


def iw_link_connected(ssid: str = "HomeNet", signal_dbm: int = -48) -> str:
    return (
        "Connected to 11:22:33:44:55:66 (on wlan0)\n"
        f"\tSSID: {ssid}\n"
        "\tfreq: 5745\n"
        f"\tsignal: {signal_dbm} dBm\n"
    )


def iw_info(channel: int) -> str:
    return (
        "Interface wlan0\n"
        "\tifindex 3\n"
        "\ttype managed\n"
        "\twiphy 0\n"
        f"\tchannel {channel} (5745 MHz), width: 80 MHz, center1: 5775 MHz\n"
    )


IW_PHY_AP_STA = """Wiphy phy0
	Supported interface modes:
		 * managed
		 * AP
		 * monitor
	valid interface combinations:
		 * #{ managed } <= 1, #{ AP, P2P-client, P2P-GO } <= 1,
		   total <= 2, #channels <= 1
"""


@pytest.fixture
def make_iface() -> Callable[..., None]:
    return make_wireless_iface
