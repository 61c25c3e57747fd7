import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from hotspot_enabler.config import (
    AP_DHCP_END,
    AP_DHCP_LEASE_TIME,
    AP_DHCP_START,
    AP_DNS_SERVERS,
    AP_GATEWAY,
    RuntimePaths,
)
from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.state import HotspotRuntimeState

log = logging.getLogger("hotspot_enabler.engine.daemon_conf")

DEFAULT_CHANNEL = 6
FIVE_GHZ_MIN_CHANNEL = 32
DEFAULT_COUNTRY = "US"

FEATURE_FULL = "full"
FEATURE_MINIMAL = "minimal"

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")
_REG_COUNTRY_RE = re.compile(r"^country\s+([A-Za-z0-9]{2}):")
_LOCALE_RE = re.compile(r"^[a-z]{2,3}_([A-Z]{2})\b")


def is_5ghz_channel(channel: int) -> bool:
    return channel >= FIVE_GHZ_MIN_CHANNEL


def hw_mode_for_channel(channel: int) -> str:
    return "a" if is_5ghz_channel(channel) else "g"


def resolve_channel(requested: int, client_channel: int) -> int:
    """
    Explicit channel wins; 0 inherits the client's channel (the radio can
    only serve one channel under AP/STA concurrency); unknown falls back to 6.
    """
    if requested and requested > 0:
        return int(requested)
    if client_channel and client_channel > 0:
        return int(client_channel)
    return DEFAULT_CHANNEL


def resolve_state_channel(state: HotspotRuntimeState) -> int:
    client_channel = state.wifi.channel if state.wifi else 0
    return resolve_channel(state.config.channel, client_channel)


# -- regulatory country --------------------------------------------------------


def parse_iw_reg_country(text: str) -> Optional[str]:
    """Global country from `iw reg get`; the world domain 00 counts as unknown."""
    for raw in (text or "").splitlines():
        m = _REG_COUNTRY_RE.match(raw.strip())
        if not m:
            continue
        cc = m.group(1).upper()
        if _COUNTRY_RE.match(cc) and cc != "00":
            return cc
        return None
    return None


def country_from_locale(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    # Locale territory is a hint, not a regulatory domain.
    env = os.environ if env is None else env
    for key in ("LC_ALL", "LC_MESSAGES", "LANG"):
        m = _LOCALE_RE.match((env.get(key) or "").strip())
        if m:
            return m.group(1)
    return None


def detect_country_code(runner: CommandRunner, env: Optional[Mapping[str, str]] = None) -> str:
    out, ok = runner.run_capturing(["iw", "reg", "get"])
    cc = parse_iw_reg_country(out) if ok else None
    if cc:
        return cc
    cc = country_from_locale(env)
    if cc:
        return cc
    return DEFAULT_COUNTRY


# -- hostapd ----------------------------------------------------------------------


def render_hostapd_conf(
    *,
    ifname: str,
    ssid: str,
    passphrase: str,
    channel: int,
    country: str,
    hidden: bool,
    max_clients: int,
    feature_level: str = FEATURE_FULL,
) -> str:
    full = feature_level == FEATURE_FULL
    five = is_5ghz_channel(channel)

    lines: List[str] = [
        f"interface={ifname}",
        "driver=nl80211",
        f"ssid={ssid}",
        f"hw_mode={hw_mode_for_channel(channel)}",
        f"channel={int(channel)}",
        f"country_code={country}",
        "ieee80211d=1",
        f"wmm_enabled={1 if full else 0}",
        "macaddr_acl=0",
        "auth_algs=1",
        f"ignore_broadcast_ssid={1 if hidden else 0}",
        f"max_num_sta={int(max_clients)}",
        "wpa=2",
        f"wpa_passphrase={passphrase}",
        "wpa_key_mgmt=WPA-PSK",
        "rsn_pairwise=CCMP",
    ]

    # Some drivers refuse HT/VHT under AP/STA concurrency; minimal drops them.
    if full:
        lines.append("ieee80211n=1")
        if five:
            lines.append("ieee80211ac=1")

    return "\n".join(lines) + "\n"


def _write_private(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(payload)
    os.chmod(path, 0o600)


def generate_hostapd_conf(
    state: HotspotRuntimeState,
    paths: RuntimePaths,
    *,
    feature_level: str,
    country: str,
    channel: Optional[int] = None,
) -> int:
    """
    Write the AP daemon config; returns the channel written. Raises
    RuntimeError when the file cannot be produced.
    """
    if not state.ap_iface:
        raise RuntimeError("Failed to generate hostapd configuration: no AP interface.")
    ch = int(channel) if channel else resolve_state_channel(state)
    payload = render_hostapd_conf(
        ifname=state.ap_iface,
        ssid=state.config.ssid,
        passphrase=state.config.password,
        channel=ch,
        country=country,
        hidden=state.config.hidden,
        max_clients=state.config.max_clients,
        feature_level=feature_level,
    )
    try:
        _write_private(paths.hostapd_conf, payload)
    except OSError as exc:
        raise RuntimeError("Failed to generate hostapd configuration.") from exc
    log.info("hostapd_conf_written iface=%s channel=%d level=%s", state.ap_iface, ch, feature_level)
    return ch


# -- dnsmasq ----------------------------------------------------------------------


def render_dnsmasq_conf(ifname: str, paths: RuntimePaths, max_clients: int) -> str:
    lines = [
        f"interface={ifname}",
        "bind-interfaces",
        f"dhcp-range={AP_DHCP_START},{AP_DHCP_END},{AP_DHCP_LEASE_TIME}",
        f"dhcp-option=option:router,{AP_GATEWAY}",
        f"dhcp-option=option:dns-server,{AP_DNS_SERVERS}",
        f"dhcp-lease-max={int(max_clients)}",
        f"dhcp-leasefile={paths.lease_file}",
        f"log-facility={paths.dnsmasq_log}",
    ]
    return "\n".join(lines) + "\n"


def generate_dnsmasq_conf(state: HotspotRuntimeState, paths: RuntimePaths) -> None:
    if not state.ap_iface:
        raise RuntimeError("Failed to generate dnsmasq configuration: no AP interface.")
    payload = render_dnsmasq_conf(state.ap_iface, paths, state.config.max_clients)
    try:
        _write_private(paths.dnsmasq_conf, payload)
    except OSError as exc:
        raise RuntimeError("Failed to generate dnsmasq configuration.") from exc


def parse_conf_keys(text: str) -> Dict[str, str]:
    kv: Dict[str, str] = {}
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        kv[k.strip()] = v.strip()
    return kv
