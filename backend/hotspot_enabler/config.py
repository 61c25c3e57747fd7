import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger("hotspot_enabler.config")

CONFIG_PATH = Path("/etc/hotspot-enabler/hotspot.conf")
_CONFIG_ENV = "HOTSPOT_ENABLER_CONFIG"

# Fixed AP network
AP_SUBNET = "192.168.12.0/24"
AP_GATEWAY = "192.168.12.1"
AP_PREFIX_LEN = 24
AP_DHCP_START = "192.168.12.10"
AP_DHCP_END = "192.168.12.254"
AP_DHCP_LEASE_TIME = "12h"
AP_DNS_SERVERS = "8.8.8.8,8.8.4.4"

MIN_PASSWORD_LEN = 8
MAX_PASSWORD_LEN = 63
MAX_SSID_BYTES = 32
MAX_CLIENTS_LIMIT = 255


@dataclass
class HotspotConfig:
    ssid: str = "LinuxHotspot"
    password: str = "password123"
    channel: int = 0  # 0 = inherit the client's channel at generation time
    max_clients: int = 10
    hidden: bool = False


@dataclass(frozen=True)
class RuntimePaths:
    hostapd_conf: Path = Path("/tmp/hotspot_enabler_hostapd.conf")
    hostapd_log: Path = Path("/tmp/hotspot_enabler_hostapd.log")
    hostapd_pid: Path = Path("/tmp/hotspot_enabler_hostapd.pid")
    dnsmasq_conf: Path = Path("/tmp/hotspot_enabler_dnsmasq.conf")
    dnsmasq_log: Path = Path("/tmp/hotspot_enabler_dnsmasq.log")
    dnsmasq_pid: Path = Path("/tmp/hotspot_enabler_dnsmasq.pid")
    lease_file: Path = Path("/tmp/hotspot_enabler_dnsmasq.leases")
    nm_dropin: Path = Path("/etc/NetworkManager/conf.d/hotspot-enabler-unmanaged.conf")
    sys_class_net: Path = Path("/sys/class/net")
    ip_forward: Path = Path("/proc/sys/net/ipv4/ip_forward")

    def generated_files(self) -> List[Path]:
        return [
            self.hostapd_conf,
            self.dnsmasq_conf,
            self.lease_file,
            self.hostapd_log,
            self.hostapd_pid,
            self.dnsmasq_pid,
            self.dnsmasq_log,
        ]

    @classmethod
    def under(cls, root: Path) -> "RuntimePaths":
        """All runtime files rooted in one directory (tests, sandboxes)."""
        return cls(
            hostapd_conf=root / "hostapd.conf",
            hostapd_log=root / "hostapd.log",
            hostapd_pid=root / "hostapd.pid",
            dnsmasq_conf=root / "dnsmasq.conf",
            dnsmasq_log=root / "dnsmasq.log",
            dnsmasq_pid=root / "dnsmasq.pid",
            lease_file=root / "dnsmasq.leases",
            nm_dropin=root / "nm-unmanaged.conf",
            sys_class_net=root / "sys_class_net",
            ip_forward=root / "ip_forward",
        )


def config_path() -> Path:
    override = (os.environ.get(_CONFIG_ENV) or "").strip()
    return Path(override) if override else CONFIG_PATH


# -- validation ---------------------------------------------------------------


def valid_ssid(value: str) -> bool:
    return bool(value) and len(value.encode("utf-8")) <= MAX_SSID_BYTES and "\n" not in value


def valid_password(value: str) -> bool:
    return MIN_PASSWORD_LEN <= len(value) <= MAX_PASSWORD_LEN and "\n" not in value


def valid_channel(value: int) -> bool:
    return value == 0 or 1 <= value <= 14 or 32 <= value <= 196


def valid_max_clients(value: int) -> bool:
    return 1 <= value <= MAX_CLIENTS_LIMIT


def _parse_bool(raw: str) -> Optional[bool]:
    low = raw.strip().lower()
    if low in ("1", "true", "yes", "on"):
        return True
    if low in ("0", "false", "no", "off"):
        return False
    return None


def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _coerce(key: str, raw: str) -> Any:
    """Returns the typed, validated value for a config key, or None if invalid."""
    if key == "ssid":
        return raw if valid_ssid(raw) else None
    if key == "password":
        return raw if valid_password(raw) else None
    if key == "channel":
        val = _parse_int(raw)
        return val if val is not None and valid_channel(val) else None
    if key == "max_clients":
        val = _parse_int(raw)
        return val if val is not None and valid_max_clients(val) else None
    if key == "hidden":
        return _parse_bool(raw)
    return None


_KEYS = tuple(f.name for f in fields(HotspotConfig))


# -- persistence --------------------------------------------------------------


def parse_config_text(text: str) -> HotspotConfig:
    cfg = HotspotConfig()
    for raw in text.splitlines():
        line = raw.rstrip("\r")
        if not line.strip() or line.lstrip().startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key not in _KEYS:
            continue
        typed = _coerce(key, value)
        if typed is None:
            log.warning("config_value_invalid key=%s", key)
            continue
        setattr(cfg, key, typed)
    return cfg


def render_config(cfg: HotspotConfig) -> str:
    lines = [
        f"ssid={cfg.ssid}",
        f"password={cfg.password}",
        f"channel={int(cfg.channel)}",
        f"max_clients={int(cfg.max_clients)}",
        f"hidden={1 if cfg.hidden else 0}",
    ]
    return "\n".join(lines) + "\n"


def load_config(path: Optional[Path] = None) -> HotspotConfig:
    """
    Returns defaults merged with the on-disk file. Never raises.
    """
    path = path or config_path()
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return HotspotConfig()
    except OSError as exc:
        log.warning("config_read_failed path=%s err=%s", path, exc)
        return HotspotConfig()
    return parse_config_text(text)


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        try:
            os.fsync(f.fileno())
        except OSError:
            pass
    os.replace(tmp, path)
    os.chmod(path, 0o600)


def save_config(cfg: HotspotConfig, path: Optional[Path] = None) -> bool:
    if not valid_password(cfg.password):
        log.warning("config_save_rejected reason=password_min_length_%d", MIN_PASSWORD_LEN)
        return False
    path = path or config_path()
    try:
        _write_atomic(path, render_config(cfg))
    except OSError as exc:
        log.warning("config_save_failed path=%s err=%s", path, exc)
        return False
    return True


def update_config(cfg: HotspotConfig, key: str, raw_value: str, path: Optional[Path] = None) -> bool:
    """
    Validated single-field write through the save path. On rejection the
    passed config is left untouched and a warning is logged.
    """
    if key not in _KEYS:
        log.warning("config_key_unknown key=%s", key)
        return False
    typed = _coerce(key, raw_value)
    if typed is None:
        if key == "password":
            log.warning("config_password_rejected reason=min_length_%d", MIN_PASSWORD_LEN)
        else:
            log.warning("config_value_rejected key=%s", key)
        return False
    candidate = replace(cfg, **{key: typed})
    if not save_config(candidate, path):
        return False
    setattr(cfg, key, typed)
    log.info("config_saved key=%s", key)
    return True


def set_password(cfg: HotspotConfig, candidate: str, path: Optional[Path] = None) -> bool:
    return update_config(cfg, "password", candidate, path)


def config_as_dict(cfg: HotspotConfig, redact: bool = True) -> Dict[str, Any]:
    out: Dict[str, Any] = {k: getattr(cfg, k) for k in _KEYS}
    if redact:
        out["password"] = "********"
    return out
