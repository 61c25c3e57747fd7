import logging
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from hotspot_enabler.config import RuntimePaths
from hotspot_enabler.engine.daemon_conf import (
    DEFAULT_CHANNEL,
    FEATURE_FULL,
    FEATURE_MINIMAL,
    generate_hostapd_conf,
    is_5ghz_channel,
    resolve_state_channel,
)
from hotspot_enabler.engine.nm_exclusion import NetworkManagerExclusion
from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.state import HotspotRuntimeState

log = logging.getLogger("hotspot_enabler.engine.supervisor")

HOSTAPD_SETTLE_S = 1.5
DNSMASQ_SETTLE_S = 0.3

TERM_POLL_ATTEMPTS = 30
TERM_POLL_INTERVAL_S = 0.1

CHANNEL_REJECTED_MARKER = "could not select hw_mode and channel"

LOG_TAIL_LINES = 5
ERROR_TAIL_MAX_CHARS = 400


class ApPhase(str, Enum):
    FULL = "full"
    MINIMAL = "minimal"
    FALLBACK_FULL = "fallback_full"
    FALLBACK_MINIMAL = "fallback_minimal"
    FAILED = "failed"


# phase -> (feature level, forced fallback channel)
PHASE_SETTINGS: Dict[ApPhase, Tuple[str, bool]] = {
    ApPhase.FULL: (FEATURE_FULL, False),
    ApPhase.MINIMAL: (FEATURE_MINIMAL, False),
    ApPhase.FALLBACK_FULL: (FEATURE_FULL, True),
    ApPhase.FALLBACK_MINIMAL: (FEATURE_MINIMAL, True),
}


def next_phase(phase: ApPhase, *, channel_rejected: bool, client_5ghz: bool) -> ApPhase:
    """
    Transition taken after `phase` failed to bring the AP daemon up.

    The 2.4GHz fallback is entered only from MINIMAL, and only when the
    driver rejected the channel while the client is on a 5GHz channel.
    """
    if phase == ApPhase.FULL:
        return ApPhase.MINIMAL
    if phase == ApPhase.MINIMAL:
        if channel_rejected and client_5ghz:
            return ApPhase.FALLBACK_FULL
        return ApPhase.FAILED
    if phase == ApPhase.FALLBACK_FULL:
        return ApPhase.FALLBACK_MINIMAL
    return ApPhase.FAILED


@dataclass
class ApStartResult:
    ok: bool
    pid: Optional[int] = None
    channel: Optional[int] = None
    phase: Optional[ApPhase] = None
    error: str = ""
    cancelled: bool = False
    attempts: int = 0


def _read_log_tail(path: Path, max_lines: int = LOG_TAIL_LINES) -> List[str]:
    try:
        data = path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return []
    if not data:
        return []
    return data.splitlines()[-max_lines:]


def _flatten(lines: List[str], max_chars: int = ERROR_TAIL_MAX_CHARS) -> str:
    return " ".join(" ".join(lines).split())[:max_chars]


def channel_rejected_in(lines: List[str]) -> bool:
    return any(CHANNEL_REJECTED_MARKER in ln.lower() for ln in lines)


def _first_pid(text: str) -> Optional[int]:
    for tok in (text or "").split():
        try:
            pid = int(tok)
        except ValueError:
            continue
        if pid > 0:
            return pid
    return None


def set_regulatory_domain(runner: CommandRunner, country: Optional[str]) -> None:
    if not country:
        return
    cc = country.strip().upper()
    if len(cc) != 2:
        return
    rc = runner.run_silent(["iw", "reg", "set", cc])
    if rc != 0:
        log.warning("regdom_set_failed country=%s rc=%s", cc, rc)
    else:
        log.info("regdom_set country=%s", cc)


def _prepare_ap_iface(runner: CommandRunner, nm: NetworkManagerExclusion, ifname: str) -> None:
    # hostapd brings the interface up itself and refuses one that is already up.
    nm.detach_supplicant(ifname)
    nm.set_unmanaged(ifname)
    runner.run_silent(["ip", "link", "set", ifname, "down"])


def _discard_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("file_remove_failed path=%s err=%s", path, exc)


def _failure_message(channel_rejected: bool, client_channel: int, tail: List[str]) -> str:
    if channel_rejected and is_5ghz_channel(client_channel):
        return (
            f"The WiFi driver rejected 5GHz channel {client_channel} for the hotspot. "
            "Reconnect this machine to a 2.4GHz network and start again."
        )
    flat = _flatten(tail)
    return f"hostapd failed: {flat}" if flat else "hostapd failed: no log output."


def start_hostapd(
    runner: CommandRunner,
    state: HotspotRuntimeState,
    paths: RuntimePaths,
    nm: NetworkManagerExclusion,
    *,
    country: str,
    should_stop: Optional[Callable[[], bool]] = None,
) -> ApStartResult:
    """
    Bring the AP daemon up, degrading through the phase table until it
    survives its settle interval or every phase is spent.

    Config generation errors propagate as RuntimeError; daemon failures are
    reported through the result.
    """
    ap_iface = state.ap_iface
    if not ap_iface:
        raise RuntimeError("Cannot start hostapd without an AP interface.")

    requested = resolve_state_channel(state)
    # fallback and the 2.4GHz hint are gated on the client link band
    client_channel = state.wifi.channel if state.wifi else 0
    client_5ghz = is_5ghz_channel(client_channel)
    set_regulatory_domain(runner, country)

    phase = ApPhase.FULL
    channel_rejected = False
    tail: List[str] = []
    attempts = 0

    while phase != ApPhase.FAILED:
        if should_stop is not None and should_stop():
            log.info("hostapd_start_cancelled phase=%s", phase.value)
            return ApStartResult(ok=False, phase=phase, cancelled=True, attempts=attempts)

        level, fallback = PHASE_SETTINGS[phase]
        channel = DEFAULT_CHANNEL if fallback else requested
        generate_hostapd_conf(state, paths, feature_level=level, country=country, channel=channel)

        _prepare_ap_iface(runner, nm, ap_iface)
        _discard_file(paths.hostapd_log)
        _discard_file(paths.hostapd_pid)

        attempts += 1
        log.info("hostapd_phase_start phase=%s channel=%d level=%s", phase.value, channel, level)
        rc = runner.run_silent(
            [
                "hostapd",
                "-B",
                "-P",
                str(paths.hostapd_pid),
                "-f",
                str(paths.hostapd_log),
                str(paths.hostapd_conf),
            ]
        )
        runner.sleep(HOSTAPD_SETTLE_S)

        pid = None
        if rc == 0:
            pid = read_pid_file(paths.hostapd_pid)
            if pid and not runner.pid_alive(pid):
                pid = None

        if pid:
            log.info("hostapd_started phase=%s channel=%d pid=%d", phase.value, channel, pid)
            return ApStartResult(ok=True, pid=pid, channel=channel, phase=phase, attempts=attempts)

        tail = _read_log_tail(paths.hostapd_log)
        if channel_rejected_in(tail):
            channel_rejected = True
        log.warning(
            "hostapd_phase_failed phase=%s channel=%d rc=%s channel_rejected=%s",
            phase.value,
            channel,
            rc,
            channel_rejected,
        )
        # daemonized child may linger half-initialized
        runner.run_silent(["pkill", "-9", "-f", str(paths.hostapd_conf)])

        phase = next_phase(phase, channel_rejected=channel_rejected, client_5ghz=client_5ghz)

    return ApStartResult(
        ok=False,
        phase=ApPhase.FAILED,
        error=_failure_message(channel_rejected, client_channel, tail),
        attempts=attempts,
    )


def read_pid_file(path: Path) -> Optional[int]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return None
    return _first_pid(raw)


def start_dnsmasq(runner: CommandRunner, paths: RuntimePaths) -> int:
    """
    Launch the DHCP/DNS daemon against our generated config and return its
    pid. Raises RuntimeError when it does not come up.
    """
    runner.run_silent(["pkill", "-f", str(paths.dnsmasq_conf)])
    runner.run_silent(["systemctl", "stop", "dnsmasq"])
    runner.sleep(DNSMASQ_SETTLE_S)

    _discard_file(paths.dnsmasq_pid)
    rc = runner.run_silent(["dnsmasq", "-C", str(paths.dnsmasq_conf), f"--pid-file={paths.dnsmasq_pid}"])
    if rc != 0:
        log.warning("dnsmasq_launch_failed rc=%s", rc)
        raise RuntimeError("Failed to start dnsmasq. Port 53 may be in use.")

    runner.sleep(DNSMASQ_SETTLE_S)
    pid = read_pid_file(paths.dnsmasq_pid)
    if not pid:
        raise RuntimeError("dnsmasq started but did not write a pid file.")
    log.info("dnsmasq_started pid=%d", pid)
    return pid


def terminate_process(runner: CommandRunner, pid: Optional[int], sweep_pattern: Optional[str] = None) -> None:
    """
    SIGTERM, bounded wait, SIGKILL, then a pattern sweep for stragglers.
    Never raises.
    """
    try:
        if pid and pid > 0 and runner.send_signal(pid, signal.SIGTERM):
            for _ in range(TERM_POLL_ATTEMPTS):
                if not runner.pid_alive(pid):
                    break
                runner.sleep(TERM_POLL_INTERVAL_S)
            else:
                log.warning("process_kill_escalated pid=%d", pid)
                runner.send_signal(pid, signal.SIGKILL)
        if sweep_pattern:
            runner.run_silent(["pkill", "-9", "-f", sweep_pattern])
    except Exception:
        log.exception("process_terminate_failed pid=%s", pid)
