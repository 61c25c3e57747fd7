import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from hotspot_enabler import config as config_store
from hotspot_enabler.config import AP_GATEWAY, AP_PREFIX_LEN, HotspotConfig, RuntimePaths
from hotspot_enabler.engine.daemon_conf import detect_country_code, generate_dnsmasq_conf
from hotspot_enabler.engine.nat import NatManager
from hotspot_enabler.engine.nm_exclusion import NetworkManagerExclusion
from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.engine.supervisor import start_dnsmasq, start_hostapd, terminate_process
from hotspot_enabler.engine.tools import tool_available
from hotspot_enabler.engine.virt_iface import VirtualInterfaceManager
from hotspot_enabler.logging import EventLogHandler
from hotspot_enabler.state import (
    MAX_CLIENTS,
    HotspotPhase,
    HotspotRuntimeState,
    format_uptime,
)
from hotspot_enabler.wifi_probe import detect_client_interface, list_connected_clients, refresh

log = logging.getLogger("hotspot_enabler.lifecycle")

CANCELLED_MESSAGE = "Start cancelled by shutdown request."


class LifecycleResult:
    def __init__(self, code, state):
        self.code = code
        self.state = state


class _StartCancelled(Exception):
    pass


class HotspotOrchestrator:
    """
    Sequences detection, interface, exclusion, daemons and NAT into start/stop.

    Single-threaded: the only cross-thread input is `stop_event`, which is
    polled between start phases.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        paths: Optional[RuntimePaths] = None,
        config: Optional[HotspotConfig] = None,
        stop_event: Optional[threading.Event] = None,
        event_log: Optional[EventLogHandler] = None,
        config_file: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.runner = runner or CommandRunner()
        self.paths = paths or RuntimePaths()
        self.stop_event = stop_event or threading.Event()
        self.event_log = event_log
        self.config_file = config_file
        self.env = env
        self.clock = clock

        self.state = HotspotRuntimeState(config=config or HotspotConfig())
        self.nm = NetworkManagerExclusion(self.runner, self.paths.nm_dropin)
        self.vif = VirtualInterfaceManager(self.runner, self.nm)
        self.nat = NatManager(self.runner, self.paths.ip_forward)

    # -- start ------------------------------------------------------------------

    def _checkpoint(self) -> None:
        if self.stop_event.is_set():
            raise _StartCancelled()

    def start(self) -> LifecycleResult:
        st = self.state
        if st.phase == HotspotPhase.RUNNING:
            return LifecycleResult("already_running", st)
        if st.phase == HotspotPhase.ERROR:
            self.cleanup()

        st.phase = HotspotPhase.STARTING
        st.last_error = ""
        log.info("hotspot_starting ssid=%s channel=%d", st.config.ssid, st.config.channel)

        try:
            self._start_sequence()
        except _StartCancelled:
            log.info("hotspot_start_cancelled")
            self.cleanup()
            st.phase = HotspotPhase.STOPPED
            st.last_error = CANCELLED_MESSAGE
            return LifecycleResult("start_cancelled", st)
        except RuntimeError as exc:
            return self._fail(str(exc))
        except Exception as exc:
            log.exception("hotspot_start_unexpected_error")
            return self._fail(f"Unexpected error during start: {exc}")

        st.phase = HotspotPhase.RUNNING
        st.start_time = self.clock()
        st.clients.clear()
        log.info(
            "hotspot_running ap=%s channel=%s phase=%s hostapd_pid=%s dnsmasq_pid=%s",
            st.ap_iface,
            st.ap_channel,
            st.ap_phase,
            st.hostapd_pid,
            st.dnsmasq_pid,
        )
        return LifecycleResult("started", st)

    def _fail(self, message: str) -> LifecycleResult:
        st = self.state
        log.error("hotspot_start_failed err=%s", message)
        st.last_error = message
        self.cleanup()
        st.phase = HotspotPhase.ERROR
        return LifecycleResult("start_failed", st)

    def _start_sequence(self) -> None:
        st = self.state
        runner = self.runner

        self._checkpoint()
        wifi = detect_client_interface(
            runner,
            exclude=self.vif.candidates,
            sys_class_net=self.paths.sys_class_net,
        )
        if wifi is None:
            raise RuntimeError("No WiFi interface detected.")
        st.wifi = wifi
        if not wifi.phy:
            raise RuntimeError("Cannot determine physical WiFi device.")
        st.phy = wifi.phy

        if tool_available(runner, "rfkill"):
            runner.run_silent(["rfkill", "unblock", "wifi"])
        if not wifi.supports_ap:
            log.warning("ap_sta_concurrency_not_reported phy=%s attempting_anyway", wifi.phy)

        self._checkpoint()
        st.ap_iface = self.vif.create(wifi.phy, wifi.name)

        self._checkpoint()
        self.nm.exclude(st.ap_iface)

        self._checkpoint()
        generate_dnsmasq_conf(st, self.paths)

        country = detect_country_code(runner, self.env)
        result = start_hostapd(
            runner,
            st,
            self.paths,
            self.nm,
            country=country,
            should_stop=self.stop_event.is_set,
        )
        if result.cancelled:
            raise _StartCancelled()
        if not result.ok:
            raise RuntimeError(result.error)
        st.hostapd_pid = result.pid
        st.ap_channel = result.channel
        st.ap_phase = result.phase.value if result.phase else None

        self._checkpoint()
        self.vif.assign_address(st.ap_iface, f"{AP_GATEWAY}/{AP_PREFIX_LEN}")

        self._checkpoint()
        st.dnsmasq_pid = start_dnsmasq(runner, self.paths)

        self._checkpoint()
        st.ip_forward_was_enabled = self.nat.enable(wifi.name, st.ap_iface)
        st.nat_active = True

    # -- stop / cleanup -----------------------------------------------------------

    def stop(self) -> LifecycleResult:
        st = self.state
        was_stopped = st.phase == HotspotPhase.STOPPED
        st.phase = HotspotPhase.STOPPING
        log.info("hotspot_stopping")
        self.cleanup()
        st.phase = HotspotPhase.STOPPED
        st.last_error = ""
        return LifecycleResult("already_stopped" if was_stopped else "stopped", st)

    def _best_effort(self, op: str, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            log.exception("cleanup_step_failed op=%s", op)

    def _remove_generated_files(self) -> None:
        for path in self.paths.generated_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.warning("file_remove_failed path=%s err=%s", path, exc)

    def _disable_nat(self) -> None:
        st = self.state
        if not st.nat_active or not st.wifi or not st.ap_iface:
            return
        self.nat.disable(st.wifi.name, st.ap_iface, st.ip_forward_was_enabled)

    def cleanup(self) -> None:
        """
        Release everything we may own. Safe from any phase, repeatable, and
        never raises. Phase and last_error are left to the caller.
        """
        st = self.state
        paths = self.paths

        self._best_effort("hostapd_terminate", terminate_process, self.runner, st.hostapd_pid, str(paths.hostapd_conf))
        self._best_effort("dnsmasq_terminate", terminate_process, self.runner, st.dnsmasq_pid, str(paths.dnsmasq_conf))
        self._best_effort("nat_disable", self._disable_nat)
        self._best_effort("ap_iface_destroy", self.vif.destroy, st.ap_iface)
        self._best_effort("ap_iface_sweep", self.vif.sweep_stale_ap_ifaces)
        self._best_effort("nm_restore", self.nm.restore)
        self._best_effort("files_remove", self._remove_generated_files)

        st.hostapd_pid = None
        st.dnsmasq_pid = None
        st.ap_iface = None
        st.ap_channel = None
        st.ap_phase = None
        st.nat_active = False
        st.ip_forward_was_enabled = False
        st.start_time = 0.0
        st.clients.clear()
        log.info("hotspot_cleanup_done")

    # -- periodic refresh ------------------------------------------------------------

    def _daemon_died(self, name: str) -> None:
        st = self.state
        st.phase = HotspotPhase.ERROR
        st.last_error = f"{name} process died unexpectedly."
        log.error("daemon_died daemon=%s", name)

    def refresh_status(self) -> None:
        st = self.state
        if st.phase != HotspotPhase.RUNNING:
            return
        if not self.runner.pid_alive(st.hostapd_pid):
            self._daemon_died("hostapd")
            return
        if not self.runner.pid_alive(st.dnsmasq_pid):
            self._daemon_died("dnsmasq")
            return
        if st.wifi is not None:
            refresh(st.wifi, self.runner, sys_class_net=self.paths.sys_class_net)
        limit = min(st.config.max_clients, MAX_CLIENTS)
        st.set_clients(list_connected_clients(self.paths.lease_file, limit))

    # -- presentation boundary ---------------------------------------------------------

    def uptime(self, now: Optional[float] = None) -> str:
        return format_uptime(self.state.start_time, self.clock() if now is None else now)

    def update_config(self, key: str, raw_value: str) -> bool:
        return config_store.update_config(self.state.config, key, raw_value, self.config_file)

    def snapshot(self) -> Dict[str, Any]:
        snap = self.state.snapshot(now=self.clock())
        if self.event_log is not None:
            snap["events"] = [
                {"ts": ts, "level": level, "msg": msg} for ts, level, msg in self.event_log.entries()
            ]
        return snap
