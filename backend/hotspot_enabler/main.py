import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from hotspot_enabler.config import config_as_dict, config_path, load_config
from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.engine.tools import check_tools, missing_required
from hotspot_enabler.lifecycle import HotspotOrchestrator
from hotspot_enabler.logging import EventLogHandler, setup_logging
from hotspot_enabler.state import HotspotPhase
from hotspot_enabler.wifi_probe import detect_client_interface

log = logging.getLogger("hotspot_enabler.main")

REFRESH_INTERVAL_S = 2.0


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, _frame):
        if stop_event.is_set():
            return
        try:
            sig_name = signal.Signals(signum).name
        except Exception:
            sig_name = str(signum)
        log.info("shutdown_signal:%s", sig_name)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _handler)


def _cmd_run(args: argparse.Namespace) -> int:
    if os.geteuid() != 0:
        print("hotspot-enabler must run as root (try sudo).", file=sys.stderr)
        return 1

    runner = CommandRunner()
    missing = missing_required(check_tools(runner))
    if missing:
        log.error("required_tools_missing tools=%s", ",".join(missing))
        print("Missing required tools: " + ", ".join(missing), file=sys.stderr)
        return 1

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    orch = HotspotOrchestrator(
        runner=runner,
        config=load_config(),
        stop_event=stop_event,
        event_log=args.event_log,
        config_file=config_path(),
    )

    # Leftovers from a previous crashed run.
    try:
        orch.cleanup()
    except Exception:
        log.exception("crash_recovery_cleanup_failed")

    try:
        res = orch.start()
        if res.code != "started":
            print(orch.state.last_error or res.code, file=sys.stderr)
            return 0 if res.code == "start_cancelled" else 2

        while not stop_event.wait(REFRESH_INTERVAL_S):
            orch.refresh_status()
            if orch.state.phase == HotspotPhase.ERROR:
                print(orch.state.last_error, file=sys.stderr)
                return 2
        return 0
    finally:
        try:
            orch.stop()
        except Exception:
            log.exception("stop_on_shutdown_failed")


def _cmd_check(_args: argparse.Namespace) -> int:
    runner = CommandRunner()
    statuses = check_tools(runner)
    iface = detect_client_interface(runner)
    report = {
        "tools": {
            name: {"available": s.available, "required": s.required, "path": s.path, "purpose": s.purpose}
            for name, s in statuses.items()
        },
        "missing_required": missing_required(statuses),
        "client_interface": None
        if iface is None
        else {
            "name": iface.name,
            "phy": iface.phy,
            "connected": iface.connected,
            "ssid": iface.ssid,
            "channel": iface.channel,
            "ap_sta_concurrency": iface.supports_ap,
        },
    }
    print(json.dumps(report, indent=2))
    return 0 if not report["missing_required"] else 1


def _cmd_config(args: argparse.Namespace) -> int:
    path = config_path()
    cfg = load_config(path)
    if args.config_cmd == "set":
        orch = HotspotOrchestrator(config=cfg, config_file=path)
        if not orch.update_config(args.key, args.value):
            print(f"Rejected value for {args.key}", file=sys.stderr)
            return 1
    print(json.dumps(config_as_dict(cfg), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hotspot-enabler",
        description="Share an upstream WiFi connection through a hotspot on the same radio.",
    )
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("run", help="start the hotspot and supervise it until interrupted")
    sub.add_parser("check", help="report tool availability and the detected WiFi interface")

    cfg = sub.add_parser("config", help="show or change the persisted hotspot settings")
    cfg_sub = cfg.add_subparsers(dest="config_cmd")
    cfg_sub.add_parser("show")
    cfg_set = cfg_sub.add_parser("set")
    cfg_set.add_argument("key", choices=["ssid", "password", "channel", "max_clients", "hidden"])
    cfg_set.add_argument("value")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    event_log = EventLogHandler()
    setup_logging(args.log_level, event_log=event_log)
    args.event_log = event_log

    if args.cmd == "check":
        return _cmd_check(args)
    if args.cmd == "config":
        if args.config_cmd is None:
            args.config_cmd = "show"
        return _cmd_config(args)
    return _cmd_run(args)


if __name__ == "__main__":
    sys.exit(main())
