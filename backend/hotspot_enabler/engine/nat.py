import logging
from pathlib import Path
from typing import List, Tuple

from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.engine.tools import tool_available

log = logging.getLogger("hotspot_enabler.engine.nat")

# (table, chain, match/target args)
Rule = Tuple[str, str, List[str]]

# Duplicate copies left by earlier runs are removed too, up to this many.
_MAX_DELETE_PASSES = 4

IP_FORWARD_PATH = Path("/proc/sys/net/ipv4/ip_forward")


def nat_rules(client_iface: str, ap_iface: str) -> List[Rule]:
    return [
        ("nat", "POSTROUTING", ["-o", client_iface, "-j", "MASQUERADE"]),
        (
            "filter",
            "FORWARD",
            [
                "-i",
                client_iface,
                "-o",
                ap_iface,
                "-m",
                "state",
                "--state",
                "RELATED,ESTABLISHED",
                "-j",
                "ACCEPT",
            ],
        ),
        ("filter", "FORWARD", ["-i", ap_iface, "-o", client_iface, "-j", "ACCEPT"]),
    ]


def _iptables_cmd(op: str, rule: Rule) -> List[str]:
    table, chain, args = rule
    return ["iptables", "-t", table, op, chain, *args]


class NatManager:
    def __init__(self, runner: CommandRunner, ip_forward_path: Path = IP_FORWARD_PATH):
        self.runner = runner
        self.ip_forward_path = ip_forward_path

    def ip_forward_enabled(self) -> bool:
        out, ok = self.runner.run_capturing(["sysctl", "-n", "net.ipv4.ip_forward"])
        if ok:
            return out.strip() == "1"
        try:
            return self.ip_forward_path.read_text(encoding="utf-8").strip() == "1"
        except OSError as exc:
            log.warning("ip_forward_read_failed path=%s err=%s", self.ip_forward_path, exc)
            return False

    def _set_ip_forward(self, enable: bool) -> None:
        val = "1" if enable else "0"
        rc = self.runner.run_silent(["sysctl", "-w", f"net.ipv4.ip_forward={val}"])
        if rc == 0:
            return
        # sysctl missing or refused; write the proc switch directly
        try:
            self.ip_forward_path.write_text(val + "\n", encoding="utf-8")
        except OSError as exc:
            log.warning("ip_forward_set_failed value=%s rc=%s err=%s", val, rc, exc)

    def _add_unique(self, rule: Rule) -> None:
        if self.runner.run_silent(_iptables_cmd("-C", rule)) == 0:
            return
        if self.runner.run_silent(_iptables_cmd("-A", rule)) != 0:
            log.warning("iptables_add_failed rule=%s", " ".join(_iptables_cmd("-A", rule)))

    def enable(self, client_iface: str, ap_iface: str) -> bool:
        """
        Returns whether forwarding was already on before we touched it; the
        caller keeps that flag for disable().
        """
        was_enabled = self.ip_forward_enabled()
        self._set_ip_forward(True)

        if not tool_available(self.runner, "iptables"):
            log.warning("iptables_missing nat_rules_skipped")
            return was_enabled

        for rule in nat_rules(client_iface, ap_iface):
            self._add_unique(rule)
        log.info(
            "nat_enabled client=%s ap=%s ip_forward_was_enabled=%s",
            client_iface,
            ap_iface,
            was_enabled,
        )
        return was_enabled

    def remove_rules(self, client_iface: str, ap_iface: str) -> None:
        if not tool_available(self.runner, "iptables"):
            return
        for rule in nat_rules(client_iface, ap_iface):
            for _ in range(_MAX_DELETE_PASSES):
                if self.runner.run_silent(_iptables_cmd("-D", rule)) != 0:
                    break

    def disable(self, client_iface: str, ap_iface: str, was_enabled_before: bool) -> None:
        self.remove_rules(client_iface, ap_iface)
        if not was_enabled_before:
            self._set_ip_forward(False)
        log.info("nat_disabled client=%s ap=%s", client_iface, ap_iface)
