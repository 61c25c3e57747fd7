import subprocess
from types import SimpleNamespace

from hotspot_enabler.engine import runner as runner_mod
from hotspot_enabler.engine.runner import CommandRunner
from hotspot_enabler.engine.tools import check_tools, missing_required


def test_run_capturing_success(monkeypatch) -> None:
    seen = {}

    def _fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["timeout"] = kwargs.get("timeout")
        return SimpleNamespace(returncode=0, stdout="phy0\n")

    monkeypatch.setattr(runner_mod.subprocess, "run", _fake_run)
    out, ok = CommandRunner(timeout_s=3.0).run_capturing(["iw", "dev"])
    assert (out, ok) == ("phy0\n", True)
    assert seen == {"cmd": ["iw", "dev"], "timeout": 3.0}


def test_missing_tool_is_a_failed_command(monkeypatch) -> None:
    def _fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(runner_mod.subprocess, "run", _fake_run)
    r = CommandRunner()
    assert r.run_capturing(["connmanctl", "state"]) == ("", False)
    assert r.run_silent(["connmanctl", "state"]) == 127


def test_timeout_is_a_failed_command(monkeypatch) -> None:
    def _fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(runner_mod.subprocess, "run", _fake_run)
    r = CommandRunner(timeout_s=0.1)
    assert r.run_capturing(["hostapd", "-B"]) == ("", False)
    assert r.run_silent(["hostapd", "-B"]) == 124


def test_pid_alive(monkeypatch) -> None:
    def _fake_kill(pid, sig):
        if pid == 1:
            raise PermissionError()
        if pid == 2:
            raise ProcessLookupError()

    monkeypatch.setattr(runner_mod.os, "kill", _fake_kill)
    r = CommandRunner()
    assert r.pid_alive(1) is True
    assert r.pid_alive(2) is False
    assert r.pid_alive(3) is True
    assert r.pid_alive(None) is False
    assert r.pid_alive(0) is False


def test_check_tools_structured_result(runner) -> None:
    runner.tools = {"iw", "ip", "hostapd", "nmcli"}
    statuses = check_tools(runner)

    assert statuses["iw"].available is True
    assert statuses["iw"].path == "/usr/bin/iw"
    assert statuses["connmanctl"].available is False
    assert statuses["connmanctl"].required is False
    assert missing_required(statuses) == ["dnsmasq", "iptables"]
