import pytest

from hotspot_enabler.engine.nm_exclusion import NetworkManagerExclusion
from hotspot_enabler.engine.virt_iface import VirtualInterfaceManager, parse_iw_dev_ifaces

IW_DEV = """phy#0
	Interface ap1
		ifindex 7
		type AP
	Interface wlan0
		ifindex 3
		type managed
phy#1
	Interface hsap0
		type AP
	Interface mon0
		type monitor
"""


def _manager(runner, paths):
    nm = NetworkManagerExclusion(runner, paths.nm_dropin)
    return VirtualInterfaceManager(runner, nm), nm


def test_parse_iw_dev_ifaces() -> None:
    assert parse_iw_dev_ifaces(IW_DEV) == [
        ("ap1", "AP"),
        ("wlan0", "managed"),
        ("hsap0", "AP"),
        ("mon0", "monitor"),
    ]
    assert parse_iw_dev_ifaces("") == []


def test_create_first_candidate(runner, paths) -> None:
    runner.on("iw", "dev", "ap0", "info", rc=237)
    vif, nm = _manager(runner, paths)

    assert vif.create("phy0", "wlan0") == "ap0"
    assert runner.ran("iw", "phy", "phy0", "interface", "add", "ap0", "type", "__ap")
    assert nm.excluded == ["ap0"]
    assert "interface-name:ap0" in paths.nm_dropin.read_text()


def test_create_falls_back_to_dev_form_then_next_name(runner, paths) -> None:
    runner.on("iw", "dev", rc=237)  # nothing exists yet
    runner.on("iw", "phy", rc=1)
    runner.on("iw", "dev", "wlan0", "interface", "add", "ap0", rc=1)
    runner.on("iw", "dev", "wlan0", "interface", "add", "ap1", rc=0)
    vif, nm = _manager(runner, paths)

    assert vif.create("phy0", "wlan0") == "ap1"
    assert nm.excluded == ["ap0", "ap1"]


def test_create_removes_stale_interface_first(runner, paths) -> None:
    present = {"ap0"}

    def _info(cmd):
        return ("", 0) if cmd[2] in present else ("", 237)

    def _del(cmd):
        present.discard(cmd[2])
        return "", 0

    runner.on("iw", "dev", fn=lambda cmd: _del(cmd) if cmd[-1] == "del" else _info(cmd))
    vif, _nm = _manager(runner, paths)

    assert vif.create("phy0", "wlan0") == "ap0"
    order = [" ".join(c) for c in runner.calls]
    assert order.index("ip link set ap0 down") < order.index("ip addr flush dev ap0") < order.index("iw dev ap0 del")
    assert "wpa_cli -i ap0 terminate" in order
    assert order.index("iw dev ap0 del") < order.index("iw phy phy0 interface add ap0 type __ap")


def test_create_skips_name_that_cannot_be_removed(runner, paths) -> None:
    runner.on("iw", "dev", fn=lambda cmd: ("", 0) if cmd[2] == "ap0" else ("", 237))
    vif, _nm = _manager(runner, paths)

    assert vif.create("phy0", "wlan0") == "ap1"
    assert not runner.ran("iw", "phy", "phy0", "interface", "add", "ap0")


def test_create_exhausted_names_driver_limitation(runner, paths) -> None:
    runner.on("iw", "dev", rc=237)
    runner.on("iw", "phy", rc=1)
    runner.on("iw", "dev", "wlan0", "interface", rc=1)
    vif, _nm = _manager(runner, paths)

    with pytest.raises(RuntimeError) as exc:
        vif.create("phy0", "wlan0")
    msg = str(exc.value)
    assert "ap0, ap1, hsap0, hsap1" in msg
    assert "AP/STA concurrency" in msg


def test_assign_address_retries_with_replace(runner, paths) -> None:
    runner.on("ip", "addr", "add", rc=2)
    vif, _nm = _manager(runner, paths)

    vif.assign_address("ap0", "192.168.12.1/24")

    order = [" ".join(c) for c in runner.calls]
    assert order == [
        "ip link set ap0 up",
        "ip addr flush dev ap0",
        "ip addr add 192.168.12.1/24 dev ap0",
        "ip addr replace 192.168.12.1/24 dev ap0",
    ]


def test_assign_address_never_raises(runner, paths) -> None:
    runner.on("ip", rc=1)
    vif, _nm = _manager(runner, paths)
    vif.assign_address("ap0", "192.168.12.1/24")


def test_sweep_removes_only_our_ap_ifaces(runner, paths) -> None:
    runner.on("iw", "dev", out=IW_DEV)
    vif, _nm = _manager(runner, paths)

    removed = vif.sweep_stale_ap_ifaces()

    assert removed == ["ap1", "hsap0"]
    assert runner.ran("iw", "dev", "ap1", "del")
    assert not runner.ran("iw", "dev", "wlan0", "del")
    assert not runner.ran("iw", "dev", "mon0", "del")


def test_destroy_none_is_noop(runner, paths) -> None:
    vif, _nm = _manager(runner, paths)
    vif.destroy(None)
    assert runner.calls == []
