import json
import logging

from hotspot_enabler.logging import EventLogHandler, JsonFormatter
from hotspot_enabler.state import (
    ANONYMOUS_HOSTNAME,
    MAX_CLIENTS,
    ConnectedClient,
    HotspotPhase,
    HotspotRuntimeState,
    format_uptime,
)


def test_format_uptime_buckets() -> None:
    start = 1_000_000.0
    assert format_uptime(start, start + 45) == "45s"
    assert format_uptime(start, start + 125) == "2m 5s"
    assert format_uptime(start, start + 3725) == "1h 2m 5s"
    assert format_uptime(0, start) == "--"


def test_format_uptime_never_negative() -> None:
    assert format_uptime(100.0, 90.0) == "0s"


def test_client_roster_evicts_oldest() -> None:
    st = HotspotRuntimeState()
    clients = [ConnectedClient(mac=f"02:00:00:00:{i // 256:02x}:{i % 256:02x}", ip=f"10.0.0.{i % 250}") for i in range(MAX_CLIENTS + 6)]
    for c in clients:
        st.clients.append(c)
    assert len(st.clients) == MAX_CLIENTS
    assert st.clients[0] == clients[6]
    assert st.clients[-1] == clients[-1]


def test_snapshot_is_plain_data() -> None:
    st = HotspotRuntimeState()
    st.set_clients([ConnectedClient(mac="aa:bb:cc:dd:ee:ff", ip="192.168.12.15")])
    snap = st.snapshot(now=10.0)
    json.dumps(snap)
    assert snap["phase"] == HotspotPhase.STOPPED.value
    assert snap["uptime"] == "--"
    assert snap["client_count"] == 1
    assert snap["clients"][0]["hostname"] == ANONYMOUS_HOSTNAME
    assert snap["config"]["password"] != st.config.password


def test_event_log_handler_is_bounded() -> None:
    handler = EventLogHandler(capacity=3)
    logger = logging.getLogger("hotspot_enabler.test_event_log")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    try:
        for i in range(5):
            logger.info("event_%d", i)
    finally:
        logger.removeHandler(handler)

    msgs = [msg for _ts, _lvl, msg in handler.entries()]
    assert msgs == ["event_2", "event_3", "event_4"]
    handler.clear()
    assert handler.entries() == []


def test_json_formatter_includes_structured_fields() -> None:
    record = logging.LogRecord("hotspot_enabler.x", logging.WARNING, __file__, 1, "ap_iface_created iface=%s", ("ap0",), None)
    record.iface = "ap0"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["msg"] == "ap_iface_created iface=ap0"
    assert payload["iface"] == "ap0"
    assert "phase" not in payload
