import json

from hotspot_enabler import main as cli


def test_parser_defaults_to_run() -> None:
    args = cli.build_parser().parse_args([])
    assert args.cmd is None
    args = cli.build_parser().parse_args(["config", "set", "channel", "36"])
    assert (args.cmd, args.config_cmd, args.key, args.value) == ("config", "set", "channel", "36")


def test_config_set_and_show(monkeypatch, tmp_path, capsys) -> None:
    cfg_file = tmp_path / "hotspot.conf"
    monkeypatch.setenv("HOTSPOT_ENABLER_CONFIG", str(cfg_file))
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **kw: None)

    assert cli.main(["config", "set", "ssid", "Attic"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["ssid"] == "Attic"
    assert shown["password"] == "********"

    assert cli.main(["config", "set", "password", "short"]) == 1
    capsys.readouterr()

    assert cli.main(["config"]) == 0
    assert json.loads(capsys.readouterr().out)["ssid"] == "Attic"


def test_run_requires_root(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **kw: None)
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    assert cli.main(["run"]) == 1
    assert "root" in capsys.readouterr().err
