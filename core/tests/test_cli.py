from __future__ import annotations

import json
from pathlib import Path

import pytest

from pydio_boot.__main__ import main
from pydio_boot.bootstrap import SessionHandoff

BOOTER = "http://x/index.php?get_action=get_boot_conf"
DEBUG_SCRIPT = "http://x/res/build/boot.prod.js"


def _preloaded(**overrides) -> str:
    conf = {"ajxpServerAccess": "index.php", "i18nMessages": {"1": "One"}}
    conf.update(overrides)
    return "PRELOADED_BOOT_CONF=" + json.dumps(conf)


def _args(tmp_path: Path, *extra: str) -> list[str]:
    return ["--booter-url", BOOTER, "--script", DEBUG_SCRIPT, "--home", str(tmp_path), *extra]


def test_cli_prints_resolved_parameters(tmp_path: Path, capsys) -> None:
    handoff_path = tmp_path / "handoff.json"

    code = main(_args(tmp_path, "--param", _preloaded(), "--export-handoff", str(handoff_path)))

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["ajxpServerAccess"] == "index.php?"
    assert printed["ajxpResourcesFolder"] == "http://x/res"
    assert printed["debugMode"] is True

    handoff = SessionHandoff.model_validate_json(handoff_path.read_text(encoding="utf-8"))
    assert handoff.server_access_path == "http://x/index.php"
    assert handoff.parameters["i18nMessages"] == {"1": "One"}


def test_cli_boots_from_a_handoff_file(tmp_path: Path, capsys) -> None:
    handoff = SessionHandoff(
        server_access_path="http://x/index.php",
        parameters={
            "ajxpServerAccess": "index.php",
            "ajxpResourcesFolder": "http://x/res",
            "debugMode": True,
            "i18nMessages": {"1": "One"},
            "fromOpener": "yes",
        },
    )
    handoff_path = tmp_path / "opener.json"
    handoff_path.write_text(handoff.model_dump_json(), encoding="utf-8")

    code = main(_args(tmp_path, "--handoff", str(handoff_path)))

    assert code == 0
    assert json.loads(capsys.readouterr().out)["fromOpener"] == "yes"


def test_cli_exits_1_when_startup_halts(tmp_path: Path, capsys) -> None:
    code = main(_args(tmp_path, "--param", _preloaded(i18nMessages={})))

    assert code == 1
    assert "PRELOADED_BOOT_CONF" in json.loads(capsys.readouterr().out)


def test_cli_rejects_malformed_params(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        main(_args(tmp_path, "--param", "no-equals-sign"))
