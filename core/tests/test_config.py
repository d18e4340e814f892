from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from pydio_boot.config import (
    ClientConfig,
    http_client_options,
    load_client_config,
    write_client_config,
)
from pydio_boot.home import ensure_client_layout
from pydio_boot.session import ClientContext


def test_load_client_config_defaults_when_missing(tmp_path: Path) -> None:
    paths = ensure_client_layout(tmp_path)
    cfg = load_client_config(paths)
    assert isinstance(cfg, ClientConfig)
    assert cfg.network.timeout_s == 30.0
    assert cfg.library.allowed_packages == ["pydio_boot"]


def test_load_client_config_validation_error(tmp_path: Path) -> None:
    paths = ensure_client_layout(tmp_path)

    paths.client_config_path.write_text(
        json.dumps({"network": {"timeout_s": 0}}),
        encoding="utf-8",
    )

    with pytest.raises(ValidationError):
        load_client_config(paths)


def test_write_then_load_round_trips(tmp_path: Path) -> None:
    paths = ensure_client_layout(tmp_path)
    cfg = ClientConfig.model_validate(
        {"library": {"allowed_packages": ["pydio_boot", "acme_plugins"]}, "logging": {"level": "DEBUG"}}
    )

    write_client_config(paths, cfg)

    assert load_client_config(paths) == cfg


def test_http_client_options_follow_network_config() -> None:
    cfg = ClientConfig.model_validate(
        {"network": {"timeout_s": 5, "follow_redirects": False, "verify_tls": False}}
    )

    options = http_client_options(cfg, base_url="http://x/pydio/")

    assert options["timeout"] == httpx.Timeout(5.0)
    assert options["follow_redirects"] is False
    assert options["verify"] is False
    assert options["base_url"] == "http://x/pydio/"
    assert "base_url" not in http_client_options(cfg)


def test_context_builds_clients_lazily() -> None:
    ctx = ClientContext(base_href="http://x/pydio/")
    assert ctx.http_client is None

    client = ctx.blocking_client()

    assert ctx.blocking_client() is client
    assert client.base_url == httpx.URL("http://x/pydio/")
    client.close()
