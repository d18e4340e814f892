from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field

from pydio_boot.home import ClientPaths


class NetworkConfig(BaseModel):
    timeout_s: float = Field(default=30.0, gt=0)
    follow_redirects: bool = Field(default=True)
    verify_tls: bool = Field(default=True)


class LibraryConfig(BaseModel):
    """Rules for libraries announced by the server at boot time.

    A served library manifest names a Python entrypoint; it is only imported when
    its module lives under one of the allowed package prefixes.
    """

    allowed_packages: list[str] = Field(
        default_factory=lambda: ["pydio_boot"],
        description="Dotted package prefixes whose modules may be imported as libraries.",
    )
    version_param: str = Field(
        default="v",
        min_length=1,
        description="Query parameter used to bust caches when fetching library manifests.",
    )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")


class ClientConfig(BaseModel):
    version: str = Field(default="1")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_client_config(paths: ClientPaths) -> ClientConfig:
    """Load config from ${PYDIO_BOOT_HOME}/config/client.json.

    - If missing: returns defaults.
    - Validation is performed by Pydantic.
    """

    config_path = paths.client_config_path
    if not config_path.exists():
        return ClientConfig()

    raw = _read_json(config_path)
    return ClientConfig.model_validate(raw)


def write_client_config(paths: ClientPaths, config: ClientConfig) -> None:
    """Persist config to ${PYDIO_BOOT_HOME}/config/client.json."""

    payload = config.model_dump(mode="json", exclude_none=True)
    paths.config_dir.mkdir(parents=True, exist_ok=True)
    paths.client_config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def http_client_options(config: ClientConfig, *, base_url: str | None = None) -> dict[str, Any]:
    """Keyword arguments for the httpx clients shared by one client context."""

    net = config.network
    kwargs: dict[str, Any] = {
        "timeout": httpx.Timeout(net.timeout_s),
        "follow_redirects": net.follow_redirects,
        "verify": net.verify_tls,
    }
    if base_url:
        kwargs["base_url"] = base_url
    return kwargs
