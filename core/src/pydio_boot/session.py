"""Shared client state and the application surface the transport talks to.

``ClientContext`` replaces page-level globals: it owns the token store, the
server access path, the library base URL, the message catalog and the httpx
clients, and it points at the running application once one exists.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from pydio_boot.config import ClientConfig, http_client_options
from pydio_boot.params import ParameterStore
from pydio_boot.tokens import TokenStore

logger = logging.getLogger(__name__)

AlertSink = Callable[[str], None]


class Session(Protocol):
    """What an exchange needs from the running application."""

    parameters: ParameterStore

    def notify(self, event: str) -> None: ...

    def display_message(self, message_type: str, message: str) -> None: ...

    def reset_context(self) -> None: ...

    def fire_action(self, action: str) -> None: ...

    def fire(self, event: str, payload: Any = None) -> None: ...


class Controller(Protocol):
    actions: dict[str, Any]
    default_actions: dict[str, str]
    selector_data: Any

    def fire_context_change(self) -> None: ...

    def fire_selection_change(self) -> None: ...


class Application(Session, Protocol):
    controller: Controller
    current_language: str | None

    def observe_once(self, event: str, callback: Callable[[Any], None]) -> None: ...

    def init(self) -> None: ...


def log_alert(message: str) -> None:
    logger.error("ALERT: %s", message)


@dataclass
class ClientContext:
    config: ClientConfig = field(default_factory=ClientConfig)
    tokens: TokenStore = field(default_factory=TokenStore)
    alert: AlertSink = log_alert
    session: Session | None = None

    # Base for relative request URLs (the host page location).
    base_href: str | None = None
    server_access_path: str | None = None
    library_url: str | None = None
    library_version: str | None = None
    resources_folder: str | None = None
    messages: dict[str, str] = field(default_factory=dict)
    zip_enabled: bool = False
    multiple_files_download_enabled: bool = False

    http_client: httpx.Client | None = None
    async_http_client: httpx.AsyncClient | None = None
    action_log: list[tuple[str | None, str]] = field(default_factory=list)

    def blocking_client(self) -> httpx.Client:
        if self.http_client is None:
            self.http_client = httpx.Client(**http_client_options(self.config, base_url=self.base_href))
        return self.http_client

    def async_client(self) -> httpx.AsyncClient:
        if self.async_http_client is None:
            self.async_http_client = httpx.AsyncClient(
                **http_client_options(self.config, base_url=self.base_href)
            )
        return self.async_http_client

    def log_action(self, action: str | None, mode: str) -> None:
        self.action_log.append((action, mode))

    async def release_async_client(self) -> None:
        client, self.async_http_client = self.async_http_client, None
        if client is not None:
            await client.aclose()

    async def aclose(self) -> None:
        await self.release_async_client()
        if self.http_client is not None:
            self.http_client.close()
            self.http_client = None
