"""One request/response exchange with the backend.

A ``TransportClient`` gathers parameters, attaches the session credential and
the server's permanent parameters, sends the exchange and inspects whatever
comes back before handing it to the caller's completion callback.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from pydio_boot import library, upload
from pydio_boot.errors import (
    ErrorKind,
    ExchangeFault,
    MarkupParseError,
    classify_exchange,
    is_not_authorized,
    token_expired_message,
)
from pydio_boot.markup import find_first, parse_markup, remove_node, text_of
from pydio_boot.params import ParameterStore, normalize_parameters, serialize_parameters, wire_value
from pydio_boot.session import ClientContext
from pydio_boot.tokens import TokenStore

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"
SECURE_TOKEN_PARAM = "secure_token"
PERMANENT_PARAMS_KEY = "SERVER_PERMANENT_PARAMS"
SUPPORTED_METHODS = frozenset({"GET", "POST"})

CompletionCallback = Callable[["ParsedResponse"], None]


@dataclass
class ParsedResponse:
    """A completed exchange; exactly one body slot is filled, picked by content type."""

    status: int
    content_type: str
    json_body: Any = None
    markup: ET.Element | None = None
    text: str | None = None
    parse_error: str | None = None
    raw: httpx.Response | None = field(default=None, repr=False)

    @property
    def body(self) -> Any:
        if "/json" in self.content_type:
            return self.json_body
        if "/xml" in self.content_type:
            return self.markup
        return self.text

    @property
    def source_text(self) -> str:
        if self.text is not None:
            return self.text
        if self.raw is not None:
            return self.raw.text
        return ""


@dataclass(frozen=True)
class PreparedExchange:
    method: str
    url: str
    headers: dict[str, str]
    content: bytes | None


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    if url.endswith(("?", "&")):
        return url + query
    return url + ("&" if "?" in url else "?") + query


def update_server_access(parameters: ParameterStore, tokens: TokenStore) -> str:
    """Rebuild the server access path from a freshly loaded boot configuration.

    Adopts ``SECURE_TOKEN`` into the token store, applies ``SERVER_PREFIX_URI``
    to the access path and the resources folder, and appends the token and the
    permanent parameters to the query. The result is written back as
    ``ajxpServerAccess`` and returned.
    """

    if parameters.get("SECURE_TOKEN"):
        tokens.set(str(parameters.get("SECURE_TOKEN")))

    source = parameters.get("ajxpServerAccess") or parameters.get("ajxpServerAccessPath") or ""
    path = str(source).split("?", 1)[0]

    prefix = parameters.get("SERVER_PREFIX_URI")
    if prefix:
        if parameters.get("ajxpResourcesFolder"):
            parameters.set("ajxpResourcesFolder", f"{prefix}{parameters.get('ajxpResourcesFolder')}")
        path = f"{prefix}{path}"

    token = tokens.get()
    path += "?" + (f"{SECURE_TOKEN_PARAM}={token}" if token else "")

    permanent = parameters.get(PERMANENT_PARAMS_KEY)
    if isinstance(permanent, Mapping):
        joined = "&".join(f"{key}={wire_value(value)}" for key, value in permanent.items())
        if joined:
            path += "&" + joined

    parameters.set("ajxpServerAccess", path)
    parameters.set("SECURE_TOKEN", token)
    return path


class TransportClient:
    def __init__(self, base_url: str | None = None, *, context: ClientContext | None = None) -> None:
        self.context = context if context is not None else ClientContext()
        self.base_url: str = base_url or self.context.server_access_path or ""
        self.library_url: str | None = self.context.library_url
        self.parameters = ParameterStore()
        self.method = "POST"
        self.discrete = False
        self.on_complete: CompletionCallback | None = None
        self.legacy_parameters_seen = False
        self.last_fault: ExchangeFault | None = None

    def __repr__(self) -> str:
        return f"TransportClient({self.method} {self.base_url!r})"

    # -- request building -------------------------------------------------

    def add_parameter(self, name: str, value: Any) -> None:
        self.parameters.add(name, value)

    def set_parameters(self, parameters: ParameterStore | Mapping[str, Any]) -> None:
        store, legacy = normalize_parameters(parameters)
        if legacy:
            self.legacy_parameters_seen = True
            self.parameters.merge(store)
        else:
            self.parameters = store

    def set_method(self, method: str) -> None:
        normalized = method.upper()
        if normalized not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported method: {method}")
        self.method = normalized

    def add_secure_token(self) -> None:
        token = self.context.tokens.get()
        if (
            token
            and SECURE_TOKEN_PARAM not in self.base_url
            and not self.parameters.has(SECURE_TOKEN_PARAM)
        ):
            self.add_parameter(SECURE_TOKEN_PARAM, token)
        elif f"{SECURE_TOKEN_PARAM}=" in self.base_url:
            # Move the token out of the base URL and into the parameters.
            prefix, _, tail = self.base_url.partition(f"{SECURE_TOKEN_PARAM}=")
            value, _, rest = tail.partition("&")
            self.base_url = prefix + rest if rest else prefix.rstrip("?&")
            self.parameters.set(SECURE_TOKEN_PARAM, value)

    def add_server_permanent_params(self, store: ParameterStore | None = None) -> None:
        store = self.parameters if store is None else store
        session = self.context.session
        if session is None or PERMANENT_PARAMS_KEY not in session.parameters:
            return
        permanent = session.parameters.get(PERMANENT_PARAMS_KEY) or {}
        for key, value in permanent.items():
            store.add(key, value)

    def show_loader(self) -> None:
        if self.discrete or self.context.session is None:
            return
        self.context.session.notify("connection-start")

    def hide_loader(self) -> None:
        if self.discrete or self.context.session is None:
            return
        self.context.session.notify("connection-end")

    def _prepare(self, mode: str) -> PreparedExchange:
        action = self.parameters.get("get_action")
        self.context.log_action(action, mode)
        logger.info("Sending %s exchange (action=%s)", mode, action)

        self.add_secure_token()
        # Permanent parameters join each outgoing copy, never the client's own store.
        outgoing = self.parameters.copy()
        self.add_server_permanent_params(outgoing)
        self.show_loader()

        query = serialize_parameters(outgoing)
        if self.method == "POST":
            return PreparedExchange(
                "POST", self.base_url, {"Content-Type": FORM_CONTENT_TYPE}, query.encode("utf-8")
            )
        return PreparedExchange("GET", append_query(self.base_url, query), {}, None)

    # -- sending ----------------------------------------------------------

    async def send(self) -> ParsedResponse | None:
        """Send the exchange without blocking the event loop."""

        exchange = self._prepare("async")
        client = self.context.async_client()
        try:
            response = await client.request(
                exchange.method, exchange.url, headers=exchange.headers, content=exchange.content
            )
        except httpx.TransportError as e:
            self._network_failure(e)
            return None
        return self.apply_complete(self._parse_response(response))

    def send_blocking(self) -> ParsedResponse | None:
        """Send the exchange and block the calling thread until it completes."""

        exchange = self._prepare("sync")
        client = self.context.blocking_client()
        try:
            response = client.request(
                exchange.method, exchange.url, headers=exchange.headers, content=exchange.content
            )
        except httpx.TransportError as e:
            self._network_failure(e)
            return None
        return self.apply_complete(self._parse_response(response))

    def _network_failure(self, error: httpx.TransportError) -> None:
        self.hide_loader()
        message = f"Network error {error}"
        logger.warning("%s (%s)", message, self.base_url)
        self.last_fault = ExchangeFault(ErrorKind.NETWORK_FAILURE, message)
        self._deliver("ERROR", message)

    @staticmethod
    def _parse_response(response: httpx.Response) -> ParsedResponse:
        content_type = response.headers.get("content-type", "")
        parsed = ParsedResponse(status=response.status_code, content_type=content_type, raw=response)
        if "/json" in content_type:
            try:
                parsed.json_body = response.json()
            except ValueError as e:
                parsed.parse_error = str(e)
        elif "/xml" in content_type:
            try:
                parsed.markup = parse_markup(response.text)
            except MarkupParseError as e:
                parsed.parse_error = str(e)
        else:
            parsed.text = response.text
        return parsed

    # -- completion -------------------------------------------------------

    def _deliver(self, message_type: str, message: str) -> None:
        session = self.context.session
        if session is not None:
            session.display_message(message_type, message)
        else:
            self.context.alert(message)

    def apply_complete(self, parsed: ParsedResponse) -> ParsedResponse:
        """Surface every error the exchange carries, then run the completion hooks."""

        self.hide_loader()
        session = self.context.session
        token_message = token_expired_message(self.context.messages)

        self.last_fault = classify_exchange(parsed, token_message=token_message)
        if self.last_fault is not None:
            logger.warning("Exchange failed (%s): %s", self.last_fault.kind, self.last_fault.message)
            self._deliver("ERROR", self.last_fault.message)

        if parsed.markup is not None:
            self._inspect_markup(parsed.markup, token_message)

        if self.on_complete is not None:
            self.on_complete(parsed)
        if session is not None:
            session.fire("server_answer", self)
        return parsed

    def _inspect_markup(self, root: ET.Element, token_message: str) -> None:
        session = self.context.session

        if find_first(root, "require_auth") is not None and session is not None:
            logger.info("Server requires authentication, restarting the login flow")
            self.last_fault = self.last_fault or ExchangeFault(ErrorKind.AUTH_EXPIRED, token_message)
            session.reset_context()
            session.fire_action("logout")
            session.fire_action("login")

        node = find_first(root, "message")
        if node is None:
            return
        message_type = (node.get("type") or "INFO").upper()
        content = text_of(node) or ""
        if is_not_authorized(content):
            content = token_message
            self.last_fault = self.last_fault or ExchangeFault(ErrorKind.AUTH_EXPIRED, content)
        elif message_type == "ERROR":
            self.last_fault = self.last_fault or ExchangeFault(ErrorKind.APPLICATION_ERROR, content)

        if session is not None:
            session.display_message(message_type, content)
        elif message_type == "ERROR":
            self.context.alert(f"{message_type}:{content}")

        if message_type == "SUCCESS":
            remove_node(root, node)

    # -- uploads and libraries ----------------------------------------------

    async def upload_file(
        self,
        file: upload.UploadSource,
        field_name: str,
        url: str,
        on_complete: Callable[[httpx.Response], None] | None = None,
        on_error: Callable[[httpx.Response | Exception], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
        settings: upload.UploadSettings | None = None,
    ) -> httpx.Response | None:
        return await upload.upload_file(
            self.context,
            file,
            field_name,
            url,
            on_complete=on_complete,
            on_error=on_error,
            on_progress=on_progress,
            settings=settings,
        )

    async def load_library(
        self, file_name: str, on_loaded: Callable[[Any], None] | None = None
    ) -> Any | None:
        return await library.load_library(self.context, self.library_url, file_name, on_loaded)

    def load_library_blocking(
        self, file_name: str, on_loaded: Callable[[Any], None] | None = None
    ) -> Any | None:
        return library.load_library_blocking(self.context, self.library_url, file_name, on_loaded)
