from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydio_boot.transport import ParsedResponse

NOT_AUTHORIZED_PREFIX = "You are not allowed to access this resource."
FATAL_ERROR_MARKER = "<b>Fatal error</b>"
INTERNAL_SERVER_ERROR_MESSAGE = (
    "Internal Server Error: you should check your web server logs to find what's going wrong!"
)
EMPTY_XML_MESSAGE = "Expected XML but got empty response!"

DEFAULT_TOKEN_EXPIRED = (
    "Ooops, it seems that your security token has expired! "
    "Please %s by hitting refresh or F5 in your browser!"
)
DEFAULT_RELOAD_LABEL = "reload the page"

# Catalog keys carrying the localized token-expiry template and its reload label.
TOKEN_EXPIRED_KEY = "437"
RELOAD_LABEL_KEY = "438"


class ErrorKind(StrEnum):
    NETWORK_FAILURE = "network_failure"
    SERVER_FAULT = "server_fault"
    PROTOCOL_ERROR = "protocol_error"
    AUTH_EXPIRED = "auth_expired"
    APPLICATION_ERROR = "application_error"
    CONFIGURATION_FAULT = "configuration_fault"


@dataclass(frozen=True)
class ExchangeFault:
    kind: ErrorKind
    message: str


class PydioBootError(Exception):
    """Base exception for this package."""


class MarkupParseError(PydioBootError):
    """Raised when a markup body cannot be parsed."""


class MarkupQueryError(PydioBootError):
    """Raised for a malformed path query or a non-markup query target."""


class LibraryLoadError(PydioBootError):
    """Raised when a served library cannot be resolved to local code."""


class BootstrapHalted(PydioBootError):
    """Stops the startup sequence; no further phase runs.

    ``notify`` is False when the user was already told (e.g. by the transport).
    """

    def __init__(self, fault: ExchangeFault, *, notify: bool = True) -> None:
        super().__init__(fault.message)
        self.fault = fault
        self.notify = notify


def is_not_authorized(message: str | None) -> bool:
    return bool(message) and message.startswith(NOT_AUTHORIZED_PREFIX)


def token_expired_message(messages: Mapping[str, str] | None = None) -> str:
    """Token-expiry notice offering a page reload, localized when the catalog has it."""

    template = DEFAULT_TOKEN_EXPIRED
    label = DEFAULT_RELOAD_LABEL
    if messages and messages.get(TOKEN_EXPIRED_KEY):
        template = messages[TOKEN_EXPIRED_KEY]
        label = messages.get(RELOAD_LABEL_KEY) or label
    return template.replace("%s", label)


def classify_exchange(parsed: ParsedResponse, *, token_message: str) -> ExchangeFault | None:
    """Derive the user-facing fault of a completed exchange, if any.

    Checks run in a fixed order and the first hit wins: body parse failure, empty
    XML body, fatal-error marker in a text body, HTTP 500.
    """

    content_type = parsed.content_type or ""
    is_xml = "/xml" in content_type
    is_json = "/json" in content_type

    fault: ExchangeFault | None = None
    if parsed.parse_error is not None:
        fault = ExchangeFault(ErrorKind.PROTOCOL_ERROR, f"Parsing error : \n{parsed.parse_error}")
    elif is_xml and parsed.markup is None:
        fault = ExchangeFault(ErrorKind.PROTOCOL_ERROR, EMPTY_XML_MESSAGE)
    elif (
        not is_xml
        and not is_json
        and parsed.text is not None
        and FATAL_ERROR_MARKER in parsed.text
    ):
        fault = ExchangeFault(ErrorKind.SERVER_FAULT, parsed.text.replace("<br />", ""))
    elif parsed.status == 500:
        fault = ExchangeFault(ErrorKind.SERVER_FAULT, INTERNAL_SERVER_ERROR_MESSAGE)

    if fault is not None and is_not_authorized(fault.message):
        return ExchangeFault(ErrorKind.AUTH_EXPIRED, token_message)
    return fault
