from __future__ import annotations

import asyncio

from pydio_boot.errors import (
    EMPTY_XML_MESSAGE,
    INTERNAL_SERVER_ERROR_MESSAGE,
    ErrorKind,
    classify_exchange,
    token_expired_message,
)
from pydio_boot.headless import HeadlessApplication
from pydio_boot.params import ParameterStore
from pydio_boot.session import ClientContext
from pydio_boot.transport import ParsedResponse, TransportClient


def _get(ctx: ClientContext, path: str) -> TransportClient:
    transport = TransportClient(path, context=ctx)
    transport.set_method("GET")
    return transport


def _with_session(ctx: ClientContext) -> HeadlessApplication:
    session = HeadlessApplication(ParameterStore())
    ctx.session = session
    return session


def test_json_body_and_status_reach_the_callback(sync_context: ClientContext) -> None:
    transport = _get(sync_context, "/json")
    completed: list[ParsedResponse] = []
    transport.on_complete = completed.append

    parsed = transport.send_blocking()

    assert completed == [parsed]
    assert parsed.status == 200
    assert parsed.json_body == {"a": 1}
    assert parsed.body == {"a": 1}
    assert parsed.markup is None and parsed.text is None
    assert transport.last_fault is None


def test_async_send_through_asgi(async_context_factory) -> None:
    async def run() -> ParsedResponse | None:
        ctx = async_context_factory()
        try:
            transport = TransportClient("/echo", context=ctx)
            transport.add_parameter("get_action", "ls")
            return await transport.send()
        finally:
            await ctx.aclose()

    parsed = asyncio.run(run())

    assert parsed is not None
    assert parsed.json_body["method"] == "POST"
    assert parsed.json_body["body"] == "get_action=ls"


def test_error_message_goes_to_the_session(sync_context: ClientContext) -> None:
    session = _with_session(sync_context)
    transport = _get(sync_context, "/xml/error")

    parsed = transport.send_blocking()

    assert session.messages == [("ERROR", "Oops")]
    assert parsed.markup.find("message") is not None
    assert transport.last_fault.kind is ErrorKind.APPLICATION_ERROR


def test_error_message_without_session_uses_alert(sync_context: ClientContext) -> None:
    alerts: list[str] = []
    sync_context.alert = alerts.append

    _get(sync_context, "/xml/error").send_blocking()

    assert alerts == ["ERROR:Oops"]


def test_success_message_is_removed_after_display(sync_context: ClientContext) -> None:
    session = _with_session(sync_context)

    parsed = _get(sync_context, "/xml/success").send_blocking()

    assert session.messages == [("SUCCESS", "Saved")]
    assert parsed.markup.find("message") is None
    assert parsed.markup.find("node") is not None


def test_untyped_message_defaults_to_info(sync_context: ClientContext) -> None:
    alerts: list[str] = []
    sync_context.alert = alerts.append
    session = _with_session(sync_context)

    _get(sync_context, "/xml/untyped").send_blocking()

    assert session.messages == [("INFO", "Plain")]
    assert alerts == []


def test_not_authorized_message_becomes_token_notice(sync_context: ClientContext) -> None:
    sync_context.messages = {"437": "Token gone, please %s.", "438": "reload"}
    session = _with_session(sync_context)
    transport = _get(sync_context, "/xml/denied")

    transport.send_blocking()

    assert session.messages == [("ERROR", "Token gone, please reload.")]
    assert transport.last_fault.kind is ErrorKind.AUTH_EXPIRED


def test_require_auth_restarts_login(sync_context: ClientContext) -> None:
    session = _with_session(sync_context)
    transport = _get(sync_context, "/xml/auth")

    transport.send_blocking()

    assert session.context_resets == 1
    assert session.controller.fired == ["logout", "login"]
    assert transport.last_fault.kind is ErrorKind.AUTH_EXPIRED


def test_fatal_error_text_is_a_server_fault(sync_context: ClientContext) -> None:
    session = _with_session(sync_context)
    transport = _get(sync_context, "/fatal")

    transport.send_blocking()

    assert transport.last_fault.kind is ErrorKind.SERVER_FAULT
    assert session.messages == [
        ("ERROR", "<b>Fatal error</b>: Call to undefined function in index.php")
    ]


def test_fatal_error_text_wins_over_status(sync_context: ClientContext) -> None:
    for status in ("404", "500"):
        transport = _get(sync_context, "/fatal")
        transport.add_parameter("status", status)
        parsed = transport.send_blocking()

        assert parsed.status == int(status)
        assert transport.last_fault.kind is ErrorKind.SERVER_FAULT
        assert "Fatal error" in transport.last_fault.message


def test_http_500_is_a_server_fault(sync_context: ClientContext) -> None:
    alerts: list[str] = []
    sync_context.alert = alerts.append

    transport = _get(sync_context, "/crash")
    transport.send_blocking()

    assert transport.last_fault.kind is ErrorKind.SERVER_FAULT
    assert alerts == [INTERNAL_SERVER_ERROR_MESSAGE]


def test_empty_and_broken_markup_are_protocol_errors(sync_context: ClientContext) -> None:
    session = _with_session(sync_context)

    empty = _get(sync_context, "/xml/empty")
    empty.send_blocking()
    broken = _get(sync_context, "/xml/broken")
    parsed = broken.send_blocking()

    assert empty.last_fault.kind is ErrorKind.PROTOCOL_ERROR
    assert empty.last_fault.message == EMPTY_XML_MESSAGE
    assert broken.last_fault.kind is ErrorKind.PROTOCOL_ERROR
    assert broken.last_fault.message.startswith("Parsing error : \n")
    assert parsed.parse_error
    assert [kind for kind, _ in session.messages] == ["ERROR", "ERROR"]


def test_classify_replaces_not_authorized_fault() -> None:
    parsed = ParsedResponse(
        status=200,
        content_type="text/html",
        text="You are not allowed to access this resource. <b>Fatal error</b>",
    )

    fault = classify_exchange(parsed, token_message="expired")

    assert fault.kind is ErrorKind.AUTH_EXPIRED
    assert fault.message == "expired"


def test_classify_clean_exchanges() -> None:
    assert classify_exchange(
        ParsedResponse(status=200, content_type="text/plain", text="fine"), token_message="x"
    ) is None
    assert classify_exchange(
        ParsedResponse(status=404, content_type="application/json", json_body={}), token_message="x"
    ) is None


def test_token_expired_message_fallback() -> None:
    assert token_expired_message({}) == (
        "Ooops, it seems that your security token has expired! "
        "Please reload the page by hitting refresh or F5 in your browser!"
    )
