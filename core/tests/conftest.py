from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from fastapi import FastAPI, Request, Response
from fastapi.testclient import TestClient

from pydio_boot.session import ClientContext

XML = "text/xml"


def _xml(body: str, status_code: int = 200) -> Response:
    return Response(content=body, media_type=XML, status_code=status_code)


def create_backend() -> FastAPI:
    app = FastAPI()

    @app.api_route("/echo", methods=["GET", "POST"])
    async def echo(request: Request) -> dict:
        body = await request.body()
        return {
            "method": request.method,
            "query": request.url.query,
            "content_type": request.headers.get("content-type"),
            "body": body.decode("utf-8"),
        }

    @app.get("/json")
    async def json_body() -> dict:
        return {"a": 1}

    @app.get("/xml/error")
    async def xml_error() -> Response:
        return _xml('<tree><message type="ERROR">Oops</message></tree>')

    @app.get("/xml/success")
    async def xml_success() -> Response:
        return _xml('<tree><message type="SUCCESS">Saved</message><node id="1"/></tree>')

    @app.get("/xml/untyped")
    async def xml_untyped() -> Response:
        return _xml("<tree><message>Plain</message></tree>")

    @app.get("/xml/denied")
    async def xml_denied() -> Response:
        return _xml(
            '<tree><message type="ERROR">'
            "You are not allowed to access this resource. (token)</message></tree>"
        )

    @app.get("/xml/auth")
    async def xml_auth() -> Response:
        return _xml("<tree><require_auth/></tree>")

    @app.get("/xml/empty")
    async def xml_empty() -> Response:
        return _xml("")

    @app.get("/xml/broken")
    async def xml_broken() -> Response:
        return _xml("<tree><message>")

    @app.get("/fatal")
    async def fatal(request: Request) -> Response:
        status = int(request.query_params.get("status", "200"))
        return Response(
            content="<b>Fatal error</b>: Call to undefined function<br /> in index.php",
            media_type="text/html",
            status_code=status,
        )

    @app.get("/crash")
    async def crash() -> Response:
        return Response(content="boom", media_type="text/plain", status_code=500)

    @app.api_route("/upload", methods=["POST", "PUT"])
    async def upload(request: Request) -> dict:
        body = await request.body()
        return {
            "method": request.method,
            "content_type": request.headers.get("content-type"),
            "direct": request.headers.get("x-file-direct"),
            "size": len(body),
            "body": body.decode("latin-1"),
        }

    @app.post("/upload/denied")
    async def upload_denied() -> Response:
        return Response(content="no", media_type="text/plain", status_code=403)

    return app


@pytest.fixture
def backend() -> FastAPI:
    return create_backend()


@pytest.fixture
def sync_context(backend: FastAPI) -> ClientContext:
    return ClientContext(http_client=TestClient(backend))


@pytest.fixture
def async_context_factory(backend: FastAPI) -> Callable[[], ClientContext]:
    def make() -> ClientContext:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=backend), base_url="http://testserver"
        )
        return ClientContext(async_http_client=client)

    return make


@pytest.fixture
def alerts() -> list[str]:
    return []
