"""File uploads: multipart form, hand-framed multipart or a raw PUT body."""

from __future__ import annotations

import logging
import mimetypes
import os
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from pydio_boot.session import ClientContext

logger = logging.getLogger(__name__)

UploadSource = str | os.PathLike[str] | tuple[str, bytes] | bytes

BOUNDARY_PREFIX = "----MultiPartFormBoundary"
DEFAULT_FILE_NAME = "blob"
OCTET_STREAM = "application/octet-stream"


class UploadSettings(BaseModel):
    method: str = Field(default="POST")
    form_data: bool = Field(
        default=True,
        description="Let httpx encode the multipart body; False frames it by hand.",
    )
    custom_headers: dict[str, str] = Field(default_factory=dict)
    chunk_size: int = Field(default=64 * 1024, gt=0)

    @field_validator("method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        method = value.upper()
        if method not in ("POST", "PUT"):
            raise ValueError(f"upload method must be POST or PUT, got {value!r}")
        return method


def read_upload_source(file: UploadSource) -> tuple[str, bytes, str]:
    """Return ``(file_name, data, mime_type)`` for a path, a ``(name, data)`` pair or raw bytes."""

    if isinstance(file, (str, os.PathLike)):
        path = Path(file)
        name, data = path.name, path.read_bytes()
    elif isinstance(file, tuple):
        name, data = file
    elif isinstance(file, (bytes, bytearray)):
        name, data = DEFAULT_FILE_NAME, bytes(file)
    else:
        raise TypeError(f"Unsupported upload source: {type(file).__name__}")
    mime_type = mimetypes.guess_type(name)[0] or OCTET_STREAM
    return name, data, mime_type


def generate_boundary() -> str:
    return f"{BOUNDARY_PREFIX}{int(time.time() * 1000)}"


def frame_multipart(boundary: str, field_name: str, file_name: str, data: bytes) -> bytes:
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{field_name}"; filename="{file_name}"\r\n'
        f"Content-Type: {OCTET_STREAM}\r\n\r\n"
    ).encode("utf-8")
    return head + data + f"\r\n--{boundary}--\r\n".encode("utf-8")


def encode_form_data(
    url: str, field_name: str, file_name: str, data: bytes, mime_type: str
) -> tuple[str, bytes]:
    request = httpx.Request("POST", url, files={field_name: (file_name, data, mime_type)})
    return request.headers["Content-Type"], request.read()


async def _stream_body(
    body: bytes, chunk_size: int, on_progress: Callable[[int, int], None] | None
) -> AsyncIterator[bytes]:
    total = len(body)
    sent = 0
    for start in range(0, total, chunk_size):
        chunk = body[start : start + chunk_size]
        yield chunk
        sent += len(chunk)
        if on_progress is not None:
            on_progress(sent, total)


async def upload_file(
    context: ClientContext,
    file: UploadSource,
    field_name: str,
    url: str,
    *,
    on_complete: Callable[[httpx.Response], None] | None = None,
    on_error: Callable[[httpx.Response | Exception], None] | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    settings: UploadSettings | None = None,
) -> httpx.Response | None:
    """Upload one file to ``url``.

    ``on_complete`` receives the response when the server answers 200 and
    ``on_error`` receives it otherwise; a transport failure hands the exception
    to ``on_error`` and returns ``None``.
    """

    settings = settings or UploadSettings()
    file_name, data, mime_type = read_upload_source(file)

    headers: dict[str, str] = {}
    if settings.method == "PUT":
        body = data
    elif settings.form_data:
        content_type, body = encode_form_data(url, field_name, file_name, data, mime_type)
        headers["Content-Type"] = content_type
    else:
        boundary = generate_boundary()
        body = frame_multipart(boundary, field_name, file_name, data)
        headers["Content-Type"] = f"multipart/form-data; boundary={boundary}"
    headers.update(settings.custom_headers)
    headers["Content-Length"] = str(len(body))

    logger.info("Uploading %s (%d bytes) with %s to %s", file_name, len(body), settings.method, url)
    client = context.async_client()
    try:
        response = await client.request(
            settings.method,
            url,
            headers=headers,
            content=_stream_body(body, settings.chunk_size, on_progress),
        )
    except httpx.TransportError as e:
        logger.warning("Upload of %s failed: %s", file_name, e)
        if on_error is not None:
            on_error(e)
        return None

    if response.status_code == 200:
        if on_complete is not None:
            on_complete(response)
    else:
        logger.warning("Upload of %s answered %s", file_name, response.status_code)
        if on_error is not None:
            on_error(response)
    return response
