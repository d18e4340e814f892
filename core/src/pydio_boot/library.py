"""Libraries announced by the server, resolved to local Python code.

The server publishes a small JSON manifest per library. Its entrypoint is a
``module:attribute`` reference that is imported only when the module lives under
one of the configured package prefixes; the fetched body itself is never run.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from pydio_boot.errors import LibraryLoadError

if TYPE_CHECKING:
    from pydio_boot.session import ClientContext

logger = logging.getLogger(__name__)

LoadedCallback = Callable[[Any], None]


class LibraryManifest(BaseModel):
    name: str = Field(min_length=1)
    version: str | None = Field(default=None)
    entrypoint: str = Field(
        pattern=r"^[A-Za-z_][\w.]*:[A-Za-z_][\w.]*$",
        description="Dotted module path and attribute, e.g. 'pydio_boot.headless:HeadlessApplication'.",
    )

    @property
    def module(self) -> str:
        return self.entrypoint.partition(":")[0]

    @property
    def attribute(self) -> str:
        return self.entrypoint.partition(":")[2]


def with_version(file_name: str, version: str | None, param: str = "v") -> str:
    if version and "?" not in file_name:
        return f"{file_name}?{param}={version}"
    return file_name


def library_location(base_url: str | None, file_name: str) -> str:
    if not base_url:
        return file_name
    return f"{base_url.rstrip('/')}/{file_name}"


def _is_allowed(module: str, allowed_packages: Sequence[str]) -> bool:
    return any(module == pkg or module.startswith(pkg + ".") for pkg in allowed_packages)


def resolve_entrypoint(manifest: LibraryManifest, allowed_packages: Sequence[str]) -> Any:
    if not _is_allowed(manifest.module, allowed_packages):
        raise LibraryLoadError(f"module {manifest.module} is outside the allowed packages")
    try:
        target: Any = importlib.import_module(manifest.module)
    except ImportError as e:
        raise LibraryLoadError(f"cannot import {manifest.module}: {e}") from e
    for part in manifest.attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise LibraryLoadError(f"{manifest.module} has no attribute {manifest.attribute}") from e
    return target


def read_manifest(response: httpx.Response) -> LibraryManifest:
    if response.status_code != 200:
        raise LibraryLoadError(f"Status code was {response.status_code}")
    try:
        return LibraryManifest.model_validate_json(response.text)
    except ValidationError as e:
        raise LibraryLoadError(f"invalid library manifest ({e.error_count()} errors)") from e


def _library_loaded(
    context: ClientContext,
    file_name: str,
    response: httpx.Response | None,
    error: Exception | None,
    on_loaded: LoadedCallback | None,
) -> Any | None:
    loaded = None
    try:
        if error is not None:
            raise LibraryLoadError(str(error)) from error
        manifest = read_manifest(response)
        loaded = resolve_entrypoint(manifest, context.config.library.allowed_packages)
    except LibraryLoadError as e:
        logger.warning("Library %s could not be loaded: %s", file_name, e)
        context.alert(f"error loading {file_name}:{e}")
    else:
        logger.info("Loaded library %s (%s %s)", file_name, manifest.name, manifest.version or "-")
        if on_loaded is not None:
            on_loaded(loaded)

    if context.session is not None:
        context.session.fire("server_answer")
    return loaded


def _prepare(context: ClientContext, base_url: str | None, file_name: str) -> tuple[str, str]:
    file_name = with_version(
        file_name, context.library_version, context.config.library.version_param
    )
    return file_name, library_location(base_url, file_name)


async def load_library(
    context: ClientContext,
    base_url: str | None,
    file_name: str,
    on_loaded: LoadedCallback | None = None,
) -> Any | None:
    file_name, url = _prepare(context, base_url, file_name)
    response, error = None, None
    try:
        response = await context.async_client().get(url)
    except httpx.TransportError as e:
        error = e
    return _library_loaded(context, file_name, response, error, on_loaded)


def load_library_blocking(
    context: ClientContext,
    base_url: str | None,
    file_name: str,
    on_loaded: LoadedCallback | None = None,
) -> Any | None:
    file_name, url = _prepare(context, base_url, file_name)
    response, error = None, None
    try:
        response = context.blocking_client().get(url)
    except httpx.TransportError as e:
        error = e
    return _library_loaded(context, file_name, response, error, on_loaded)
