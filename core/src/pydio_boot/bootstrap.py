"""Startup coordinator.

Obtains the boot configuration (from an opener window's handoff, from
parameters preloaded into the page, or from the server), derives the
session-wide settings from it, loads the main application library and finally
constructs and starts the application.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pydio_boot.document import HostDocument
from pydio_boot.errors import BootstrapHalted, ErrorKind, ExchangeFault
from pydio_boot.library import with_version
from pydio_boot.markup import single_node_text
from pydio_boot.params import ParameterStore
from pydio_boot.session import Application, ClientContext
from pydio_boot.transport import ParsedResponse, TransportClient, append_query, update_server_access

logger = logging.getLogger(__name__)

PRODUCTION_BOOT_SCRIPT = "/build/pydio.boot.min.js"
DEBUG_BOOT_SCRIPT = "/build/boot.prod.js"
MAIN_LIBRARY = "pydio.min.js"
EXTERNAL_SELECTOR_PARAM = "external_selector_type"
EXT_SELECT_ACTION = "ext_select"
DATA_FOLDER_PROBE_URL = "data/cache/index.html"
HANDOFF_UNDERIVED_KEYS = ("ajxpServerAccess", "ajxpResourcesFolder")

MISSING_RESOURCES_MESSAGE = "Cannot find resource folder"
EMPTY_CATALOG_MESSAGE = "Ooups, this should not happen, your message file is empty!"
MAIN_LIBRARY_MESSAGE = "The main application library could not be loaded"
PHP_ERROR_LEVEL_HINT = (
    "Php errors detected, it seems that Notice or Strict are detected, "
    "you may consider changing the PHP Error Reporting level!"
)

ApplicationFactory = Callable[[ParameterStore], Application]


class BootPhase(StrEnum):
    INIT = "init"
    OPENER_INHERIT = "opener_inherit"
    LOAD_PRELOADED = "load_preloaded"
    FETCH_REMOTE = "fetch_remote"
    CONFIGURE = "configure"
    LOAD_MAIN_LIBRARY = "load_main_library"
    RUN = "run"
    HALT = "halt"


@dataclass
class BootstrapState:
    parameters: ParameterStore
    phase: BootPhase = BootPhase.INIT
    history: list[BootPhase] = field(default_factory=lambda: [BootPhase.INIT])

    def enter(self, phase: BootPhase) -> None:
        logger.info("Boot phase %s -> %s", self.phase, phase)
        self.phase = phase
        self.history.append(phase)


class SessionHandoff(BaseModel):
    """What a window hands to the windows it opens so they can skip the boot fetch."""

    server_access_path: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


def coerce_handoff(value: SessionHandoff | Mapping[str, Any] | str | bytes) -> SessionHandoff:
    if isinstance(value, SessionHandoff):
        return value
    if isinstance(value, (str, bytes)):
        return SessionHandoff.model_validate_json(value)
    return SessionHandoff.model_validate(value)


class BootstrapCoordinator:
    def __init__(
        self,
        start_parameters: Mapping[str, Any] | ParameterStore | None = None,
        *,
        application_factory: ApplicationFactory,
        document: HostDocument | None = None,
        context: ClientContext | None = None,
        opener_handoff: SessionHandoff | Mapping[str, Any] | str | bytes | None = None,
    ) -> None:
        if isinstance(start_parameters, ParameterStore):
            parameters = start_parameters.copy()
        else:
            parameters = ParameterStore(start_parameters)
        self.state = BootstrapState(parameters)
        self.application_factory = application_factory
        self.document = document if document is not None else HostDocument()
        self.context = context if context is not None else ClientContext()
        self.opener_handoff = opener_handoff
        self.application: Application | None = None
        self.fault: ExchangeFault | None = None
        self._fetched_paths: dict[str, Any] = {}

        self.detect_base_parameters()
        if self.parameters.get("ALERT"):
            self.context.alert(str(self.parameters.get("ALERT")))

    @property
    def parameters(self) -> ParameterStore:
        return self.state.parameters

    @property
    def phase(self) -> BootPhase:
        return self.state.phase

    def detect_base_parameters(self) -> None:
        """Infer the resources folder and debug mode from the page's boot script tag."""

        for src in self.document.scripts:
            if PRODUCTION_BOOT_SCRIPT not in src and DEBUG_BOOT_SCRIPT not in src:
                continue
            self.parameters.set("debugMode", DEBUG_BOOT_SCRIPT in src)
            folder = src.replace(DEBUG_BOOT_SCRIPT, "").replace(PRODUCTION_BOOT_SCRIPT, "")
            self.parameters.set("ajxpResourcesFolder", folder.split("?", 1)[0])

        if self.parameters.get("ajxpResourcesFolder"):
            self.context.resources_folder = self.parameters.get("ajxpResourcesFolder")
        else:
            logger.warning("%s in the host document scripts", MISSING_RESOURCES_MESSAGE)

        booter_url = str(self.parameters.get("BOOTER_URL") or "").split("?", 1)[0]
        self.parameters.set("ajxpServerAccessPath", booter_url)
        self.parameters.set("serverAccessPath", booter_url)
        self.context.server_access_path = booter_url

    def boot_config_url(self) -> str:
        url = str(self.parameters.get("BOOTER_URL") or "")
        if self.parameters.get("debugMode"):
            url = append_query(url, "debug=true")
        prefix = self.parameters.get("SERVER_PREFIX_URI")
        if prefix:
            url = append_query(url, "server_prefix_uri=" + str(prefix).replace("../", "_UP_/"))
        return url

    # -- driving ------------------------------------------------------------

    async def start(self) -> Application | None:
        """Run every phase; returns the running application, or None once halted."""

        try:
            await self.document.wait_until_interactive()
            transport = self._inherit_from_opener()
            if transport is None:
                transport = await self._load_boot_config()
            await self._configure(transport)
            return await self._load_main_library(transport)
        except BootstrapHalted as halted:
            self.state.enter(BootPhase.HALT)
            self.fault = halted.fault
            logger.error("Startup halted (%s): %s", halted.fault.kind, halted.fault.message)
            if halted.notify:
                self.context.alert(halted.fault.message)
            return None

    def start_blocking(self) -> Application | None:
        async def run() -> Application | None:
            try:
                return await self.start()
            finally:
                await self.context.release_async_client()

        return asyncio.run(run())

    # -- phases -------------------------------------------------------------

    def _inherit_from_opener(self) -> TransportClient | None:
        if self.opener_handoff is None:
            return None
        try:
            handoff = coerce_handoff(self.opener_handoff)
        except ValidationError as e:
            logger.warning("Ignoring invalid session handoff: %s", e)
            return None
        if handoff.server_access_path != self.parameters.get("serverAccessPath"):
            logger.info("Session handoff is for %s, booting on our own", handoff.server_access_path)
            return None

        self.state.enter(BootPhase.OPENER_INHERIT)
        self.state.parameters = ParameterStore(copy.deepcopy(handoff.parameters))

        # The query string is not part of the handed-over configuration.
        query = self.document.query_params()
        if query.get(EXTERNAL_SELECTOR_PARAM):
            self.parameters.set("SELECTOR_DATA", {"type": query[EXTERNAL_SELECTOR_PARAM], "data": query})
        else:
            self.parameters.unset("SELECTOR_DATA")
        return TransportClient(context=self.context)

    async def _load_boot_config(self) -> TransportClient:
        preloaded = self.parameters.get("PRELOADED_BOOT_CONF")
        if preloaded:
            self.state.enter(BootPhase.LOAD_PRELOADED)
            self.parameters.merge(preloaded)
            return TransportClient(context=self.context)

        self.state.enter(BootPhase.FETCH_REMOTE)
        transport = TransportClient(self.boot_config_url(), context=self.context)
        transport.set_method("GET")
        parsed = await transport.send()
        if parsed is None:
            fault = transport.last_fault or ExchangeFault(
                ErrorKind.NETWORK_FAILURE, "Boot configuration request failed"
            )
            raise BootstrapHalted(fault, notify=False)
        self._merge_boot_response(parsed, transport.last_fault)
        return transport

    def _merge_boot_response(self, parsed: ParsedResponse, fault: ExchangeFault | None) -> None:
        if parsed.markup is not None and parsed.markup.tag == "tree":
            message = single_node_text(parsed.markup, "message") or ""
            raise BootstrapHalted(
                ExchangeFault(
                    ErrorKind.CONFIGURATION_FAULT, f"Exception caught by application : {message}"
                )
            )
        if fault is not None and fault.kind in (ErrorKind.SERVER_FAULT, ErrorKind.PROTOCOL_ERROR):
            # Already shown by the transport.
            raise BootstrapHalted(fault, notify=False)

        data = parsed.json_body
        if not isinstance(data, Mapping):
            text = parsed.source_text
            message = f"Exception uncaught by application : {text}"
            self.context.alert(message)
            if "<b>Notice</b>" in text or "<b>Strict Standards</b>" in text:
                self.context.alert(PHP_ERROR_LEVEL_HINT)
            raise BootstrapHalted(
                ExchangeFault(ErrorKind.CONFIGURATION_FAULT, message), notify=False
            )

        self.parameters.merge(data)

    async def _configure(self, transport: TransportClient) -> None:
        self.state.enter(BootPhase.CONFIGURE)
        params = self.parameters
        ctx = self.context

        # Exported as fetched; the receiving window derives them again.
        self._fetched_paths = {key: params.get(key) for key in HANDOFF_UNDERIVED_KEYS}
        ctx.server_access_path = update_server_access(params, ctx.tokens)

        folder = params.get("ajxpResourcesFolder")
        if not folder:
            raise BootstrapHalted(
                ExchangeFault(ErrorKind.CONFIGURATION_FAULT, MISSING_RESOURCES_MESSAGE)
            )
        for css in params.get("cssResources") or []:
            self.document.add_stylesheet(f"{folder}/{css}")

        transport.library_url = ctx.library_url = f"{folder}/build"
        theme = params.get("theme")
        ctx.resources_folder = f"{folder}/themes/{theme}" if theme else f"{folder}/themes"
        version = params.get("ajxpVersion")
        ctx.library_version = str(version) if version else None

        if params.get("additional_js_resource"):
            await transport.load_library(str(params.get("additional_js_resource")))

        catalog = params.get("i18nMessages")
        if not isinstance(catalog, Mapping) or not catalog:
            raise BootstrapHalted(ExchangeFault(ErrorKind.CONFIGURATION_FAULT, EMPTY_CATALOG_MESSAGE))
        messages = {str(k): str(v).replace("\\n", "\n") for k, v in catalog.items()}
        params.set("i18nMessages", messages)
        ctx.messages = messages

        ctx.zip_enabled = bool(params.get("zipEnabled"))
        ctx.multiple_files_download_enabled = bool(params.get("multipleFilesDownloadEnabled"))

    async def _load_main_library(self, transport: TransportClient) -> Application:
        self.state.enter(BootPhase.LOAD_MAIN_LIBRARY)
        if self.parameters.get("debugMode"):
            application = self._start_application()
            if application is None:
                raise BootstrapHalted(
                    ExchangeFault(ErrorKind.APPLICATION_ERROR, MAIN_LIBRARY_MESSAGE), notify=False
                )
            return application

        def library_loaded(entrypoint: Any) -> None:
            if callable(entrypoint):
                self.application_factory = entrypoint
            self._start_application()

        file_name = with_version(
            MAIN_LIBRARY,
            self.context.library_version,
            self.context.config.library.version_param,
        )
        await transport.load_library(file_name, library_loaded)
        if self.application is None:
            # The loader already alerted.
            raise BootstrapHalted(
                ExchangeFault(ErrorKind.APPLICATION_ERROR, MAIN_LIBRARY_MESSAGE), notify=False
            )
        return self.application

    def _start_application(self) -> Application | None:
        try:
            return self._initialize()
        except Exception as e:
            logger.exception("Application failed to start")
            self.application = None
            self.context.session = None
            self.context.alert(f"error loading {MAIN_LIBRARY}:{e}")
            return None

    def _initialize(self) -> Application:
        application = self.application_factory(self.parameters)
        self.application = application
        self.context.session = application

        application.observe_once("actions_loaded", self._on_actions_loaded)
        application.observe_once("loaded", self._on_application_loaded)
        if self.parameters.get("currentLanguage"):
            application.current_language = self.parameters.get("currentLanguage")
        application.init()
        self.state.enter(BootPhase.RUN)
        return application

    def _on_actions_loaded(self, _payload: Any = None) -> None:
        controller = self.application.controller
        selector_data = self.parameters.get("SELECTOR_DATA")
        if not selector_data and EXT_SELECT_ACTION in controller.actions:
            del controller.actions[EXT_SELECT_ACTION]
            controller.fire_context_change()
            controller.fire_selection_change()
        elif selector_data:
            controller.default_actions["file"] = EXT_SELECT_ACTION

    def _on_application_loaded(self, _payload: Any = None) -> None:
        selector_data = self.parameters.get("SELECTOR_DATA")
        if selector_data:
            controller = self.application.controller
            controller.default_actions["file"] = EXT_SELECT_ACTION
            controller.selector_data = selector_data

    # -- helpers for other windows ------------------------------------------

    def export_handoff(self) -> SessionHandoff:
        parameters = self.parameters.to_dict()
        for key, value in self._fetched_paths.items():
            if value is None:
                parameters.pop(key, None)
            else:
                parameters[key] = value
        return SessionHandoff(
            server_access_path=str(self.parameters.get("serverAccessPath") or ""),
            parameters=parameters,
        )

    @staticmethod
    def test_data_folder_access(
        context: ClientContext, on_exposed: Callable[[], None]
    ) -> ParsedResponse | None:
        """Probe whether the data cache folder is readable over HTTP; it should not be."""

        transport = TransportClient(DATA_FOLDER_PROBE_URL, context=context)
        transport.set_method("GET")

        def check(parsed: ParsedResponse) -> None:
            if parsed.status == 200:
                logger.warning("Data folder is publicly readable")
                on_exposed()

        transport.on_complete = check
        return transport.send_blocking()
