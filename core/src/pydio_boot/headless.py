"""An application without a user interface.

It satisfies the session surface used by the transport and the bootstrap,
logging every message and recording events and fired actions so that a
command-line run (or a test) can inspect what happened.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydio_boot.params import ParameterStore

logger = logging.getLogger(__name__)

_MESSAGE_LEVELS = {
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "SUCCESS": logging.INFO,
    "INFO": logging.INFO,
}


class HeadlessController:
    def __init__(self, actions: Mapping[str, Any] | None = None) -> None:
        self.actions: dict[str, Any] = dict(actions or {})
        self.default_actions: dict[str, str] = {}
        self.selector_data: Any = None
        self.fired: list[str] = []
        self.context_changes = 0
        self.selection_changes = 0

    def fire_action(self, action: str) -> None:
        logger.info("Action fired: %s", action)
        self.fired.append(action)

    def fire_context_change(self) -> None:
        self.context_changes += 1

    def fire_selection_change(self) -> None:
        self.selection_changes += 1


class HeadlessApplication:
    def __init__(
        self, parameters: ParameterStore, *, actions: Mapping[str, Any] | None = None
    ) -> None:
        self.parameters = parameters
        self.controller = HeadlessController(actions)
        self.current_language: str | None = None
        self.messages: list[tuple[str, str]] = []
        self.notifications: list[str] = []
        self.events: list[tuple[str, Any]] = []
        self.context_resets = 0
        self.initialized = False
        self._observers: dict[str, list[Callable[[Any], None]]] = {}

    def notify(self, event: str) -> None:
        self.notifications.append(event)

    def display_message(self, message_type: str, message: str) -> None:
        logger.log(_MESSAGE_LEVELS.get(message_type, logging.INFO), "[%s] %s", message_type, message)
        self.messages.append((message_type, message))

    def reset_context(self) -> None:
        self.context_resets += 1

    def fire_action(self, action: str) -> None:
        self.controller.fire_action(action)

    def observe_once(self, event: str, callback: Callable[[Any], None]) -> None:
        self._observers.setdefault(event, []).append(callback)

    def fire(self, event: str, payload: Any = None) -> None:
        self.events.append((event, payload))
        for callback in self._observers.pop(event, []):
            callback(payload)

    def init(self) -> None:
        logger.info("Application starting (language=%s)", self.current_language or "default")
        self.initialized = True
        self.fire("actions_loaded")
        self.fire("loaded")
