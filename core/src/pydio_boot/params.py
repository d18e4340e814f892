"""Ordered request/configuration parameters and their wire encoding.

The same store type carries the boot configuration for the whole session and the
parameters of each individual exchange. Keys keep their insertion order, which is
also the order of the serialized ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterator, Mapping
from typing import Any
from urllib.parse import quote

logger = logging.getLogger(__name__)

LIST_SUFFIX = "[]"

# Same set of characters left untouched by JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"
_MISSING = object()


class ParameterStore:
    """Ordered key -> value store; values are scalars or lists."""

    def __init__(self, items: Mapping[str, Any] | None = None) -> None:
        self._items: dict[str, Any] = {}
        if items:
            for key, value in items.items():
                self._items[str(key)] = value

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __getitem__(self, key: str) -> Any:
        return self._items[key]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParameterStore):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"ParameterStore({self._items!r})"

    def get(self, key: str, default: Any = None) -> Any:
        return self._items.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._items

    def set(self, key: str, value: Any) -> None:
        self._items[key] = value

    def unset(self, key: str) -> bool:
        return self._items.pop(key, _MISSING) is not _MISSING

    def add(self, key: str, value: Any) -> None:
        """Set ``key``, accumulating into a list for ``name[]`` style keys."""

        if key in self._items and key.endswith(LIST_SUFFIX):
            existing = self._items[key]
            # Never append into a list the caller handed us.
            existing = list(existing) if isinstance(existing, list) else [existing]
            existing.append(value)
            self._items[key] = existing
        else:
            self._items[key] = value

    def merge(self, other: Mapping[str, Any] | ParameterStore) -> None:
        for key, value in other.items():
            self._items[str(key)] = value

    def items(self):
        return self._items.items()

    def keys(self):
        return self._items.keys()

    def copy(self) -> ParameterStore:
        return ParameterStore(
            {k: list(v) if isinstance(v, list) else v for k, v in self._items.items()}
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: list(v) if isinstance(v, list) else v for k, v in self._items.items()}


def wire_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_component(value: Any) -> str:
    return quote(wire_value(value), safe=_URI_COMPONENT_SAFE)


def serialize_parameters(store: ParameterStore) -> str:
    """Render ``key=value`` pairs joined by ``&``.

    Keys are written as-is; values are percent-encoded. A list value repeats its
    key once per item.
    """

    parts: list[str] = []
    for key, value in store.items():
        if isinstance(value, (list, tuple)):
            parts.extend(f"{key}={encode_component(item)}" for item in value)
        else:
            parts.append(f"{key}={encode_component(value)}")
    return "&".join(parts)


def normalize_parameters(value: ParameterStore | Mapping[str, Any]) -> tuple[ParameterStore, bool]:
    """Return the canonical store for ``value`` and whether it was a legacy shape.

    Plain mappings are still accepted but deprecated.
    """

    if isinstance(value, ParameterStore):
        return value, False
    if isinstance(value, Mapping):
        warnings.warn(
            "Passing a plain mapping as parameters is deprecated; use ParameterStore",
            DeprecationWarning,
            stacklevel=3,
        )
        logger.warning("Legacy parameter mapping normalized into a ParameterStore")
        return ParameterStore(value), True
    raise TypeError(f"Unsupported parameters type: {type(value).__name__}")
