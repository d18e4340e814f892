from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class TokenStore:
    """Holds the session's secure token.

    One store is owned by a ClientContext and shared by every TransportClient
    built on it. The last write wins.
    """

    def __init__(self, token: str | None = None) -> None:
        self._token = token or None

    def get(self) -> str | None:
        return self._token

    def set(self, token: str | None) -> None:
        token = (token or "").strip() or None
        if token != self._token:
            logger.debug("Secure token %s", "updated" if token else "cleared")
        self._token = token

    def clear(self) -> None:
        self.set(None)

    def __bool__(self) -> bool:
        return self._token is not None
