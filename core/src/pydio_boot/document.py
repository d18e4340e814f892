"""The host page a bootstrap runs in."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from html.parser import HTMLParser
from urllib.parse import parse_qsl, urljoin, urlsplit


@dataclass(frozen=True)
class StylesheetLink:
    href: str
    rel: str = "stylesheet"
    type: str = "text/css"
    media: str = "screen"


class _HeadScanner(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self.scripts: list[str] = []
        self.stylesheets: list[StylesheetLink] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        values = {k: v or "" for k, v in attrs}
        if tag == "script" and values.get("src"):
            self.scripts.append(values["src"])
        elif tag == "link" and values.get("rel", "").lower() == "stylesheet" and values.get("href"):
            self.stylesheets.append(
                StylesheetLink(
                    href=values["href"],
                    type=values.get("type") or "text/css",
                    media=values.get("media") or "screen",
                )
            )


class HostDocument:
    """Script sources, stylesheet links and location of the hosting page.

    A document created with ``interactive=False`` holds back
    ``wait_until_interactive`` until ``mark_interactive`` is called.
    """

    def __init__(
        self,
        location: str = "",
        scripts: Iterable[str] = (),
        stylesheets: Iterable[StylesheetLink] = (),
        *,
        interactive: bool = True,
    ) -> None:
        self.location = location
        self.scripts = list(scripts)
        self.stylesheets = list(stylesheets)
        self._interactive = interactive
        self._ready: asyncio.Event | None = None

    @classmethod
    def from_html(cls, html: str, location: str = "") -> HostDocument:
        scanner = _HeadScanner()
        scanner.feed(html)
        scanner.close()
        scripts = [urljoin(location, src) if location else src for src in scanner.scripts]
        return cls(location, scripts, scanner.stylesheets)

    @property
    def interactive(self) -> bool:
        return self._interactive

    def mark_interactive(self) -> None:
        self._interactive = True
        if self._ready is not None:
            self._ready.set()

    async def wait_until_interactive(self) -> None:
        if self._interactive:
            return
        if self._ready is None:
            self._ready = asyncio.Event()
        await self._ready.wait()

    def query_params(self) -> dict[str, str]:
        # Repeated keys: the last one wins.
        return dict(parse_qsl(urlsplit(self.location).query, keep_blank_values=True))

    def add_stylesheet(self, href: str) -> StylesheetLink:
        link = StylesheetLink(href=href)
        self.stylesheets.append(link)
        return link
