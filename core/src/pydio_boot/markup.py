"""Path queries and text extraction over parsed markup.

Queries use ElementTree's XPath subset and are evaluated relative to the node
they are run against, so ``"message"`` matches direct children named
``message`` and ``".//message"`` matches at any depth.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from pydio_boot.errors import MarkupParseError, MarkupQueryError

Markup = ET.Element | ET.ElementTree


def parse_markup(text: str | bytes | None) -> ET.Element | None:
    """Parse a markup body; an empty body yields ``None``."""

    if text is None:
        return None
    if not text.strip():
        return None
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise MarkupParseError(str(e)) from e


def _query_root(doc: Markup) -> ET.Element:
    if isinstance(doc, ET.ElementTree):
        root = doc.getroot()
        if root is None:
            raise MarkupQueryError("empty markup document")
        return root
    if ET.iselement(doc):
        return doc
    raise MarkupQueryError(f"not a markup node: {type(doc).__name__}")


def find_first(doc: Markup, query: str) -> ET.Element | None:
    root = _query_root(doc)
    try:
        return root.find(query)
    except (SyntaxError, KeyError) as e:
        raise MarkupQueryError(f"query: {query}, element: {root.tag}, error: {e}") from e


def find_all(doc: Markup, query: str) -> list[ET.Element]:
    root = _query_root(doc)
    try:
        return root.findall(query)
    except (SyntaxError, KeyError) as e:
        raise MarkupQueryError(f"query: {query}, element: {root.tag}, error: {e}") from e


def text_of(node: ET.Element | None, include_raw_blocks: bool = False) -> str | None:
    """Concatenate the text of ``node`` and all of its descendants.

    The parser folds CDATA sections into ordinary text, so raw blocks are part of
    the result whatever ``include_raw_blocks`` says.
    """

    if node is None or not ET.iselement(node):
        return None
    return "".join(node.itertext())


def single_node_text(doc: Markup, query: str) -> str | None:
    return text_of(find_first(doc, query))


def remove_node(root: ET.Element, node: ET.Element) -> bool:
    # No parent links in ElementTree: find the parent by walking the tree.
    for parent in root.iter():
        for child in parent:
            if child is node:
                parent.remove(child)
                return True
    return False
