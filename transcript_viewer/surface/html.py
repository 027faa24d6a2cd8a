"""HTML serialisation of the surface tree, and parsing of edited HTML back into it."""

from __future__ import annotations

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag

from transcript_viewer.surface.nodes import new_tag


def parse_fragment(markup: str) -> list[PageElement]:
    """Top-level nodes of an HTML fragment, detached from the parse tree."""
    soup = BeautifulSoup(markup, "html.parser")
    return [node.extract() for node in list(soup.contents)]


def parse_html(markup: str) -> Tag:
    """Parse an HTML fragment into a surface tree.

    A fragment with a single top-level element returns that element;
    anything else comes back wrapped in a ``div``.
    """
    top = parse_fragment(markup)
    elements = [c for c in top if isinstance(c, Tag)]
    stray = [c for c in top if isinstance(c, NavigableString) and c.strip()]
    if len(elements) == 1 and not stray:
        return elements[0]
    root = new_tag("div")
    root.extend(top)
    return root


def to_html(node: Tag | NavigableString) -> str:
    if isinstance(node, Tag):
        return node.decode()
    return node.output_ready()
