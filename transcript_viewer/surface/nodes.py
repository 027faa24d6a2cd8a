"""Helpers over the BeautifulSoup tree used as the rendered, editable transcript surface.

The renderer builds ``bs4`` tags, the highlight engine, search engine and
position mapper annotate them, and the reconciler reads them back. Host UIs
exchange the surface as HTML (see ``surface.html``).

Tags compare structurally in bs4, so membership checks on surface nodes go
by identity here.
"""

from __future__ import annotations

from typing import Callable, Iterator

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from transcript_viewer.errors import SurfaceRangeError

# Attribute flag for labels that are never part of utterance content.
NON_CONTENT = ("data-content", "false")

_factory = BeautifulSoup("", "html.parser")


def new_tag(name: str, attrs: dict[str, object] | None = None, *, cls: str | None = None,
            text: str | None = None) -> Tag:
    """Create a detached tag; attribute values are stringified."""
    values = {"class": cls} if cls else {}
    values.update({k: str(v) for k, v in (attrs or {}).items()})
    tag = _factory.new_tag(name, attrs=values)
    if text:
        tag.append(NavigableString(text))
    return tag


# ── Classes and styles ───────────────────────────────────────────────────────

def has_class(tag: Tag, name: str) -> bool:
    return name in tag.get_attribute_list("class")


def add_class(tag: Tag, name: str) -> None:
    classes = list(tag.get_attribute_list("class"))
    if name not in classes:
        tag["class"] = classes + [name]


def remove_class(tag: Tag, name: str) -> None:
    classes = [c for c in tag.get_attribute_list("class") if c != name]
    if classes:
        tag["class"] = classes
    else:
        del tag["class"]


def css_value(tag: Tag, prop: str) -> str | None:
    """Value of an inline CSS property, or None."""
    for decl in str(tag.get("style") or "").split(";"):
        if ":" in decl:
            k, v = decl.split(":", 1)
            if k.strip().lower() == prop:
                return v.strip()
    return None


def is_non_content(tag: Tag) -> bool:
    return tag.get(NON_CONTENT[0]) == NON_CONTENT[1]


def closest(node: Tag | NavigableString, cls: str) -> Tag | None:
    """``node`` itself or its nearest ancestor carrying ``cls``."""
    if isinstance(node, Tag) and has_class(node, cls):
        return node
    return node.find_parent(class_=cls)


# ── Text ─────────────────────────────────────────────────────────────────────

def iter_strings(tag: Tag, skip: Callable[[Tag], bool] | None = None) -> Iterator[NavigableString]:
    """Text nodes in document order, not descending into tags ``skip`` accepts."""
    for child in tag.children:
        if isinstance(child, Tag):
            if skip is None or not skip(child):
                yield from iter_strings(child, skip)
        elif isinstance(child, NavigableString) and not isinstance(child, Comment):
            yield child


def content_text(tag: Tag) -> str:
    """Text excluding non-content labels (timestamps, avatars)."""
    return "".join(iter_strings(tag, is_non_content))


def content_runs(container: Tag) -> list[tuple[NavigableString, int]]:
    """Content text nodes of ``container`` with their start offsets in its content text."""
    runs: list[tuple[NavigableString, int]] = []
    pos = 0
    for s in iter_strings(container, is_non_content):
        runs.append((s, pos))
        pos += len(s)
    return runs


def normalize(tag: Tag) -> None:
    """Merge adjacent text nodes and drop empty ones."""
    tag.smooth()
    for child in list(tag.contents):
        if isinstance(child, NavigableString) and not isinstance(child, Comment) and not child:
            child.extract()


def unwrap(tag: Tag) -> None:
    """Replace ``tag`` with its children, then merge the text around it."""
    parent = tag.parent
    if parent is None:
        return
    tag.unwrap()
    normalize(parent)


def split_string(node: NavigableString, offset: int) -> tuple[NavigableString, NavigableString]:
    """Replace ``node`` with two text nodes split at ``offset``; returns both."""
    if node.parent is None:
        raise SurfaceRangeError("cannot split a detached text node")
    left, right = NavigableString(node[:offset]), NavigableString(node[offset:])
    node.replace_with(left, right)
    return left, right


def wrap_siblings(first: Tag | NavigableString, last: Tag | NavigableString, wrapper: Tag) -> Tag:
    """Move the sibling run ``first..last`` (inclusive) into ``wrapper``.

    Raises SurfaceRangeError when the nodes do not share a parent or are
    out of order.
    """
    parent = first.parent
    if parent is None or last.parent is not parent:
        raise SurfaceRangeError("range boundaries do not share a parent")
    i, j = parent.index(first), parent.index(last)
    if j < i:
        raise SurfaceRangeError("range end precedes range start")
    run = parent.contents[i:j + 1]
    first.wrap(wrapper)
    for node in run[1:]:
        wrapper.append(node)
    return wrapper


def _inside(node: NavigableString, container: Tag, name: str) -> bool:
    for parent in node.parents:
        if parent is container:
            return False
        if parent.name == name:
            return True
    return False


def wrap_text_range(container: Tag, start: int, end: int, wrapper: Tag, *, forbid: str | None = "mark") -> Tag:
    """Wrap content offsets ``[start, end)`` of ``container`` in ``wrapper``.

    Both ends must resolve to text nodes under one parent, and neither may
    sit inside a ``forbid`` element. Raises SurfaceRangeError otherwise;
    the tree is left untouched on failure.
    """
    runs = content_runs(container)
    total = sum(len(s) for s, _ in runs)
    if start < 0 or end > total or start >= end:
        raise SurfaceRangeError(f"range {start}:{end} outside content of length {total}")

    first_node, first_off = next((s, off) for s, off in runs if off <= start < off + len(s))
    last_node, last_off = next((s, off) for s, off in runs if off < end <= off + len(s))
    parent = first_node.parent
    if parent is None or last_node.parent is not parent:
        raise SurfaceRangeError("range crosses an element boundary")
    if forbid:
        if _inside(first_node, container, forbid) or _inside(last_node, container, forbid):
            raise SurfaceRangeError(f"range lies inside an existing <{forbid}>")
        i, j = parent.index(first_node), parent.index(last_node)
        for node in parent.contents[i:j + 1]:
            if isinstance(node, Tag) and (node.name == forbid or node.find(forbid) is not None):
                raise SurfaceRangeError(f"range spans an existing <{forbid}>")

    if first_node is last_node:
        _, middle = split_string(first_node, start - first_off)
        middle, _ = split_string(middle, end - start)
        head = tail = middle
    else:
        _, head = split_string(first_node, start - first_off)
        tail, _ = split_string(last_node, end - last_off)
    wrap_siblings(head, tail, wrapper)
    normalize(parent)
    return wrapper
