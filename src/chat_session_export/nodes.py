# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Read-only helpers over BeautifulSoup nodes shared by the transducers."""

from __future__ import annotations

import enum
import re
from collections.abc import Iterator

from bs4 import NavigableString, PageElement, Tag
from bs4.element import PreformattedString

# Class-name substrings that mark interactive chrome rather than content.
CHROME_CLASS_MARKERS = ("copy", "edit", "regenerate", "citation-pill", "sr-only")

# Tags whose subtrees never contribute content.
SUPPRESSED_TAGS = frozenset({"svg", "script", "style", "noscript", "template"})

_NEWLINE_RUN_RE = re.compile(r"\n+")
_WHITESPACE_RUN_RE = re.compile(r"\s+")


class TagKind(enum.Enum):
    """Closed set of element kinds the transducers dispatch on."""

    HEADING = "heading"
    PARAGRAPH = "paragraph"
    STRONG = "strong"
    EMPHASIS = "emphasis"
    CODE = "code"
    PRE = "pre"
    LIST = "list"
    TABLE = "table"
    IMAGE = "image"
    CANVAS = "canvas"
    LINE_BREAK = "line_break"
    RULE = "rule"
    LINK = "link"
    BLOCKQUOTE = "blockquote"
    BUTTON = "button"
    SUPPRESSED = "suppressed"
    CONTAINER = "container"
    OTHER = "other"


_KIND_BY_TAG: dict[str, TagKind] = {
    **{f"h{level}": TagKind.HEADING for level in range(1, 7)},
    "p": TagKind.PARAGRAPH,
    "strong": TagKind.STRONG,
    "b": TagKind.STRONG,
    "em": TagKind.EMPHASIS,
    "i": TagKind.EMPHASIS,
    "code": TagKind.CODE,
    "pre": TagKind.PRE,
    "ul": TagKind.LIST,
    "ol": TagKind.LIST,
    "table": TagKind.TABLE,
    "img": TagKind.IMAGE,
    "canvas": TagKind.CANVAS,
    "br": TagKind.LINE_BREAK,
    "hr": TagKind.RULE,
    "a": TagKind.LINK,
    "blockquote": TagKind.BLOCKQUOTE,
    "button": TagKind.BUTTON,
    **{name: TagKind.SUPPRESSED for name in SUPPRESSED_TAGS},
    **{
        name: TagKind.CONTAINER
        for name in ("span", "div", "article", "section", "main", "header", "footer", "aside", "nav")
    },
}


def tag_kind(element: Tag) -> TagKind:
    """Classify an element; unknown tags map to ``TagKind.OTHER``."""
    return _KIND_BY_TAG.get(tag_name(element), TagKind.OTHER)


def is_text(node: PageElement) -> bool:
    """True for character data; comments, doctypes and CDATA are not text."""
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def tag_name(element: Tag) -> str:
    return (element.name or "").lower()


def attr(element: Tag, name: str) -> str:
    """Return an attribute as a single string (bs4 yields lists for class-like attributes)."""
    value = element.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return str(value)


def class_string(element: Tag) -> str:
    return attr(element, "class")


def class_tokens(element: Tag) -> list[str]:
    return class_string(element).split()


def is_chrome(element: Tag) -> bool:
    """True when the class attribute marks the element as UI chrome."""
    classes = class_string(element)
    return any(marker in classes for marker in CHROME_CLASS_MARKERS)


def element_children(element: Tag) -> Iterator[Tag]:
    for child in element.children:
        if isinstance(child, Tag):
            yield child


def first_descendant(element: Tag, name: str) -> Tag | None:
    found = element.find(name)
    return found if isinstance(found, Tag) else None


def text_content(node: PageElement) -> str:
    """Equivalent of DOM ``textContent``: every descendant text node, nothing dropped."""
    if is_text(node):
        return str(node)
    if isinstance(node, Tag):
        return "".join(str(s) for s in node.find_all(string=True) if is_text(s))
    return ""


def raw_text(node: PageElement) -> str:
    """Text of a subtree with chrome, buttons and suppressed tags left out.

    Used for code blocks, where the page typically decorates the ``pre`` with a
    "Copy code" button or a screen-reader label.
    """
    if is_text(node):
        return str(node)
    if not isinstance(node, Tag):
        return ""
    name = tag_name(node)
    if name in SUPPRESSED_TAGS or name == "button" or is_chrome(node):
        return ""
    return "".join(raw_text(child) for child in node.children)


def flatten(text: str) -> str:
    """Replace every run of newlines with one space and trim."""
    return _NEWLINE_RUN_RE.sub(" ", text).strip()


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RUN_RE.sub(" ", text).strip()


def has_ancestor_in(element: Tag, candidates: set[int]) -> bool:
    """True if any ancestor of ``element`` has its ``id()`` in ``candidates``."""
    return any(id(parent) in candidates for parent in element.parents)
