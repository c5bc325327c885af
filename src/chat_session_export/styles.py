# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Presentation lookup used by the HTML target to inline styles."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Protocol

from bs4 import Tag

from .nodes import attr

# Properties copied onto exported elements, in output order.
PRESENTATIONAL_PROPERTIES = (
    "color",
    "background-color",
    "background",
    "font-family",
    "font-size",
    "font-weight",
    "font-style",
    "text-decoration",
    "text-align",
    "margin",
    "margin-top",
    "margin-right",
    "margin-bottom",
    "margin-left",
    "padding",
    "padding-top",
    "padding-right",
    "padding-bottom",
    "padding-left",
    "border",
    "border-radius",
    "display",
    "width",
    "max-width",
    "height",
    "white-space",
    "overflow",
    "word-wrap",
    "word-break",
    "list-style-type",
    "list-style-position",
)

DEGENERATE_VALUES = frozenset({"", "none", "normal", "auto"})

_IMPORTANT_RE = re.compile(r"\s*!important\s*$", re.IGNORECASE)


class StyleResolver(Protocol):
    """Resolves the presentation properties of an element of the source tree."""

    def resolve(self, element: Tag) -> Mapping[str, str]: ...


class InlineStyleResolver:
    """Reads the declarations of an element's own ``style`` attribute.

    A saved page carries no layout engine, so the declared inline style is the
    closest available view of an element's computed presentation.
    """

    def resolve(self, element: Tag) -> Mapping[str, str]:
        return parse_declarations(attr(element, "style"))


def parse_declarations(style: str) -> dict[str, str]:
    """Parse ``prop: value; ...`` into a mapping; later declarations win."""
    declarations: dict[str, str] = {}
    for chunk in style.split(";"):
        name, sep, value = chunk.partition(":")
        if not sep:
            continue
        name = name.strip().lower()
        value = _IMPORTANT_RE.sub("", value).strip()
        if name:
            declarations[name] = value
    return declarations


def inline_style(properties: Mapping[str, str]) -> str:
    """Serialise the allow-listed, non-degenerate properties as one declaration."""
    styles = []
    for name in PRESENTATIONAL_PROPERTIES:
        value = (properties.get(name) or "").strip()
        if value.lower() in DEGENERATE_VALUES:
            continue
        styles.append(f"{name}: {value}")
    return "; ".join(styles)
