# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""HTML transducer: rebuilds a message subtree as clean, style-inlined HTML."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag

from .images import ImageEmbed, is_ui_image
from .markdown import CANVAS_PLACEHOLDER, find_content_root, is_safe_href
from .nodes import TagKind, attr, first_descendant, is_chrome, is_text, tag_kind, tag_name
from .styles import InlineStyleResolver, StyleResolver, inline_style

LOGGER = logging.getLogger(__name__)

# Elements whose presentation is copied onto the exported element.
STYLED_TAGS = frozenset(
    {
        "p", "h1", "h2", "h3", "h4", "h5", "h6", "pre", "code", "blockquote",
        "ul", "ol", "li", "table", "thead", "tbody", "tr", "th", "td",
        "strong", "em", "a", "span", "div",
    }
)  # fmt: skip

# Styling hooks and editor bookkeeping attributes of the source page.
STRIPPED_ATTRIBUTES = frozenset({"class", "data-start", "data-end", "data-col-size"})

RESPONSIVE_IMAGE_STYLE = "max-width: 100%; height: auto;"


class HtmlTransducer:
    """Builds a new tree mirroring the source, never touching the source.

    Each exported element reads its presentation from its counterpart in the
    original tree, so styles stay accurate however the output is reshaped.
    """

    def __init__(
        self,
        images: Mapping[int, ImageEmbed] | None = None,
        styles: StyleResolver | None = None,
    ) -> None:
        self.images = images or {}
        self.styles = styles or InlineStyleResolver()
        self._factory = BeautifulSoup("", "html.parser")

    def render_children(self, element: Tag) -> str:
        wrapper = self._factory.new_tag("div")
        for child in element.children:
            for converted in self.convert(child):
                wrapper.append(converted)
        return wrapper.decode_contents()

    def convert(self, node: PageElement) -> list[PageElement]:
        """Return the exported counterpart(s) of ``node``; empty when elided."""
        if is_text(node):
            return [NavigableString(str(node))]
        if not isinstance(node, Tag) or is_chrome(node):
            return []

        kind = tag_kind(node)
        if kind is TagKind.SUPPRESSED:
            return []
        if kind is TagKind.BUTTON:
            return self._convert_button(node)
        if kind is TagKind.IMAGE:
            return self._convert_image(node)
        if kind is TagKind.CANVAS:
            placeholder = self._factory.new_tag("p")
            placeholder.string = CANVAS_PLACEHOLDER
            return [placeholder]

        exported = self._factory.new_tag(tag_name(node), attrs=self._copy_attributes(node))
        if tag_name(node) in STYLED_TAGS:
            style = inline_style(self.styles.resolve(node))
            if style:
                exported["style"] = style
            else:
                exported.attrs.pop("style", None)
        for child in node.children:
            for converted in self.convert(child):
                exported.append(converted)
        return [exported]

    def _copy_attributes(self, element: Tag) -> dict[str, str]:
        attrs: dict[str, str] = {}
        for name in element.attrs:
            lowered = name.lower()
            if lowered in STRIPPED_ATTRIBUTES or lowered.startswith("on"):
                continue
            attrs[name] = attr(element, name)
        if tag_name(element) == "a" and not is_safe_href(attrs.get("href", "").strip()):
            attrs.pop("href", None)
        return attrs

    def _new_image(self, src: str, alt: str) -> Tag:
        image = self._factory.new_tag("img")
        image["src"] = src
        image["alt"] = alt
        image["style"] = RESPONSIVE_IMAGE_STYLE
        return image

    def _payload(self, image: Tag) -> str | None:
        embed = self.images.get(id(image))
        return embed.encoded_payload if embed is not None else None

    def _convert_button(self, button: Tag) -> list[PageElement]:
        image = first_descendant(button, "img")
        if image is None or is_ui_image(image):
            return []
        payload = self._payload(image)
        if not payload:
            LOGGER.debug("Dropping button whose image could not be embedded")
            return []
        return [self._new_image(payload, attr(image, "alt") or "Image")]

    def _convert_image(self, image: Tag) -> list[PageElement]:
        if is_ui_image(image):
            return []
        exported = self._factory.new_tag("img", attrs=self._copy_attributes(image))
        payload = self._payload(image)
        if payload:
            exported["src"] = payload
            # a remaining srcset would take precedence over the embedded source
            exported.attrs.pop("srcset", None)
            exported.attrs.pop("sizes", None)
        exported["style"] = RESPONSIVE_IMAGE_STYLE
        return [exported]


def convert_message_html(
    element: Tag,
    images: Mapping[int, ImageEmbed] | None = None,
    styles: StyleResolver | None = None,
) -> str:
    """Convert one located turn into the inner HTML of a message block."""
    root = find_content_root(element)
    return HtmlTransducer(images, styles).render_children(root).strip()
