# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Markdown transducer: converts a message subtree into clean Markdown."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace

from bs4 import PageElement, Tag

from .images import ImageEmbed, is_ui_image
from .nodes import (
    TagKind,
    attr,
    class_string,
    element_children,
    first_descendant,
    flatten,
    is_chrome,
    is_text,
    raw_text,
    tag_kind,
    tag_name,
)

LOGGER = logging.getLogger(__name__)

FENCE = "```"
CANVAS_PLACEHOLDER = "[Canvas Image]"
UNSAFE_HREF_PREFIXES = ("javascript:", "data:", "vbscript:")

_LANGUAGE_RE = re.compile(r"language-([a-zA-Z0-9]+)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")
_LEAKED_ENTITY_RE = re.compile(r"&(lt|gt|amp|nbsp|quot);")
_LEAKED_ENTITIES = {"lt": "<", "gt": ">", "amp": "&", "nbsp": " ", "quot": '"'}


@dataclass(frozen=True)
class ConversionContext:
    """Ambient state threaded through one subtree conversion."""

    in_pre: bool = False
    indent: int = 0


# --------------------------------------------------------------------------- #
# Inline text helpers                                                          #
# --------------------------------------------------------------------------- #


def escape_link_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")


def escape_href(href: str) -> str:
    """Percent-encode the two characters that would break ``[text](href)``."""
    return href.replace("\\", "%5C").replace(")", "%29")


def is_safe_href(href: str) -> bool:
    """False for empty hrefs, script/data URIs and in-page fragments."""
    if not href or href.startswith("#"):
        return False
    return not href.lower().startswith(UNSAFE_HREF_PREFIXES)


def _strip_line_indentation(text: str) -> str:
    lines: list[str] = []
    in_fence = False
    for line in text.split("\n"):
        stripped = line.lstrip(" \t")
        if stripped.startswith(FENCE):
            # opening fences are normalised, closing ones sit inside the block
            lines.append(line if in_fence else stripped)
            in_fence = not in_fence
        elif in_fence:
            lines.append(line)
        else:
            lines.append(stripped)
    return "\n".join(lines)


def normalize_whitespace(markdown: str) -> str:
    """Strip line indentation outside code fences, collapse blank runs, trim."""
    markdown = _strip_line_indentation(markdown)
    markdown = _EXCESS_NEWLINES_RE.sub("\n\n", markdown)
    return markdown.strip()


def clean_markdown(markdown: str) -> str:
    """Post-process the assembled Markdown of a single turn."""
    markdown = _LEAKED_ENTITY_RE.sub(lambda m: _LEAKED_ENTITIES[m.group(1)], markdown)
    return normalize_whitespace(markdown)


# --------------------------------------------------------------------------- #
# Structured transducer                                                        #
# --------------------------------------------------------------------------- #


class MarkdownTransducer:
    """Tag-dispatched conversion of a bs4 subtree into Markdown.

    Conversion is a pure function of the node: the source tree is only read.
    Images are rendered with their embedded payload when ``images`` (as built
    by :meth:`ImageEmbedder.embed_subtree`) holds one for that node.
    """

    def __init__(self, images: Mapping[int, ImageEmbed] | None = None) -> None:
        self.images = images or {}

    def convert(self, node: PageElement, context: ConversionContext | None = None) -> str:
        context = context or ConversionContext()
        if is_text(node):
            return str(node)
        if not isinstance(node, Tag):
            return ""
        if is_chrome(node):
            return ""

        kind = tag_kind(node)
        if kind is TagKind.SUPPRESSED:
            return ""
        if kind is TagKind.HEADING:
            level = int(tag_name(node)[1])
            return f"\n\n{'#' * level} {self.flattened_text(node, context)}\n\n"
        if kind is TagKind.PARAGRAPH:
            return "\n\n" + self.convert_children(node, context) + "\n\n"
        if kind is TagKind.STRONG:
            return "**" + self.convert_children(node, context) + "**"
        if kind is TagKind.EMPHASIS:
            return "*" + self.convert_children(node, context) + "*"
        if kind is TagKind.CODE:
            return self._convert_code(node, context)
        if kind is TagKind.PRE:
            return self._convert_pre(node, context)
        if kind is TagKind.LIST:
            return "\n\n" + self.convert_list(node, context) + "\n\n"
        if kind is TagKind.TABLE:
            return self.convert_table(node, context)
        if kind is TagKind.IMAGE:
            return self.convert_image(node)
        if kind is TagKind.CANVAS:
            return f"\n\n{CANVAS_PLACEHOLDER}\n\n"
        if kind is TagKind.LINE_BREAK:
            return "\n"
        if kind is TagKind.RULE:
            return "\n\n---\n\n"
        if kind is TagKind.LINK:
            return self._convert_link(node, context)
        if kind is TagKind.BLOCKQUOTE:
            quoted = self.convert_children(node, context).replace("\n", "\n> ")
            return "\n\n> " + quoted + "\n\n"
        if kind is TagKind.BUTTON:
            image = first_descendant(node, "img")
            return self.convert_image(image) if image is not None else ""
        # CONTAINER and OTHER are transparent
        return self.convert_children(node, context)

    def convert_children(self, element: Tag, context: ConversionContext) -> str:
        return "".join(self.convert(child, context) for child in element.children)

    def flattened_text(self, element: Tag, context: ConversionContext) -> str:
        return flatten(self.convert_children(element, context))

    def _convert_code(self, element: Tag, context: ConversionContext) -> str:
        text = raw_text(element)
        parent = element.parent
        if context.in_pre or (isinstance(parent, Tag) and tag_name(parent) == "pre"):
            return text
        # backticks inside the span are not escaped
        return f"`{text}`"

    def _convert_pre(self, element: Tag, context: ConversionContext) -> str:
        language = ""
        code = first_descendant(element, "code")
        if code is not None:
            match = _LANGUAGE_RE.search(class_string(code))
            language = match.group(1) if match else ""
        body = self._pre_text(element, replace(context, in_pre=True)).strip()
        return f"\n\n{FENCE}{language}\n{body}\n{FENCE}\n\n"

    def _pre_text(self, node: PageElement, context: ConversionContext) -> str:
        """Literal text of a code block; nested code spans are not backticked."""
        if is_text(node):
            return str(node)
        if not isinstance(node, Tag) or is_chrome(node):
            return ""
        kind = tag_kind(node)
        if kind is TagKind.CODE:
            return self._convert_code(node, context)
        if kind in (TagKind.SUPPRESSED, TagKind.BUTTON):
            return ""
        return "".join(self._pre_text(child, context) for child in node.children)

    def _convert_link(self, element: Tag, context: ConversionContext) -> str:
        href = attr(element, "href").strip()
        if not is_safe_href(href):
            return self.convert_children(element, context)
        text = self.flattened_text(element, context) or href
        return f"[{escape_link_text(text)}]({escape_href(href)})"

    def convert_image(self, element: Tag) -> str:
        if is_ui_image(element):
            return ""
        src = attr(element, "src")
        embed = self.images.get(id(element))
        if embed is not None and embed.encoded_payload:
            src = embed.encoded_payload
        elif src.startswith("blob:"):
            src = src[len("blob:"):]
        alt = attr(element, "alt")
        if not alt or alt.startswith("http"):
            alt = "Image"
        return f"\n\n![{alt}]({src})\n\n"

    # ----------------------------------------------------------------------- #
    # Tables                                                                  #
    # ----------------------------------------------------------------------- #

    def _cell_text(self, cell: Tag, context: ConversionContext) -> str:
        return self.convert(cell, context).replace("\n", " ").strip()

    def convert_table(self, table: Tag, context: ConversionContext) -> str:
        """Render a table as a pipe table; ragged rows are passed through."""
        rows: list[str] = []
        header_row = None
        for row in _table_rows(table):
            if _in_section(row, table, "thead"):
                if header_row is None:
                    header_row = row
                continue
            cells = [
                self._cell_text(cell, context)
                for cell in element_children(row)
                if tag_name(cell) in ("td", "th")
            ]
            if cells:
                rows.append("| " + " | ".join(cells) + " |")

        if header_row is not None:
            headers = [
                self._cell_text(cell, context)
                for cell in element_children(header_row)
                if tag_name(cell) == "th"
            ]
            if headers:
                rows[:0] = [
                    "| " + " | ".join(headers) + " |",
                    "| " + " | ".join("---" for _ in headers) + " |",
                ]

        if not rows:
            LOGGER.debug("Table produced no rows, omitting it")
            return ""
        return "\n\n" + "\n".join(rows) + "\n\n"

    # ----------------------------------------------------------------------- #
    # Lists                                                                   #
    # ----------------------------------------------------------------------- #

    def convert_list(self, element: Tag, context: ConversionContext) -> str:
        """Render ``ul``/``ol``, nesting child lists two spaces deeper."""
        ordered = tag_name(element) == "ol"
        number = _start_number(element)
        indent = "  " * context.indent
        nested_context = replace(context, indent=context.indent + 1)
        items: list[str] = []

        for item in element_children(element):
            if tag_name(item) != "li":
                continue
            marker = f"{number}." if ordered else "-"
            number += 1

            text_parts: list[str] = []
            nested_parts: list[str] = []
            for child in item.children:
                if isinstance(child, Tag) and tag_kind(child) is TagKind.LIST:
                    nested_parts.append(self.convert_list(child, nested_context))
                elif isinstance(child, Tag):
                    text_parts.append(self.convert(child, context))
                elif is_text(child):
                    text_parts.append(str(child))

            text = "".join(text_parts).replace("\n", " ").strip()
            if text:
                items.append(f"{indent}{marker} {text}")
            nested = "".join(nested_parts)
            if nested:
                items.append(nested.rstrip())

        return "\n".join(items)


def _owning_table(element: Tag) -> Tag | None:
    return element.find_parent("table")


def _table_rows(table: Tag) -> list[Tag]:
    """Rows that belong to ``table`` itself, not to a nested table."""
    return [row for row in table.find_all("tr") if _owning_table(row) is table]


def _in_section(row: Tag, table: Tag, section: str) -> bool:
    for parent in row.parents:
        if parent is table:
            return False
        if tag_name(parent) == section:
            return True
    return False


def _start_number(element: Tag) -> int:
    try:
        return int(attr(element, "start").strip() or "1")
    except ValueError:
        return 1


def convert_message_markdown(
    element: Tag, images: Mapping[int, ImageEmbed] | None = None
) -> str:
    """Convert one located turn into cleaned Markdown."""
    root = find_content_root(element)
    return clean_markdown(MarkdownTransducer(images).convert(root))


def find_content_root(element: Tag) -> Tag:
    """The rendered-markdown container of a turn, or the turn itself."""
    found = element.select_one('.markdown, [class*="markdown"]')
    return found if isinstance(found, Tag) else element
