# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Assemble attributed messages into a Markdown or standalone HTML document."""

from __future__ import annotations

import datetime
import html
import logging
import re
from collections.abc import Callable, Sequence
from string import Template
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from .attribution import AttributedMessage
from .config import ExportOptions, OutputFormat
from .nodes import collapse_whitespace, text_content

LOGGER = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 100

TITLE_SELECTORS = (
    'h1:not([class*="hidden"])',
    '[class*="conversation-title"]',
    '[data-testid*="conversation-title"]',
    "title",
)
GENERIC_TITLES = frozenset({"chatgpt", "new chat", "untitled", "chat"})
DEFAULT_TITLE = "Conversation with ChatGPT"

_PRODUCT_SUFFIX_RE = re.compile(r"\s*[-|]\s*(ChatGPT|Microsoft Copilot|OpenAI|Claude)\s*$", re.I)
_UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")


# --------------------------------------------------------------------------- #
# Deduplication                                                                #
# --------------------------------------------------------------------------- #


def fingerprint(text: str) -> str:
    """Whitespace-normalised prefix used to spot repeated messages."""
    return collapse_whitespace(text[:FINGERPRINT_LENGTH])


def fingerprint_source(output_format: OutputFormat) -> Callable[[AttributedMessage], str]:
    """Markdown is compared on its content; HTML markup on the turn's plain text."""
    if output_format is OutputFormat.HTML:
        return lambda message: message.text
    return lambda message: message.content


def deduplicate(
    messages: Sequence[AttributedMessage],
    min_length: int,
    key: Callable[[AttributedMessage], str],
    log_prefix: str = "",
) -> list[AttributedMessage]:
    """Drop too-short messages and later repeats of an already seen fingerprint."""
    seen: set[str] = set()
    kept: list[AttributedMessage] = []
    for message in messages:
        source = key(message)
        if not message.content.strip() or len(source.strip()) < min_length:
            LOGGER.debug("%sSkipping message %d: too short or empty", log_prefix, message.original_index)
            continue
        digest = fingerprint(source)
        if digest in seen:
            LOGGER.debug("%sSkipping message %d: duplicate content", log_prefix, message.original_index)
            continue
        seen.add(digest)
        kept.append(message)
    return kept


# --------------------------------------------------------------------------- #
# Title & filename                                                             #
# --------------------------------------------------------------------------- #


def page_title(document: BeautifulSoup | Tag) -> str:
    title = document.find("title")
    return text_content(title).strip() if isinstance(title, Tag) else ""


def extract_title(document: BeautifulSoup | Tag) -> str:
    """First non-generic conversation title on the page, product suffix removed."""
    for selector in TITLE_SELECTORS:
        element = document.select_one(selector)
        if element is None:
            continue
        title = _PRODUCT_SUFFIX_RE.sub("", collapse_whitespace(text_content(element)))
        if title and title.lower() not in GENERIC_TITLES:
            LOGGER.debug("Using title %r from selector %r", title, selector)
            return title
    LOGGER.debug("No usable title found, using default")
    return DEFAULT_TITLE


def format_date(date: datetime.date) -> str:
    return date.isoformat()


def suggest_filename(title: str, date: datetime.date, extension: str) -> str:
    """Filesystem-safe name: ``"<title> (<YYYY-MM-DD>).<ext>"``."""
    safe = _WHITESPACE_RE.sub(" ", _UNSAFE_FILENAME_RE.sub("", title)).strip()
    stamp = format_date(date)
    if not safe:
        return f"ChatGPT_Conversation_{stamp}.{extension}"
    return f"{safe} ({stamp}).{extension}"


# --------------------------------------------------------------------------- #
# Rendering                                                                    #
# --------------------------------------------------------------------------- #


def _sender(message: AttributedMessage, options: ExportOptions) -> str:
    label = options.label(message.speaker)
    if message.reply_label:
        return f"{label} ({message.reply_label})"
    return label


def _source_host(url: str) -> str:
    return urlparse(url).netloc or url


def render_markdown_document(
    messages: Sequence[AttributedMessage], title: str, options: ExportOptions
) -> str:
    lines = [f"# {title}\n", f"**Date:** {format_date(options.export_date)}"]
    if options.source_url:
        lines.append(f"**Source:** [{_source_host(options.source_url)}]({options.source_url})")
    lines[-1] += "\n"
    lines.append("---\n")
    for message in messages:
        lines.append(f"### **{_sender(message, options)}**\n")
        lines.append(message.content)
        lines.append("\n---\n")
    return "\n".join(lines)


_MESSAGE_TEMPLATE = Template(
    """
        <div class="message $speaker">
            <div class="sender">$sender</div>
            <div class="content">$content</div>
        </div>"""
)

_HTML_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>$title - $date</title>
    <style>
        body {
            font-family: 'Segoe UI', sans-serif;
            max-width: 900px;
            margin: auto;
            padding: 2rem;
            background: #fff;
            color: #333;
            line-height: 1.6;
        }
        .header {
            text-align: center;
            margin-bottom: 2rem;
            padding-bottom: 1rem;
            border-bottom: 2px solid #eee;
        }
        .header h1 { color: #2c3e50; margin-bottom: 0.5rem; }
        .metadata { color: #666; font-size: 0.9rem; }
        .message {
            margin-bottom: 1.5rem;
            padding: 1rem;
            border-radius: 8px;
            background: #f8f9fa;
        }
        .message.self { background: #eef4fb; }
        .sender {
            font-weight: bold;
            color: #2c3e50;
            margin-bottom: 0.5rem;
            font-size: 1.1rem;
        }
        .content { word-wrap: break-word; overflow-wrap: break-word; }
        .content img { max-width: 100%; height: auto; border-radius: 8px; margin: 1rem 0; }
        .content pre {
            background: #1e1e1e;
            color: #d4d4d4;
            padding: 1rem;
            border-radius: 8px;
            overflow-x: auto;
            font-family: 'Consolas', 'Monaco', monospace;
            font-size: 0.9rem;
        }
        .content code {
            font-family: 'Consolas', 'Monaco', monospace;
            background: rgba(0,0,0,0.05);
            padding: 0.2em 0.4em;
            border-radius: 3px;
            font-size: 0.9em;
        }
        .content pre code { background: none; padding: 0; }
        .content table { border-collapse: collapse; width: 100%; margin: 1rem 0; }
        .content th, .content td { border: 1px solid #ddd; padding: 0.5rem; text-align: left; }
        .content th { background: #f4f4f4; font-weight: bold; }
        .content ul, .content ol { padding-left: 2rem; margin: 0.5rem 0; }
        .content h1, .content h2, .content h3, .content h4, .content h5, .content h6 {
            margin: 1rem 0 0.5rem 0;
            color: #2c3e50;
        }
        .content blockquote {
            border-left: 4px solid #ddd;
            margin: 1rem 0;
            padding-left: 1rem;
            color: #666;
        }
        @media print {
            body { margin: 0; padding: 1rem; }
            .message { break-inside: avoid; }
        }
    </style>
</head>
<body>
    <div class="header">
        <h1>$title</h1>
        <div class="metadata">
            <div><strong>Date:</strong> $date</div>$source
        </div>
    </div>

    <div class="conversation">$messages
    </div>
</body>
</html>
"""
)


def render_html_document(
    messages: Sequence[AttributedMessage], title: str, options: ExportOptions
) -> str:
    blocks = "".join(
        _MESSAGE_TEMPLATE.substitute(
            speaker=message.speaker.value,
            sender=html.escape(_sender(message, options)),
            content=message.content,
        )
        for message in messages
    )
    source = ""
    if options.source_url:
        source = (
            f'\n            <div><strong>Source:</strong> <a href="{html.escape(options.source_url)}">'
            f"{html.escape(_source_host(options.source_url))}</a></div>"
        )
    return _HTML_TEMPLATE.substitute(
        title=html.escape(title),
        date=format_date(options.export_date),
        source=source,
        messages=blocks,
    )


def render_document(
    messages: Sequence[AttributedMessage], title: str, options: ExportOptions
) -> str:
    if options.output_format is OutputFormat.HTML:
        return render_html_document(messages, title, options)
    return render_markdown_document(messages, title, options)
