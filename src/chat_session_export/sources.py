# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Read saved chat pages (HTML, MHTML) into HTML documents and resource maps."""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass, field
from email import policy
from email.message import Message
from email.parser import BytesParser
from pathlib import Path

from bs4 import BeautifulSoup, Comment

from .nodes import attr

LOGGER = logging.getLogger(__name__)

HTML_SUFFIXES = (".html", ".htm")
MHTML_SUFFIXES = (".mhtml", ".mht")

_SAVED_FROM_RE = re.compile(r"saved from url=\(\d+\)(\S+)")


@dataclass
class SourceDocument:
    """A saved page: its HTML documents and any archived resources."""

    path: Path
    html_parts: list[str | bytes]
    resources: dict[str, tuple[str, bytes]] = field(default_factory=dict)
    base_url: str | None = None


def parse_html(html: str | bytes) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def guess_base_url(soup: BeautifulSoup) -> str | None:
    """URL the page was saved from, used to resolve relative image sources."""
    base = soup.find("base", href=True)
    if base is not None and attr(base, "href").strip():
        return attr(base, "href").strip()
    for selector, name in (('link[rel~="canonical"]', "href"), ('meta[property="og:url"]', "content")):
        element = soup.select_one(selector)
        if element is not None and attr(element, name).strip():
            return attr(element, name).strip()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        match = _SAVED_FROM_RE.search(str(comment))
        if match:
            return match.group(1)
    return None


def _warn_unresolvable_resources(html: bytes, path: Path) -> None:
    """Plain HTML cannot carry cid: resources; the MHTML export does."""
    cid_refs = len(re.findall(rb"src=[\"\']cid:", html, flags=re.I))
    if cid_refs > 0:
        LOGGER.warning(
            "%s: HTML references %d cid: resources that cannot be embedded; "
            "an MHTML export of the page carries them.",
            path,
            cid_refs,
        )


# --------------------------------------------------------------------------- #
# MHTML parsing                                                                #
# --------------------------------------------------------------------------- #


def _charset_or_error(message: Message, context: str) -> str:
    """Charset of a MIME part; US-ASCII for text parts that declare none (RFC 2045)."""
    charset = message.get_content_charset()
    if charset:
        try:
            codecs.lookup(charset)
        except LookupError as exc:
            LOGGER.error("Invalid charset '%s' in %s: %s", charset, context, exc)
            raise ValueError(f"Invalid charset '{charset}' in {context}") from exc
        return charset

    content_type = message.get_content_type() or ""
    if content_type.startswith("text/"):
        LOGGER.debug("No charset declared for %s in %s, assuming US-ASCII", content_type, context)
        return "us-ascii"
    raise ValueError(f"No charset specified and content type '{content_type}' in {context}")


def _decoded_payload(message: Message, context: str) -> bytes:
    """Payload with its Content-Transfer-Encoding undone."""
    try:
        payload = message.get_payload(decode=True)
    except Exception as exc:
        LOGGER.error("Failed to decode payload in %s: %s", context, exc, exc_info=True)
        raise ValueError(f"Failed to decode payload in {context}: {exc}") from exc
    if payload is None:
        return b""
    if not isinstance(payload, bytes):
        raise ValueError(f"Unexpected non-binary payload in {context}")
    return payload


def read_mhtml(path: Path) -> SourceDocument:
    """Split an MHTML archive into HTML documents and a resource map.

    Resources are keyed both by ``cid:<Content-ID>`` and by their
    ``Content-Location`` so that either form of reference resolves.
    """
    LOGGER.debug("Starting MHTML parsing for: %s", path)
    try:
        with path.open("rb") as f:
            msg = BytesParser(policy=policy.default).parse(f)
    except Exception as exc:
        LOGGER.error("Failed to parse MHTML file %s: %s", path, exc, exc_info=True)
        raise ValueError(f"MHTML parsing failed for {path}: {exc}") from exc

    source = SourceDocument(path=path, html_parts=[])
    snapshot_location = (msg.get("Snapshot-Content-Location") or "").strip()
    if snapshot_location:
        source.base_url = snapshot_location

    parts = list(msg.walk()) if msg.is_multipart() else [msg]
    for i, part in enumerate(parts):
        if part.is_multipart():
            continue
        ctype = (part.get_content_type() or "").lower()
        context = f"{path.name} part {i}"
        payload = _decoded_payload(part, context)

        if ctype == "text/html":
            try:
                text = payload.decode(_charset_or_error(part, context))
            except (ValueError, UnicodeDecodeError) as exc:
                LOGGER.error("HTML part encoding error in %s: %s", context, exc)
                raise ValueError(f"HTML part encoding error in {context}: {exc}") from exc
            source.html_parts.append(text)
            location = (part.get("Content-Location") or "").strip()
            if location and source.base_url is None:
                source.base_url = location
            LOGGER.debug("HTML part %d: %d chars", i, len(text))
            continue

        keys = []
        cid = (part.get("Content-ID") or "").strip().strip("<>").strip()
        if cid:
            keys.append(f"cid:{cid}")
        location = (part.get("Content-Location") or "").strip()
        if location:
            keys.append(location)
        for key in keys:
            source.resources[key] = (ctype, payload)
        if keys:
            LOGGER.debug("Stored resource part %d: keys=%s, type=%s, %d bytes", i, keys, ctype, len(payload))

    LOGGER.info(
        "MHTML parsing completed: %d HTML parts, %d resources",
        len(source.html_parts),
        len(source.resources),
    )
    return source


def read_html(path: Path) -> SourceDocument:
    """Read a saved HTML page; the encoding is sniffed from the document."""
    raw = path.read_bytes()
    _warn_unresolvable_resources(raw, path)
    return SourceDocument(path=path, html_parts=[raw])


def read_source(path: Path) -> SourceDocument:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix in MHTML_SUFFIXES:
        return read_mhtml(path)
    if suffix in HTML_SUFFIXES:
        return read_html(path)
    raise ValueError(f"Unsupported file format: {suffix}")
