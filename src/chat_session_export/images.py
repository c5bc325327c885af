# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Resolve image elements to embeddable PNG data URIs."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import TracebackType
from urllib.parse import unquote_to_bytes, urljoin, urlparse

import httpx
from bs4 import Tag
from PIL import Image

from .nodes import attr, class_string, tag_name

LOGGER = logging.getLogger(__name__)

DEFAULT_IMAGE_TIMEOUT = 5.0
MIN_CONTENT_IMAGE_WIDTH = 48
USER_AGENT = "chat-session-export (image embedder)"

FetchFn = Callable[[str], Awaitable[bytes]]
Resources = Mapping[str, tuple[str, bytes]]


@dataclass(frozen=True)
class ImageEmbed:
    """An image source and its embedded payload, ``None`` when unavailable."""

    source_reference: str
    encoded_payload: str | None = None


def is_skipped_source(src: str) -> bool:
    """Favicons and avatars are page chrome, never content."""
    return "favicon" in src or "avatar" in src


def is_ui_image(element: Tag) -> bool:
    """True for icons and chrome images that the transducers leave out."""
    if is_skipped_source(attr(element, "src")):
        return True
    if "icon" in class_string(element):
        return True
    width = attr(element, "width").strip()
    return width.isdigit() and 0 < int(width) < MIN_CONTENT_IMAGE_WIDTH


def _to_data_uri(mime: str, data: bytes) -> str:
    """Convert binary data to data URI format."""
    return "data:" + mime + ";base64," + base64.b64encode(data).decode("ascii")


def decode_data_uri(uri: str) -> bytes | None:
    """Return the payload of a ``data:`` URI, or ``None`` if it is malformed."""
    header, sep, payload = uri.partition(",")
    if not sep:
        return None
    try:
        if header.lower().endswith(";base64"):
            return base64.b64decode(payload, validate=False)
        return unquote_to_bytes(payload)
    except ValueError:
        return None


def rasterize_to_png(data: bytes, log_prefix: str = "") -> str | None:
    """Decode image bytes and re-encode them as a PNG data URI.

    Zero-area images and anything Pillow cannot decode or encode yield ``None``.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            if width == 0 or height == 0:
                LOGGER.debug("%sImage has zero area (%dx%d), not embedding", log_prefix, width, height)
                return None
            image.load()
            frame = image if image.mode in ("1", "L", "LA", "I", "P", "RGB", "RGBA") else image.convert("RGBA")
            buffer = io.BytesIO()
            frame.save(buffer, format="PNG")
    except Exception as exc:
        LOGGER.warning("%sCannot rasterize image: %s", log_prefix, exc)
        return None
    LOGGER.debug("%sRasterized %dx%d image to %d PNG bytes", log_prefix, width, height, buffer.tell())
    return _to_data_uri("image/png", buffer.getvalue())


class HttpImageFetcher:
    """Async context manager owning one httpx client for a pipeline run."""

    def __init__(self, user_agent: str = USER_AGENT) -> None:
        self._user_agent = user_agent
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpImageFetcher:
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __call__(self, url: str) -> bytes:
        if self._client is None:
            raise RuntimeError("HttpImageFetcher used outside of 'async with'")
        response = await self._client.get(url)
        response.raise_for_status()
        return response.content


class ImageEmbedder:
    """Turns ``img`` elements into PNG data URIs.

    Sources found in ``resources`` (an MHTML resource map keyed by ``cid:``
    and ``Content-Location``) or written as ``data:`` URIs are embedded
    directly. Anything else is fetched with ``fetch`` under a hard ``timeout``.
    Every failure resolves to ``None``; nothing is raised to the caller.
    """

    def __init__(
        self,
        resources: Resources | None = None,
        fetch: FetchFn | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_IMAGE_TIMEOUT,
        log_prefix: str = "",
    ) -> None:
        self.resources = resources or {}
        self.fetch = fetch
        self.base_url = base_url
        self.timeout = timeout
        self.log_prefix = log_prefix
        self._cache: dict[str, str | None] = {}

    async def embed(self, element: Tag) -> str | None:
        src = attr(element, "src").strip()
        if not src or is_skipped_source(src):
            return None
        if src not in self._cache:
            self._cache[src] = await self._embed_source(src)
        return self._cache[src]

    async def embed_subtree(self, root: Tag) -> dict[int, ImageEmbed]:
        """Embed every content image under ``root`` in document order.

        The result is keyed by ``id()`` of the image element so that the
        synchronous transducers can look payloads up while walking the tree.
        """
        images = [root] if tag_name(root) == "img" else root.find_all("img")
        embeds: dict[int, ImageEmbed] = {}
        for image in images:
            if not isinstance(image, Tag) or is_ui_image(image):
                continue
            payload = await self.embed(image)
            embeds[id(image)] = ImageEmbed(attr(image, "src"), payload)
        if embeds:
            LOGGER.debug(
                "%sEmbedded %d/%d images",
                self.log_prefix,
                sum(1 for e in embeds.values() if e.encoded_payload),
                len(embeds),
            )
        return embeds

    def _local_bytes(self, src: str) -> bytes | None:
        if src.startswith("data:"):
            return decode_data_uri(src)
        keys = [src]
        if src.startswith("blob:"):
            keys.append(src[len("blob:"):])
        if self.base_url:
            keys.append(urljoin(self.base_url, src))
        for key in keys:
            if key in self.resources:
                return self.resources[key][1]
        return None

    def _remote_url(self, src: str) -> str | None:
        url = urljoin(self.base_url, src) if self.base_url else src
        if urlparse(url).scheme in ("http", "https"):
            return url
        return None

    async def _embed_source(self, src: str) -> str | None:
        data = self._local_bytes(src)
        if data is not None:
            LOGGER.debug("%sImage available locally: %s", self.log_prefix, src[:80])
            return rasterize_to_png(data, self.log_prefix)

        url = self._remote_url(src)
        if url is None or self.fetch is None:
            LOGGER.debug("%sImage not retrievable, leaving reference: %s", self.log_prefix, src[:80])
            return None

        try:
            data = await asyncio.wait_for(self.fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("%sTimed out after %.1fs loading image: %s", self.log_prefix, self.timeout, url)
            return None
        except Exception as exc:
            LOGGER.warning("%sFailed to load image %s: %s", self.log_prefix, url, exc)
            return None
        return rasterize_to_png(data, self.log_prefix)
