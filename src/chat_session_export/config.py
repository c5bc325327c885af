# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Export options shared by the library API and the CLI."""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass

from .attribution import Speaker
from .images import DEFAULT_IMAGE_TIMEOUT


class OutputFormat(str, enum.Enum):
    MARKDOWN = "markdown"
    HTML = "html"

    @property
    def extension(self) -> str:
        return "md" if self is OutputFormat.MARKDOWN else "html"


# Converted content shorter than this is treated as chrome, not a message.
DEFAULT_MIN_CONTENT_LENGTH = {OutputFormat.MARKDOWN: 30, OutputFormat.HTML: 5}


@dataclass(frozen=True)
class ExportOptions:
    """How a conversation is exported.

    Attributes:
        output_format: Markdown or standalone styled HTML
        embed_images: Inline images as PNG data URIs where they can be loaded
        fetch_remote_images: Allow network fetches for images not in the archive
        image_timeout: Ceiling in seconds for loading one remote image
        min_content_length: Override of the per-format minimum message length
        self_label: Heading used for the user's turns
        other_label: Heading used for the assistant's turns
        source_url: Page URL shown in the document header and used to resolve
            relative image sources
        title: Document title; extracted from the page when not given
        date: Export date; today (UTC) when not given
    """

    output_format: OutputFormat = OutputFormat.MARKDOWN
    embed_images: bool = True
    fetch_remote_images: bool = True
    image_timeout: float = DEFAULT_IMAGE_TIMEOUT
    min_content_length: int | None = None
    self_label: str = "You"
    other_label: str = "ChatGPT"
    source_url: str | None = None
    title: str | None = None
    date: datetime.date | None = None

    @property
    def minimum_length(self) -> int:
        if self.min_content_length is not None:
            return self.min_content_length
        return DEFAULT_MIN_CONTENT_LENGTH[self.output_format]

    @property
    def export_date(self) -> datetime.date:
        return self.date or datetime.datetime.now(datetime.timezone.utc).date()

    def label(self, speaker: Speaker) -> str:
        return self.self_label if speaker is Speaker.SELF else self.other_label
