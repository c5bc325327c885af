# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later
"""Export saved chat conversations to Markdown or styled HTML."""

from .config import ExportOptions, OutputFormat
from .extractor import (
    ExportResult,
    NoMessagesFoundError,
    convert_html,
    export_conversation,
    process_many,
)

__version__ = "0.1.0"

__all__ = [
    "ExportOptions",
    "ExportResult",
    "NoMessagesFoundError",
    "OutputFormat",
    "__version__",
    "convert_html",
    "export_conversation",
    "process_many",
]
