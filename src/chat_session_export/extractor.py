# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Conversation export pipeline: locate, attribute, convert, assemble."""

from __future__ import annotations

import asyncio
import contextlib
import glob
import logging
import os
from collections.abc import Sequence
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from .assembler import (
    deduplicate,
    extract_title,
    fingerprint_source,
    page_title,
    render_document,
    suggest_filename,
)
from .attribution import AttributedMessage, attribute, correct_sequence, reply_label
from .config import ExportOptions, OutputFormat
from .html_export import convert_message_html
from .images import FetchFn, HttpImageFetcher, ImageEmbedder, Resources
from .locator import Turn, locate
from .markdown import convert_message_markdown, find_content_root
from .nodes import collapse_whitespace, text_content
from .sources import guess_base_url, parse_html, read_source
from .styles import StyleResolver

LOGGER = logging.getLogger(__name__)

NO_MESSAGES_FOUND = "No messages found. The page structure may have changed."


class NoMessagesFoundError(LookupError):
    """The document holds no recognisable conversation turns."""


@dataclass(frozen=True)
class ExportResult:
    content: str
    filename: str
    title: str
    message_count: int


# --------------------------------------------------------------------------- #
# Single-document pipeline                                                     #
# --------------------------------------------------------------------------- #


async def _convert_turns(
    turns: list[Turn],
    options: ExportOptions,
    embedder: ImageEmbedder | None,
    styles: StyleResolver | None,
    log_prefix: str,
) -> list[AttributedMessage]:
    """Attribute and convert each turn in document order."""
    messages: list[AttributedMessage] = []
    for turn in turns:
        speaker, reliable = attribute(turn, turns)
        images = {}
        if embedder is not None:
            images = await embedder.embed_subtree(find_content_root(turn.node))
        if options.output_format is OutputFormat.HTML:
            content = convert_message_html(turn.node, images, styles)
        else:
            content = convert_message_markdown(turn.node, images)
        messages.append(
            AttributedMessage(
                speaker=speaker,
                reliable=reliable,
                content=content,
                original_index=turn.index,
                text=collapse_whitespace(text_content(turn.node)),
                reply_label=reply_label(turn),
            )
        )
        LOGGER.debug(
            "%sProcessed message %d/%d: speaker=%s, reliable=%s, %d chars",
            log_prefix,
            turn.index + 1,
            len(turns),
            speaker.value,
            reliable,
            len(content),
        )
    return messages


async def export_conversation(
    document: BeautifulSoup,
    options: ExportOptions | None = None,
    *,
    resources: Resources | None = None,
    base_url: str | None = None,
    fetch: FetchFn | None = None,
    styles: StyleResolver | None = None,
    log_prefix: str = "",
) -> ExportResult:
    """Export the conversation in ``document``.

    Args:
        document: Parsed page
        options: Export options; defaults to Markdown with embedded images
        resources: Archived resources (MHTML) available without network access
        base_url: URL the page was saved from, for relative image sources
        fetch: Coroutine returning the bytes of a URL; httpx when omitted
        styles: Presentation lookup for the HTML target
        log_prefix: Prefix for log messages, usually the input file name

    Returns:
        The document text, a suggested filename, the title and message count

    Raises:
        NoMessagesFoundError: If no conversation turns survive extraction
    """
    options = options or ExportOptions()
    turns = locate(document, log_prefix=log_prefix)
    if not turns:
        LOGGER.warning("%s%s", log_prefix, NO_MESSAGES_FOUND)
        raise NoMessagesFoundError(NO_MESSAGES_FOUND)

    LOGGER.info("%sProcessing %d messages...", log_prefix, len(turns))
    base_url = base_url or options.source_url
    async with contextlib.AsyncExitStack() as stack:
        embedder = None
        if options.embed_images:
            if not options.fetch_remote_images:
                fetch = None
            elif fetch is None:
                fetch = await stack.enter_async_context(HttpImageFetcher())
            embedder = ImageEmbedder(
                resources=resources,
                fetch=fetch,
                base_url=base_url,
                timeout=options.image_timeout,
                log_prefix=log_prefix,
            )
        messages = await _convert_turns(turns, options, embedder, styles, log_prefix)

    messages = deduplicate(
        messages,
        min_length=options.minimum_length,
        key=fingerprint_source(options.output_format),
        log_prefix=log_prefix,
    )
    if not messages:
        LOGGER.warning("%sEvery located turn was empty or a duplicate", log_prefix)
        raise NoMessagesFoundError(NO_MESSAGES_FOUND)
    correct_sequence(messages)

    title = options.title or extract_title(document)
    filename = suggest_filename(
        options.title or page_title(document), options.export_date, options.output_format.extension
    )
    content = render_document(messages, title, options)
    LOGGER.info("%sExport completed: %d messages exported", log_prefix, len(messages))
    return ExportResult(content=content, filename=filename, title=title, message_count=len(messages))


def convert_html(
    html: str | bytes, options: ExportOptions | None = None, **kwargs: object
) -> ExportResult:
    """Synchronous convenience wrapper around :func:`export_conversation`."""
    return asyncio.run(export_conversation(parse_html(html), options, **kwargs))  # type: ignore[arg-type]


# --------------------------------------------------------------------------- #
# Per-file worker                                                              #
# --------------------------------------------------------------------------- #


def _process_single(path: Path, options: ExportOptions) -> ExportResult:
    """Convert the first part of one saved page that holds a conversation."""
    LOGGER.info("Starting processing of file: %s", path)
    source = read_source(path)
    if not source.html_parts:
        raise RuntimeError(f"No text/html parts found in {path}")

    log_prefix = f"[{path.name}] "
    for i, html in enumerate(source.html_parts):
        part_prefix = log_prefix if len(source.html_parts) == 1 else f"[{path.name} part {i}] "
        soup = parse_html(html)
        try:
            result = asyncio.run(
                export_conversation(
                    soup,
                    options,
                    resources=source.resources,
                    base_url=source.base_url or guess_base_url(soup),
                    log_prefix=part_prefix,
                )
            )
        except NoMessagesFoundError:
            LOGGER.debug("%sNo conversation in this part", part_prefix)
            continue

        return result

    raise NoMessagesFoundError(f"{path}: {NO_MESSAGES_FOUND}")


# --------------------------------------------------------------------------- #
# Path expansion & batch processing                                            #
# --------------------------------------------------------------------------- #


def expand_paths(inputs: Sequence[str]) -> list[Path]:
    """Expand glob patterns in input paths and return deduplicated resolved paths."""
    expanded: list[Path] = []
    for pattern in inputs:
        matches = glob.glob(pattern)
        LOGGER.debug("Pattern '%s' matched %d files", pattern, len(matches))
        expanded.extend(Path(m).resolve() for m in matches)

    # de-dup while preserving order
    seen: set[Path] = set()
    uniq: list[Path] = []
    for path in expanded:
        if path not in seen:
            uniq.append(path)
            seen.add(path)
    return uniq


def _output_path(directory: Path, filename: str, stem: str, taken: set[Path]) -> Path:
    """``directory / filename``, qualified by the input stem if already used in this batch."""
    candidate = directory / filename
    base, dot, extension = filename.rpartition(".")
    attempt = 1
    while candidate in taken:
        qualifier = stem if attempt == 1 else f"{stem} {attempt}"
        candidate = directory / f"{base} ({qualifier}){dot}{extension}"
        attempt += 1
    taken.add(candidate)
    return candidate


def process_many(
    inputs: Sequence[str],
    outdir: Path | None,
    jobs: int,
    options: ExportOptions | None = None,
) -> list[Path]:
    """Convert every matched file, one independent pipeline per file."""
    options = options or ExportOptions()
    files = expand_paths(inputs)
    LOGGER.info("Path expansion completed: %d input patterns -> %d files", len(inputs), len(files))
    if not files:
        LOGGER.warning("No files found after path expansion")
        return []

    if outdir:
        outdir.mkdir(parents=True, exist_ok=True)

    total_size = 0
    for p in files:
        with contextlib.suppress(OSError):
            total_size += p.stat().st_size

    small_batch = (len(files) < 8) or (total_size < 8 * 1024 * 1024)
    max_workers = max(1, jobs or os.cpu_count() or 4)
    executor = ThreadPoolExecutor if small_batch else ProcessPoolExecutor
    LOGGER.info(
        "Batch processing configuration: executor=%s, workers=%d, total_size=%d bytes",
        executor.__name__,
        max_workers,
        total_size,
    )

    results: dict[Path, ExportResult] = {}
    failures: list[str] = []
    with executor(max_workers=max_workers) as ex:
        futs = {ex.submit(_process_single, p, options): p for p in files}
        for completed_count, fut in enumerate(as_completed(futs), start=1):
            src = futs[fut]
            try:
                results[src] = fut.result()
            except Exception as exc:
                failures.append(f"{src}: {exc}")
                LOGGER.error("Processing failed (%d/%d): %s: %s", completed_count, len(files), src, exc)
                LOGGER.debug("Failure details for %s", src, exc_info=exc)
                continue
            LOGGER.info("Processing completed (%d/%d): %s", completed_count, len(files), src)

    # name clashes resolve in input order
    produced_total: list[Path] = []
    taken: set[Path] = set()
    for src in files:
        if src not in results:
            continue
        result = results[src]
        out = _output_path(outdir or src.parent, result.filename, src.stem, taken)
        if out.exists():
            LOGGER.info("[%s] Overwriting existing output: %s", src.name, out)
        out.write_text(result.content, encoding="utf-8")
        LOGGER.info("[%s] Wrote %d messages to: %s", src.name, result.message_count, out)
        produced_total.append(out)

    if failures:
        LOGGER.critical("Batch processing completed with %d failures out of %d files", len(failures), len(files))
        raise RuntimeError("Some files failed:\n" + "\n".join(failures))
    return produced_total
