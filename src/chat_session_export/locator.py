# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Locate the top-level conversation turns of a saved chat page."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from .nodes import class_tokens, element_children, has_ancestor_in, tag_name, text_content

LOGGER = logging.getLogger(__name__)

# Most specific first; the first selector with any match wins.
TURN_SELECTORS = (
    "div[data-message-author-role]",
    'article[data-testid*="conversation-turn"]',
    'div[data-testid="conversation-turn"]',
    ".group\\/conversation-turn",
    'div[class*="group"]:not([class*="group"] [class*="group"])',
)

CONVERSATION_CONTAINER_SELECTOR = '[role="main"], main, .conversation, [class*="conversation"]'

MIN_TURN_TEXT = 5
MAX_TURN_TEXT = 100_000

_INPUT_CONTROL_SELECTOR = 'input[type="text"], textarea'
_STATUS_CLASSES = frozenset({"typing", "loading"})


@dataclass(frozen=True)
class Turn:
    """A candidate conversation unit and its position in locator order."""

    node: Tag
    index: int


def _query_candidates(document: BeautifulSoup | Tag, log_prefix: str = "") -> list[Tag]:
    for selector in TURN_SELECTORS:
        matches = [m for m in document.select(selector) if isinstance(m, Tag)]
        LOGGER.debug("%sSelector %r matched %d elements", log_prefix, selector, len(matches))
        if matches:
            LOGGER.info("%sUsing selector %r: found %d candidate turns", log_prefix, selector, len(matches))
            return matches

    container = document.select_one(CONVERSATION_CONTAINER_SELECTOR)
    if container is None:
        LOGGER.debug("%sNo conversation container found for fallback", log_prefix)
        return []
    children = [c for c in element_children(container) if tag_name(c) in ("div", "article")]
    LOGGER.info(
        "%sFallback: found %d potential turns in <%s> container",
        log_prefix,
        len(children),
        tag_name(container),
    )
    return children


def is_plausible_turn(element: Tag) -> bool:
    """Reject chrome: too little or too much text, input controls, status rows."""
    length = len(text_content(element).strip())
    if length < MIN_TURN_TEXT or length > MAX_TURN_TEXT:
        return False
    if element.select_one(_INPUT_CONTROL_SELECTOR) is not None:
        return False
    return not _STATUS_CLASSES.intersection(class_tokens(element))


def outermost(elements: list[Tag]) -> list[Tag]:
    """Keep only elements with no ancestor in the list, preserving order."""
    ids = {id(e) for e in elements}
    return [e for e in elements if not has_ancestor_in(e, ids)]


def locate(document: BeautifulSoup | Tag, log_prefix: str = "") -> list[Turn]:
    """Find the ordered, non-nested turn elements of a conversation page."""
    candidates = _query_candidates(document, log_prefix)
    plausible = [c for c in candidates if is_plausible_turn(c)]
    if len(plausible) != len(candidates):
        LOGGER.debug(
            "%sFiltered out %d implausible candidates", log_prefix, len(candidates) - len(plausible)
        )
    turns = outermost(plausible)
    if len(turns) != len(plausible):
        LOGGER.debug("%sDropped %d nested duplicate candidates", log_prefix, len(plausible) - len(turns))
    return [Turn(node, index) for index, node in enumerate(turns)]
