# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later

"""Best-effort speaker attribution for located conversation turns."""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from bs4 import Tag

from .locator import Turn
from .nodes import attr, class_string, collapse_whitespace, text_content

LOGGER = logging.getLogger(__name__)

ROLE_ATTRIBUTE = "data-message-author-role"
MODEL_ATTRIBUTE = "data-message-model-slug"

LEXICAL_WINDOW = 200
OTHER_OPENERS_RE = re.compile(
    r"^(i understand|i can help|here's|i'll|let me|i'd be happy|certainly|of course)"
)
SELF_OPENERS_RE = re.compile(r"^(can you|please help|how do i|i need|i want|help me|could you)")

STRUCTURED_MIN_TEXT = 200
SHORT_TURN = 100
LONG_TURN = 300

CORRECTION_RATIO = 2
CORRECTION_FLOOR = 500


class Speaker(enum.Enum):
    SELF = "self"
    OTHER = "other"

    @property
    def opposite(self) -> Speaker:
        return Speaker.OTHER if self is Speaker.SELF else Speaker.SELF


@dataclass
class AttributedMessage:
    """One surviving turn; ``speaker``/``reliable`` may change once during correction."""

    speaker: Speaker
    reliable: bool
    content: str
    original_index: int
    text: str = ""
    reply_label: str | None = None


RulePredicate = Callable[[Turn, Sequence[Turn]], Optional[Speaker]]


@dataclass(frozen=True)
class AttributionRule:
    name: str
    predicate: RulePredicate
    reliable: bool = False


def _role_element(node: Tag) -> Tag | None:
    if node.has_attr(ROLE_ATTRIBUTE):
        return node
    found = node.find(attrs={ROLE_ATTRIBUTE: True})
    return found if isinstance(found, Tag) else None


def by_role_metadata(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    element = _role_element(turn.node)
    if element is None:
        return None
    role = attr(element, ROLE_ATTRIBUTE).strip().lower()
    if not role:
        return None
    return Speaker.SELF if role == "user" else Speaker.OTHER


def by_avatar(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    for image in turn.node.find_all("img"):
        alt = attr(image, "alt").lower()
        src = attr(image, "src").lower()
        classes = class_string(image).lower()
        if "user" in alt or "user" in src or "user" in classes:
            return Speaker.SELF
        if (
            any(token in alt for token in ("chatgpt", "assistant", "gpt"))
            or any(token in src for token in ("assistant", "chatgpt"))
            or "assistant" in classes
        ):
            return Speaker.OTHER
    return None


def by_opening_phrase(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    opening = collapse_whitespace(text_content(turn.node)).lower()[:LEXICAL_WINDOW]
    if OTHER_OPENERS_RE.match(opening):
        return Speaker.OTHER
    if SELF_OPENERS_RE.match(opening):
        return Speaker.SELF
    return None


def by_structure(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    node = turn.node
    has_code = node.find(["pre", "code"]) is not None
    has_list = node.find(["ul", "ol", "li"]) is not None
    if has_code and has_list and len(text_content(node)) > STRUCTURED_MIN_TEXT:
        return Speaker.OTHER
    return None


def by_length_change(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    if turn.index == 0 or turn.index > len(turns):
        return None
    previous = len(text_content(turns[turn.index - 1].node))
    current = len(text_content(turn.node))
    if previous < SHORT_TURN and current > LONG_TURN:
        return Speaker.OTHER
    if previous > LONG_TURN and current < SHORT_TURN:
        return Speaker.SELF
    return None


def by_position(turn: Turn, turns: Sequence[Turn]) -> Speaker | None:
    return Speaker.SELF if turn.index % 2 == 0 else Speaker.OTHER


RULES: tuple[AttributionRule, ...] = (
    AttributionRule("role-metadata", by_role_metadata, reliable=True),
    AttributionRule("avatar", by_avatar),
    AttributionRule("opening-phrase", by_opening_phrase),
    AttributionRule("structure", by_structure),
    AttributionRule("length-change", by_length_change),
    AttributionRule("position", by_position),
)


def attribute(
    turn: Turn, turns: Sequence[Turn], rules: Sequence[AttributionRule] = RULES
) -> tuple[Speaker, bool]:
    """Return ``(speaker, reliable)`` from the first rule that decides."""
    for rule in rules:
        speaker = rule.predicate(turn, turns)
        if speaker is not None:
            LOGGER.debug("Turn %d attributed to %s by %s rule", turn.index, speaker.value, rule.name)
            return speaker, rule.reliable
    return Speaker.SELF if turn.index % 2 == 0 else Speaker.OTHER, False


def reply_label(turn: Turn) -> str | None:
    """Name of the replying model, when the page records it."""
    node = turn.node
    element = node if node.has_attr(MODEL_ATTRIBUTE) else node.find(attrs={MODEL_ATTRIBUTE: True})
    if not isinstance(element, Tag):
        return None
    return attr(element, MODEL_ATTRIBUTE).strip() or None


def correct_sequence(messages: list[AttributedMessage]) -> list[AttributedMessage]:
    """Break up runs of same-speaker messages that were only guessed.

    Runs left to right over adjacent pairs. A pair with a reliably attributed
    member is never touched. Otherwise a much longer message (twice the other
    and above the absolute floor) is taken to be the other party's reply and
    the shorter, equally guessed one the user's; failing that, the later
    message is flipped.
    """
    for i in range(1, len(messages)):
        previous, current = messages[i - 1], messages[i]
        if previous.reliable or current.reliable or previous.speaker is not current.speaker:
            continue
        current_length = len(current.content)
        previous_length = len(previous.content)
        if current_length > previous_length * CORRECTION_RATIO and current_length > CORRECTION_FLOOR:
            current.speaker = Speaker.OTHER
            previous.speaker = Speaker.SELF
        elif previous_length > current_length * CORRECTION_RATIO and previous_length > CORRECTION_FLOOR:
            previous.speaker = Speaker.OTHER
            current.speaker = Speaker.SELF
        else:
            current.speaker = current.speaker.opposite
        LOGGER.debug(
            "Corrected consecutive messages at positions %d and %d: %s, %s",
            i - 1,
            i,
            previous.speaker.value,
            current.speaker.value,
        )
    return messages
