# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later
"""Tests for the node helpers shared by the transducers."""

from bs4 import Comment

from chat_session_export.nodes import (
    TagKind,
    attr,
    flatten,
    is_chrome,
    is_text,
    raw_text,
    tag_kind,
    text_content,
)
from chat_session_export.sources import parse_html


def test_comments_are_not_text() -> None:
    """Comments, like other preformatted strings, are not character data."""
    soup = parse_html("<div>visible<!-- hidden note --></div>")
    visible, comment = list(soup.div.children)
    assert is_text(visible)
    assert isinstance(comment, Comment)
    assert not is_text(comment)
    assert text_content(soup.div) == "visible"


def test_tag_kind() -> None:
    soup = parse_html("<div><H3>x</H3><b>y</b><details>z</details></div>")
    heading, bold, details = soup.div.find_all(True)
    assert tag_kind(heading) is TagKind.HEADING
    assert tag_kind(bold) is TagKind.STRONG
    assert tag_kind(details) is TagKind.OTHER
    assert tag_kind(soup.div) is TagKind.CONTAINER


def test_attr_joins_class_lists() -> None:
    soup = parse_html('<p class="a  b" id="x">t</p>')
    assert attr(soup.p, "class") == "a b"
    assert attr(soup.p, "id") == "x"
    assert attr(soup.p, "missing") == ""


def test_raw_text_skips_chrome_and_buttons() -> None:
    soup = parse_html(
        '<pre><span class="sr-only">Code</span><button>Copy</button>'
        "<script>x()</script><code>a = 1</code></pre>"
    )
    assert raw_text(soup.pre) == "a = 1"
    assert is_chrome(soup.find("span"))


def test_flatten() -> None:
    assert flatten("\n one\n\n two \n") == "one  two"
