# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later
"""Tests for the HTML transducer and style inlining."""

from collections.abc import Mapping

from bs4 import Tag

from chat_session_export.html_export import RESPONSIVE_IMAGE_STYLE, convert_message_html
from chat_session_export.images import ImageEmbed
from chat_session_export.sources import parse_html
from chat_session_export.styles import inline_style, parse_declarations


def _turn(html: str) -> Tag:
    element = parse_html(f"<div id='turn'>{html}</div>").select_one("#turn")
    assert element is not None
    return element


def test_presentational_styles_are_inlined() -> None:
    """Only allow-listed, non-degenerate properties survive; classes are dropped."""
    turn = _turn(
        '<p class="text-lg" data-start="1" style="font-size: 12px; color: red; foo: bar; margin: auto">'
        "Hi</p>"
    )
    assert convert_message_html(turn) == '<p style="color: red; font-size: 12px">Hi</p>'


def test_degenerate_style_removes_attribute() -> None:
    turn = _turn('<p style="display: none; font-weight: normal">x</p>')
    assert convert_message_html(turn) == "<p>x</p>"


def test_custom_style_resolver() -> None:
    """Any object with a ``resolve`` method can supply presentation."""

    class Fixed:
        def resolve(self, element: Tag) -> Mapping[str, str]:
            return {"color": "blue"} if element.name == "strong" else {}

    turn = _turn("<p>a <strong>b</strong></p>")
    assert convert_message_html(turn, styles=Fixed()) == '<p>a <strong style="color: blue">b</strong></p>'


def test_event_handlers_and_unsafe_links_are_stripped() -> None:
    turn = _turn(
        '<a href="javascript:steal()" onclick="x()">one</a>'
        '<a href="https://example.com/" onmouseover="y()">two</a>'
    )
    assert convert_message_html(turn) == '<a>one</a><a href="https://example.com/">two</a>'


def test_chrome_and_suppressed_elements_are_dropped() -> None:
    turn = _turn(
        '<div class="copy-wrapper">Copy</div><p>Body</p><script>x()</script>'
        "<svg><path></path></svg>"
    )
    assert convert_message_html(turn) == "<p>Body</p>"


def test_text_is_escaped() -> None:
    turn = _turn("<p>a &lt; b &amp; c</p>")
    assert convert_message_html(turn) == "<p>a &lt; b &amp; c</p>"


def test_image_with_payload() -> None:
    turn = _turn('<img src="https://example.com/a.png" srcset="a-2x.png 2x" sizes="50vw" alt="A">')
    image = turn.find("img")
    images = {id(image): ImageEmbed("https://example.com/a.png", "data:image/png;base64,AAAA")}
    exported = parse_html(convert_message_html(turn, images)).find("img")
    assert exported["src"] == "data:image/png;base64,AAAA"
    assert exported["alt"] == "A"
    assert exported["style"] == RESPONSIVE_IMAGE_STYLE
    assert not exported.has_attr("srcset")
    assert not exported.has_attr("sizes")


def test_image_without_payload_keeps_source() -> None:
    turn = _turn('<img src="https://example.com/a.png" alt="A">')
    exported = parse_html(convert_message_html(turn)).find("img")
    assert exported["src"] == "https://example.com/a.png"
    assert exported["style"] == RESPONSIVE_IMAGE_STYLE


def test_ui_images_are_dropped() -> None:
    turn = _turn('<p>x</p><img src="https://example.com/favicon.ico"><img src="a.png" width="20">')
    assert convert_message_html(turn) == "<p>x</p>"


def test_button_image_needs_payload() -> None:
    """A button becomes its embedded image, or disappears."""
    turn = _turn('<button><img src="https://example.com/p.jpg" alt="Photo"></button>')
    assert convert_message_html(turn) == ""

    image = turn.find("img")
    images = {id(image): ImageEmbed("https://example.com/p.jpg", "data:image/png;base64,BBBB")}
    exported = parse_html(convert_message_html(turn, images)).find("img")
    assert exported["src"] == "data:image/png;base64,BBBB"
    assert exported["alt"] == "Photo"


def test_canvas_placeholder() -> None:
    assert convert_message_html(_turn("<canvas></canvas>")) == "<p>[Canvas Image]</p>"


def test_structure_is_preserved() -> None:
    turn = _turn(
        '<div class="markdown"><ul><li>one</li><li>two</li></ul>'
        '<pre><code class="language-js">let x = 1;</code></pre></div>'
    )
    assert convert_message_html(turn) == (
        '<ul><li>one</li><li>two</li></ul><pre><code>let x = 1;</code></pre>'
    )


def test_conversion_does_not_modify_source() -> None:
    turn = _turn('<p class="x" style="color: red" onclick="y()">Hi</p><script>z()</script>')
    before = str(turn)
    convert_message_html(turn)
    assert str(turn) == before


def test_parse_declarations() -> None:
    declared = parse_declarations("Color: red !important; ; font-size:12px; broken; color: blue")
    assert declared == {"color": "blue", "font-size": "12px"}


def test_inline_style_follows_property_order() -> None:
    assert inline_style({"padding": "1px", "color": "red", "display": "normal"}) == (
        "color: red; padding: 1px"
    )
