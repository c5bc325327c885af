# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later
"""Tests for the Markdown transducer and its cleanup pass."""

import pytest
from bs4 import Tag

from chat_session_export.images import ImageEmbed
from chat_session_export.markdown import (
    ConversionContext,
    MarkdownTransducer,
    clean_markdown,
    convert_message_markdown,
    escape_href,
    find_content_root,
    is_safe_href,
    normalize_whitespace,
)
from chat_session_export.sources import parse_html


def _turn(html: str) -> Tag:
    element = parse_html(f"<div id='turn'>{html}</div>").select_one("#turn")
    assert element is not None
    return element


def test_heading_is_flattened() -> None:
    """Headings render on one line with inline formatting kept."""
    turn = _turn("<h2>Hello\n<b>world</b></h2>")
    assert convert_message_markdown(turn) == "## Hello **world**"


def test_paragraph_with_inline_formatting() -> None:
    turn = _turn("<p>This is <strong>bold</strong> and <em>slanted</em>.</p><p>Second</p>")
    assert convert_message_markdown(turn) == "This is **bold** and *slanted*.\n\nSecond"


def test_inline_code_is_backticked() -> None:
    turn = _turn("<p>Run <code>ls -la</code> now</p>")
    assert convert_message_markdown(turn) == "Run `ls -la` now"


def test_code_block_with_language_and_copy_button() -> None:
    """The copy button is not part of the code; the language class becomes the fence tag."""
    turn = _turn(
        '<pre><button class="copy-btn">Copy code</button>'
        '<code class="hljs language-python">print("hi")\n</code></pre>'
    )
    assert convert_message_markdown(turn) == '```python\nprint("hi")\n```'


def test_code_block_keeps_indentation() -> None:
    turn = _turn("<pre><code>def f():\n    return 1</code></pre>")
    assert convert_message_markdown(turn) == "```\ndef f():\n    return 1\n```"


def test_ordered_list_honours_start() -> None:
    turn = _turn('<ol start="3"><li>alpha</li><li>beta</li></ol>')
    assert convert_message_markdown(turn) == "3. alpha\n4. beta"


def test_ordered_list_with_invalid_start() -> None:
    turn = _turn('<ol start="x"><li>alpha</li></ol>')
    assert convert_message_markdown(turn) == "1. alpha"


def test_nested_list_items_keep_order() -> None:
    turn = _turn("<ul><li>one<ul><li>inner</li></ul></li><li>two</li></ul>")
    assert convert_message_markdown(turn) == "- one\n- inner\n- two"


def test_list_item_paragraphs_stay_on_one_line() -> None:
    turn = _turn("<ul><li><p>first</p></li><li><p>second <em>item</em></p></li></ul>")
    assert convert_message_markdown(turn) == "- first\n- second *item*"


def test_table_with_header() -> None:
    turn = _turn(
        "<table><thead><tr><th>A</th><th>B</th></tr></thead>"
        "<tbody><tr><td>1</td><td><strong>2</strong></td></tr></tbody></table>"
    )
    assert convert_message_markdown(turn) == "| A | B |\n| --- | --- |\n| 1 | **2** |"


def test_table_without_header() -> None:
    turn = _turn("<table><tr><td>x</td><td>y</td></tr></table>")
    assert convert_message_markdown(turn) == "| x | y |"


def test_empty_table_is_omitted() -> None:
    turn = _turn("<p>Before</p><table></table><p>After</p>")
    assert convert_message_markdown(turn) == "Before\n\nAfter"


def test_link_text_and_href_are_escaped() -> None:
    turn = _turn('<a href="https://example.com/a)b">see [1]</a>')
    assert convert_message_markdown(turn) == r"[see \[1\]](https://example.com/a%29b)"


@pytest.mark.parametrize("href", ["javascript:alert(1)", "#section", "", "DATA:text/html,x"])
def test_unsafe_links_keep_only_text(href: str) -> None:
    turn = _turn(f'<p><a href="{href}">click here</a></p>')
    assert convert_message_markdown(turn) == "click here"


def test_link_without_text_uses_href() -> None:
    turn = _turn('<a href="https://example.com/"></a>')
    assert convert_message_markdown(turn) == "[https://example.com/](https://example.com/)"


def test_image_rendering() -> None:
    """Blob prefixes are removed and URL-like alt text is replaced."""
    turn = _turn('<img src="blob:https://chatgpt.com/abc" alt="https://chatgpt.com/abc">')
    assert convert_message_markdown(turn) == "![Image](https://chatgpt.com/abc)"


def test_image_uses_embedded_payload() -> None:
    turn = _turn('<img src="https://example.com/a.png" alt="Chart">')
    image = turn.find("img")
    images = {id(image): ImageEmbed("https://example.com/a.png", "data:image/png;base64,AAAA")}
    assert convert_message_markdown(turn, images) == "![Chart](data:image/png;base64,AAAA)"


@pytest.mark.parametrize(
    "img",
    [
        '<img src="/favicon.ico" alt="x">',
        '<img src="https://example.com/avatar.png" alt="x">',
        '<img src="a.png" class="icon-sm" alt="x">',
        '<img src="a.png" width="16" alt="x">',
    ],
)
def test_ui_images_are_skipped(img: str) -> None:
    turn = _turn(f"<p>Text</p>{img}")
    assert convert_message_markdown(turn) == "Text"


def test_canvas_placeholder() -> None:
    assert convert_message_markdown(_turn("<canvas></canvas>")) == "[Canvas Image]"


def test_line_break_rule_and_blockquote() -> None:
    turn = _turn("<p>a<br>b</p><hr><blockquote>quoted</blockquote>")
    assert convert_message_markdown(turn) == "a\nb\n\n---\n\n> quoted"


def test_chrome_and_suppressed_content_is_dropped() -> None:
    turn = _turn(
        '<span class="sr-only">You said:</span>'
        "<p>Keep this<svg><text>icon</text></svg></p>"
        '<div class="edit-controls">Edit</div>'
        "<script>alert(1)</script>"
        '<button class="regenerate">Regenerate</button>'
    )
    assert convert_message_markdown(turn) == "Keep this"


def test_button_with_image_renders_image() -> None:
    turn = _turn('<button><img src="https://example.com/photo.jpg" alt="Photo"></button>')
    assert convert_message_markdown(turn) == "![Photo](https://example.com/photo.jpg)"


def test_leaked_entities_are_unescaped() -> None:
    turn = _turn("<p>&amp;lt;div&amp;gt; &amp;amp; more</p>")
    assert convert_message_markdown(turn) == "<div> & more"


def test_unknown_tags_are_transparent() -> None:
    turn = _turn("<p><mark>marked</mark> <kbd>Ctrl</kbd></p>")
    assert convert_message_markdown(turn) == "marked Ctrl"


def test_content_root_prefers_markdown_container() -> None:
    turn = _turn('<div class="sr-none">Header</div><div class="markdown prose"><p>Body text</p></div>')
    root = find_content_root(turn)
    assert "markdown" in root["class"]
    assert convert_message_markdown(turn) == "Body text"


def test_conversion_does_not_modify_source() -> None:
    turn = _turn('<p>Hi <a href="javascript:x">there</a></p><button class="copy">Copy</button>')
    before = str(turn)
    convert_message_markdown(turn)
    assert str(turn) == before


def test_normalize_whitespace() -> None:
    text = "  line one\n\n\n\n   line two  \n"
    assert normalize_whitespace(text) == "line one\n\nline two"
    assert normalize_whitespace(normalize_whitespace(text)) == normalize_whitespace(text)


def test_clean_markdown_keeps_fenced_indentation() -> None:
    text = "  intro\n```\n    indented\n```\n  outro"
    assert clean_markdown(text) == "intro\n```\n    indented\n```\noutro"


def test_href_helpers() -> None:
    assert escape_href("a\\b)c") == "a%5Cb%29c"
    assert is_safe_href("https://example.com")
    assert not is_safe_href("VBScript:foo")


def test_list_converter_indents_nested_lists() -> None:
    """Before cleanup, nested lists sit two spaces deeper than their parent."""
    turn = _turn('<ol start="3"><li>one<ul><li>inner</li></ul></li><li>two</li></ol>')
    rendered = MarkdownTransducer().convert_list(turn.find("ol"), ConversionContext())
    assert rendered == "3. one\n  - inner\n4. two"


def test_unlisted_tags_convert_their_children() -> None:
    turn = _turn("<details><summary>More</summary><p>hidden <b>text</b></p></details>")
    transducer = MarkdownTransducer()
    details = turn.find("details")
    assert transducer.convert(details) == transducer.convert_children(details, ConversionContext())


def test_code_nested_deeper_in_pre_has_no_backticks() -> None:
    turn = _turn(
        '<pre><div class="overflow-y-auto p-4"><code class="language-js">'
        "let a = <span>1</span>;</code></div></pre>"
    )
    assert convert_message_markdown(turn) == "```js\nlet a = 1;\n```"


def test_code_inside_code_block_context_is_literal() -> None:
    code = _turn("<code>x = 1</code>").find("code")
    transducer = MarkdownTransducer()
    assert transducer.convert(code) == "`x = 1`"
    assert transducer.convert(code, ConversionContext(in_pre=True)) == "x = 1"
