from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_source
from postforge.content import parse_document, slugify, split_front_matter, split_post_name
from postforge.errors import ContentError, MalformedFrontMatter
from postforge.models import DocumentKind


def test_recognized_keys_are_typed():
    doc = parse_document(
        make_source(
            "_posts/2024-01-10-merge.md",
            "---\n"
            "title: Merges and recovery\n"
            "author: Dana\n"
            "pin: true\n"
            "categories: [how-tos, elasticsearch]\n"
            "tags: storage, merges\n"
            "date: 2024-01-10 09:00:00 +0100\n"
            "---\n"
            "Body text.\n",
        )
    )
    assert doc.title == "Merges and recovery"
    assert doc.author == "Dana"
    assert doc.pin is True
    assert doc.categories == ("how-tos", "elasticsearch")
    assert doc.tags == ("storage", "merges")
    assert doc.order is None
    assert doc.body.strip() == "Body text."
    assert doc.body_line == 9
    assert "date" in doc.extra


def test_tab_order_and_icon():
    doc = parse_document(
        make_source("_tabs/about.md", "---\ntitle: About\norder: 4\nicon: fas fa-info\n---\nHi\n", DocumentKind.TAB)
    )
    assert doc.kind is DocumentKind.TAB
    assert doc.order == 4
    assert doc.icon == "fas fa-info"


def test_unknown_keys_are_kept_but_not_interpreted():
    doc = parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: X\nlayout: post\nmath: true\n---\nBody\n"))
    assert dict(doc.extra) == {"layout": "post", "math": True}
    with pytest.raises(TypeError):
        doc.extra["math"] = False


def test_duplicate_categories_collapse():
    doc = parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: X\ncategories: [a, b, a]\n---\nBody\n"))
    assert doc.categories == ("a", "b")


def test_singular_aliases():
    doc = parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: X\ncategory: updates\ntag: news\n---\nBody\n"))
    assert doc.categories == ("updates",)
    assert doc.tags == ("news",)


def test_missing_title_is_malformed():
    with pytest.raises(MalformedFrontMatter) as excinfo:
        parse_document(make_source("_posts/2024-01-10-x.md", "---\nauthor: Dana\n---\nBody\n"))
    assert "title" in excinfo.value.message
    assert excinfo.value.path == Path("_posts/2024-01-10-x.md")


def test_blank_title_is_malformed():
    with pytest.raises(MalformedFrontMatter):
        parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: '  '\n---\nBody\n"))


def test_invalid_yaml_reports_source_line():
    text = "---\ntitle: X\ntags: [a, b\nauthor: Dana\n---\nBody\n"
    with pytest.raises(MalformedFrontMatter) as excinfo:
        parse_document(make_source("_posts/2024-01-10-x.md", text))
    assert excinfo.value.line is not None
    assert excinfo.value.line >= 3


def test_non_mapping_front_matter():
    with pytest.raises(MalformedFrontMatter):
        parse_document(make_source("_posts/2024-01-10-x.md", "---\n- just\n- a list\n---\nBody\n"))


def test_unclosed_front_matter():
    with pytest.raises(MalformedFrontMatter) as excinfo:
        parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: X\nBody without end\n"))
    assert excinfo.value.line == 1


@pytest.mark.parametrize(
    "block, key",
    [
        ("order: first", "order"),
        ("pin: maybe", "pin"),
        ("categories: {a: 1}", "categories"),
        ("icon: [a]", "icon"),
    ],
)
def test_wrongly_typed_values(block, key):
    text = f"---\ntitle: X\n{block}\n---\nBody\n"
    with pytest.raises(MalformedFrontMatter) as excinfo:
        parse_document(make_source("_posts/2024-01-10-x.md", text))
    assert key in excinfo.value.message
    assert excinfo.value.line == 3


def test_no_front_matter_uses_heading_as_title():
    doc = parse_document(make_source("_tabs/notes.md", "# Field notes\n\nSome text.\n", DocumentKind.TAB))
    assert doc.title == "Field notes"
    assert doc.body == "Some text."
    assert doc.body_line == 3
    assert doc.categories == ()
    assert doc.pin is False
    assert doc.order is None


def test_no_front_matter_falls_back_to_file_name():
    doc = parse_document(make_source("_posts/2024-01-10-vector-search_intro.md", "Just text.\n"))
    assert doc.title == "Vector search intro"


def test_empty_front_matter_block_counts_as_absent():
    doc = parse_document(make_source("_posts/2024-01-10-hello.md", "---\n# comment only\n---\nText\n"))
    assert doc.title == "Hello"


def test_empty_body_is_rejected():
    with pytest.raises(ContentError):
        parse_document(make_source("_posts/2024-01-10-x.md", "---\ntitle: X\n---\n\n   \n"))


def test_byte_order_mark_is_ignored():
    block, body, body_line = split_front_matter("\ufeff---\ntitle: X\n---\nBody", Path("a.md"))
    assert block == "title: X"
    assert body == "Body"
    assert body_line == 4


def test_html_sources_are_flagged_raw():
    doc = parse_document(make_source("_tabs/raw.html", "---\ntitle: Raw\n---\n<p>hi</p>\n", DocumentKind.TAB))
    assert doc.raw_html is True


def test_split_post_name():
    published, name = split_post_name("2024-02-29-leap-day")
    assert published.isoformat() == "2024-02-29"
    assert name == "leap-day"
    assert split_post_name("2023-02-30-nope") == (None, "2023-02-30-nope")
    assert split_post_name("about") == (None, "about")


def test_slugify():
    assert slugify("How-Tos & Guides") == "how-tos-guides"
    assert slugify("!!!") == "post"
