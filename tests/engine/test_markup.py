"""Offset-preserving fragment tree and splicing."""

from __future__ import annotations

import pytest

from linkgraph.engine.markup import MarkupError, apply_edits, parse_fragment


def test_text_offsets_point_into_the_source():
    source = "<p>Hi &amp; <b>bye</b></p>"

    fragment = parse_fragment(source)

    assert [text.raw(source) for text in fragment.iter_texts()] == ["Hi &amp; ", "bye"]
    paragraph = fragment.find_all("p")[0]
    assert source[paragraph.start:paragraph.open_end] == "<p>"
    assert source[paragraph.close_start:paragraph.close_end] == "</p>"


def test_protected_scopes_hide_nested_text():
    source = "<pre>keep <i>this</i></pre><p>edit</p><!-- skip -->"

    fragment = parse_fragment(source, ["pre"])

    assert [text.raw(source) for text in fragment.iter_texts()] == ["edit"]
    assert [text.raw(source) for text in fragment.texts if text.protected] == ["keep ", "this"]


def test_unclosed_elements_end_with_the_fragment():
    source = "<div><p>open"

    fragment = parse_fragment(source)

    assert all(element.close_end == len(source) for element in fragment.elements)


def test_apply_edits_splices_in_offset_order():
    assert apply_edits("abcdef", [(4, 5, "E"), (0, 1, "A")]) == "AbcdEf"
    assert apply_edits("abc", []) == "abc"


def test_overlapping_edits_are_rejected():
    with pytest.raises(MarkupError):
        apply_edits("abcdef", [(0, 3, "x"), (2, 4, "y")])
