"""Test mapping HTML structure onto text chunks."""
import pytest
from bs4 import BeautifulSoup

from ingestion.aligner import StructureAligner
from ingestion.cleaner import html_to_text, text_to_html


def _root(markup):
    return BeautifulSoup(markup, "html.parser")


FOUR_PARAGRAPHS = "".join(f"<p>{letter * 100}</p>" for letter in "ABCD")


def test_fragments_follow_chunk_sizes():
    """Test that paragraphs are handed out in proportion to chunk sizes."""
    chunks = ["A" * 100 + "\n\n" + "B" * 100, "C" * 100 + "\n\n" + "D" * 100]

    fragments = StructureAligner().align(_root(FOUR_PARAGRAPHS), chunks)

    assert len(fragments) == 2
    assert "A" * 100 in fragments[0] and "B" * 100 in fragments[0]
    assert "C" * 100 in fragments[1] and "D" * 100 in fragments[1]
    assert "C" * 100 not in fragments[0]


def test_last_fragment_absorbs_the_rest():
    """Test that leftover nodes land in the final fragment."""
    chunks = ["A" * 100, "B" * 100 + "\n\n" + "C" * 100 + "\n\n" + "D" * 100]

    fragments = StructureAligner().align(_root(FOUR_PARAGRAPHS), chunks)

    assert len(fragments) == 2
    assert fragments[0] == "<p>" + "A" * 100 + "</p>"
    assert "D" * 100 in fragments[1]


def test_count_matches_with_more_chunks_than_nodes():
    """Test that missing fragments are synthesized from text."""
    chunks = ["A" * 100, "B" * 100, "C" * 100, "D" * 100, "E" * 100, "F" * 100]

    fragments = StructureAligner().align(_root(FOUR_PARAGRAPHS), chunks)

    assert len(fragments) == len(chunks)
    assert fragments[-1] == text_to_html("F" * 100)


def test_single_node_falls_back_to_text():
    """Test that one wrapping element cannot be split and text is used instead."""
    root = _root("<div>" + "x" * 300 + "</div>")
    chunks = ["first chunk", "second chunk & more"]

    fragments = StructureAligner().align(root, chunks)

    assert fragments == ["<p>first chunk</p>", "<p>second chunk &amp; more</p>"]


def test_no_root():
    """Test alignment without any structured content."""
    aligner = StructureAligner()

    assert aligner.split_structure(None, ["a", "b"]) == []
    assert aligner.align(None, ["one", "two"]) == ["<p>one</p>", "<p>two</p>"]
    assert aligner.align(None, []) == []


def test_single_chunk_gets_whole_root():
    """Test that a single chunk maps to the whole content area."""
    fragments = StructureAligner().align(_root(FOUR_PARAGRAPHS), ["everything"])
    assert fragments == [FOUR_PARAGRAPHS]


def test_whitespace_nodes_ignored():
    """Test that whitespace between elements is not a node."""
    markup = "\n  <p>" + "A" * 100 + "</p>\n  <p>" + "B" * 100 + "</p>\n"
    fragments = StructureAligner().split_structure(_root(markup), ["A" * 100, "B" * 100])

    assert len(fragments) == 2


def test_html_to_text_paragraphs():
    """Test converting a content area to paragraph text."""
    markup = "<p>One</p><!-- note --><script>x()</script><p>Two</p>Loose<br>Three"

    assert html_to_text(markup) == "One\n\nTwo\n\nLoose\n\nThree"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
