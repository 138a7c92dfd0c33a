"""Text cleaning utilities."""
import html
import re
from typing import List

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

BLOCK_TAGS = {"p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "pre", "section", "article"}
NOISE_TAGS = {"script", "style", "noscript", "iframe", "ins"}


def clean_text(text: str) -> str:
    """Clean extracted text by normalizing whitespace.

    Args:
        text: Raw text from a content area

    Returns:
        Cleaned text with paragraphs separated by one blank line
    """
    # Remove excessive whitespace while preserving paragraph breaks
    text = re.sub(r'\n\s*\n\s*\n+', '\n\n', text)

    # Normalize whitespace within lines
    text = re.sub(r'[ \t\xa0]+', ' ', text)

    # Remove leading/trailing whitespace from each line
    lines = [line.strip() for line in text.split('\n')]
    text = '\n'.join(lines)

    return text.strip()


def extract_paragraphs(content_area: Tag) -> List[str]:
    """Collect paragraph texts from a content area.

    Block elements become paragraphs, <br> separates paragraphs, and loose
    text between blocks is kept as its own paragraph.

    Args:
        content_area: Element holding the chapter

    Returns:
        List of non-empty paragraph strings
    """
    paragraphs = []
    buffer = []

    def flush():
        joined = " ".join(part for part in buffer if part).strip()
        if joined:
            paragraphs.append(joined)
        buffer.clear()

    for node in content_area.children:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            buffer.append(str(node).strip())
            continue
        if not isinstance(node, Tag) or node.name in NOISE_TAGS:
            continue
        if node.name == "br":
            flush()
            continue
        if node.name in BLOCK_TAGS:
            flush()
            nested_blocks = node.find_all(list(BLOCK_TAGS), recursive=False)
            if node.name in ("div", "section", "article") and nested_blocks:
                paragraphs.extend(extract_paragraphs(node))
            else:
                text = node.get_text(" ", strip=True)
                if text:
                    paragraphs.append(text)
            continue
        buffer.append(node.get_text(" ", strip=True))

    flush()
    return paragraphs


def html_to_text(markup) -> str:
    """Convert a content area (Tag or HTML string) to paragraph text.

    Args:
        markup: BeautifulSoup Tag or HTML string

    Returns:
        Clean text with paragraphs separated by blank lines
    """
    if isinstance(markup, str):
        markup = BeautifulSoup(markup, "html.parser")
    return clean_text("\n\n".join(extract_paragraphs(markup)))


def text_to_html(text: str) -> str:
    """Wrap plain-text paragraphs in escaped <p> elements."""
    paragraphs = [p.strip() for p in re.split(r'\n\s*\n+', text) if p.strip()]
    return "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
