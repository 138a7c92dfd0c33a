"""Maps chapter HTML onto the chunk boundaries chosen by the splitter."""
from typing import List, Optional

from bs4 import Comment, NavigableString, Tag

from utils.logger import setup_logger
from ingestion.cleaner import text_to_html

logger = setup_logger(__name__)


class StructuralMismatch(Exception):
    """Raised when the HTML cannot be split into one fragment per text chunk."""
    pass


def _visible_nodes(root: Tag) -> list:
    nodes = []
    for node in root.children:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString) and not str(node).strip():
            continue
        nodes.append(node)
    return nodes


def _visible_length(node) -> int:
    if isinstance(node, Tag):
        return len(node.get_text())
    return len(str(node))


class StructureAligner:
    """Splits a content area into HTML fragments that line up with text chunks.

    The plain-text chunk sizes are scaled to the length of the visible text
    of the HTML, and child nodes are handed out greedily against those
    targets. This is a proportional heuristic: HTML text and extracted text
    differ by whitespace, so the last fragment absorbs whatever is left.
    """

    def split_structure(self, root: Optional[Tag], text_chunks: List[str]) -> List[str]:
        """Greedily split root's children against scaled chunk sizes.

        Returns a single fragment holding the whole root when there is
        nothing to distribute (no root, or at most one child node).
        """
        if root is None:
            return []

        nodes = _visible_nodes(root)
        if len(nodes) <= 1 or len(text_chunks) <= 1:
            return [root.decode_contents()]

        text_length = sum(len(c) for c in text_chunks)
        structured_length = len(root.get_text())
        scale = structured_length / text_length if text_length else 1.0
        targets = [len(c) * scale for c in text_chunks]

        fragments = []
        current = []
        current_length = 0
        i = 0

        while i < len(nodes):
            node = nodes[i]
            node_length = _visible_length(node)
            is_last_fragment = len(fragments) == len(targets) - 1

            if (
                not is_last_fragment
                and current
                and current_length + node_length > targets[len(fragments)]
            ):
                fragments.append("".join(str(n) for n in current))
                current = []
                current_length = 0
                # Re-consider the same node for the next fragment
                continue

            current.append(node)
            current_length += node_length
            i += 1

        if current:
            fragments.append("".join(str(n) for n in current))

        return fragments

    def align(self, root: Optional[Tag], text_chunks: List[str]) -> List[str]:
        """Produce exactly one HTML fragment per text chunk.

        Args:
            root: Content area element, or None when only text is available
            text_chunks: Chunks produced by the splitter

        Returns:
            List of HTML fragments, same length as text_chunks
        """
        if not text_chunks:
            return []

        try:
            fragments = self._aligned_fragments(root, text_chunks)
        except StructuralMismatch as e:
            logger.warning(f"Falling back to plain-text fragments: {e}")
            return [text_to_html(chunk) for chunk in text_chunks]

        if len(fragments) < len(text_chunks):
            logger.info(
                f"Structure produced {len(fragments)} fragments for {len(text_chunks)} chunks, "
                "synthesizing the rest from text"
            )
            fragments.extend(text_to_html(chunk) for chunk in text_chunks[len(fragments):])
        elif len(fragments) > len(text_chunks):
            logger.warning(f"Dropping {len(fragments) - len(text_chunks)} extra structured fragments")
            fragments = fragments[:len(text_chunks)]

        return fragments

    def _aligned_fragments(self, root: Optional[Tag], text_chunks: List[str]) -> List[str]:
        fragments = self.split_structure(root, text_chunks)

        if not fragments:
            raise StructuralMismatch("no structured content available")
        if len(fragments) == 1 and len(text_chunks) > 1:
            raise StructuralMismatch(
                f"structure could not be divided into {len(text_chunks)} fragments"
            )
        return fragments
