"""Base class for per-site chapter extraction."""
import abc
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from utils.logger import setup_logger
from ingestion.cleaner import html_to_text
from ingestion.models import ExtractedChapter

logger = setup_logger(__name__)

COMMON_CONTENT_SELECTORS = [
    "article",
    ".article",
    ".content",
    ".main-content",
    ".chapter-content",
    "#content",
    ".entry-content",
    ".post-content",
]

COMMON_TITLE_SELECTORS = [
    ".chapter-title",
    "article header h1",
    "h1",
    "title",
]


class SiteHandler(abc.ABC):
    """Finds the chapter text and title on one family of sites."""

    name: str = "base"
    domains: List[str] = []
    content_selectors: List[str] = COMMON_CONTENT_SELECTORS
    title_selectors: List[str] = COMMON_TITLE_SELECTORS
    # Elements inside the content area that are not chapter text
    strip_selectors: List[str] = []
    site_prompt: str = ""

    def find_content_area(self, soup: BeautifulSoup) -> Optional[Tag]:
        """Return the first element matching a content selector that holds text."""
        for selector in self.content_selectors:
            element = soup.select_one(selector)
            if element is not None and element.get_text(strip=True):
                logger.debug(f"{self.name}: content found with '{selector}'")
                return element
        return None

    def extract_title(self, soup: BeautifulSoup) -> str:
        for selector in self.title_selectors:
            element = soup.select_one(selector)
            if element is not None:
                title = element.get_text(" ", strip=True)
                if title:
                    return title
        return "Untitled chapter"

    def extract_content(self, soup: BeautifulSoup, source_url: str = "") -> ExtractedChapter:
        """Extract the chapter from a parsed page.

        Args:
            soup: Parsed page
            source_url: Where the page came from

        Returns:
            ExtractedChapter, with found == False when no content area exists
        """
        title = self.extract_title(soup)
        content_area = self.find_content_area(soup)
        if content_area is None:
            logger.warning(f"{self.name}: no content area found")
            return ExtractedChapter(found=False, title=title, source_url=source_url, handler_name=self.name)

        for selector in self.strip_selectors:
            for element in content_area.select(selector):
                element.decompose()

        text = html_to_text(content_area)
        return ExtractedChapter(
            found=bool(text),
            title=title,
            text=text,
            html=content_area.decode_contents(),
            source_url=source_url,
            handler_name=self.name
        )

    @abc.abstractmethod
    def matches_path(self, path: str) -> bool:
        """Check whether a URL path on a handled domain is a chapter page."""
        pass
