"""Extraction handlers for the supported reading sites."""
from typing import Optional

from bs4 import BeautifulSoup, Tag

from handlers.base import SiteHandler


class RanobesHandler(SiteHandler):
    name = "ranobes"
    domains = ["ranobes.net", "www.ranobes.net", "*.ranobes.net", "*.ranobes.com", "*.ranobes.top"]
    content_selectors = ["#arrticle", ".text-chapter", ".text"]
    title_selectors = ["h1.title", ".story_tools h1", "h1"]
    strip_selectors = ["h1.title", ".ads", "script"]
    site_prompt = (
        "This is a machine-translated web novel from a Russian novel site. "
        "Please improve the translation while maintaining the original meaning and flow. "
        "Keep any special formatting like section breaks. "
        "Russian and Chinese names should be properly transliterated."
    )

    def matches_path(self, path: str) -> bool:
        return "/chapters/" in path or path.endswith(".html")


class FanfictionHandler(SiteHandler):
    name = "fanfiction"
    domains = ["fanfiction.net", "www.fanfiction.net", "www.fanfiction.ws", "*.fanfiction.net"]
    content_selectors = ["#storytext", ".storytext"]
    title_selectors = ["#profile_top b.xcontrast_txt", ".m-story-header h1", "title"]
    site_prompt = (
        "This content is from FanFiction.net, a fanfiction archive.\n"
        "Please maintain:\n"
        "- Proper paragraph breaks and formatting\n"
        "- Character personalities and relationships from the original work\n"
        "- Fandom-specific terminology and references\n"
        "- Author's notes markers (if present)\n"
        "- Scene breaks and dividers\n"
        "- Any special formatting for emphasis\n"
        "- Preserve the narrative flow and pacing"
    )

    def matches_path(self, path: str) -> bool:
        return path.startswith("/s/")


class ScribbleHubHandler(SiteHandler):
    name = "scribblehub"
    domains = ["scribblehub.com", "www.scribblehub.com", "*.scribblehub.com"]
    content_selectors = ["#chp_raw", "#chp_contents", ".chp_raw"]
    title_selectors = [".chapter-title", ".fic_title"]
    strip_selectors = [".wi_authornotes", ".modern-footnotes-footnote"]
    site_prompt = (
        "This is a novel from ScribbleHub. Please maintain the author's style and any "
        "formatting features. Respect any special formatting for dialogue, thoughts, or "
        "scene transitions. Please improve grammar and readability while maintaining the "
        "original meaning and flow."
    )

    def matches_path(self, path: str) -> bool:
        return path.startswith("/read/")


class AO3Handler(SiteHandler):
    name = "ao3"
    domains = ["archiveofourown.org", "www.archiveofourown.org", "*.archiveofourown.org", "ao3.org"]
    content_selectors = ["#chapters .userstuff", "#workskin .userstuff.module", ".userstuff"]
    title_selectors = [".chapter .title", ".preface h2.title.heading", "h2.title"]
    strip_selectors = ["h3.landmark"]
    site_prompt = (
        "This content is from Archive of Our Own (AO3), a popular fanfiction archive.\n"
        "Please maintain:\n"
        "- Proper paragraph breaks and formatting\n"
        "- Author's notes markers (if present)\n"
        "- Scene breaks and dividers\n"
        "- Any special formatting like italics or bold for emphasis\n"
        "- Preserve the narrative flow and pacing\n"
        "When enhancing, improve readability while respecting the author's original style and voice."
    )

    def matches_path(self, path: str) -> bool:
        return path.startswith("/works/")


class GenericHandler(SiteHandler):
    """Fallback for sites without a dedicated handler."""
    name = "generic"
    domains = ["*"]

    def find_content_area(self, soup: BeautifulSoup) -> Optional[Tag]:
        element = super().find_content_area(soup)
        if element is None and soup.body is not None and soup.body.get_text(strip=True):
            return soup.body
        return element

    def matches_path(self, path: str) -> bool:
        return True


SITE_HANDLERS = [RanobesHandler, FanfictionHandler, ScribbleHubHandler, AO3Handler]
