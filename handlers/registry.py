"""Resolves a URL to the extraction handler for its site."""
from fnmatch import fnmatch
from typing import List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from utils.logger import setup_logger
from handlers.base import SiteHandler
from handlers.sites import SITE_HANDLERS, GenericHandler

logger = setup_logger(__name__)


class HandlerRegistry:
    """Ordered list of site handlers matched by hostname glob patterns."""

    def __init__(self, handlers: Optional[List[SiteHandler]] = None, fallback: Optional[SiteHandler] = None):
        if handlers is None:
            handlers = [handler_cls() for handler_cls in SITE_HANDLERS]
        self.handlers = list(handlers)
        self.fallback = fallback or GenericHandler()

    def register(self, handler: SiteHandler) -> None:
        """Add a handler. Handlers registered later are tried last."""
        self.handlers.append(handler)

    def find(self, hostname: str) -> Optional[SiteHandler]:
        hostname = (hostname or "").lower()
        for handler in self.handlers:
            if any(fnmatch(hostname, pattern) for pattern in handler.domains):
                return handler
        return None

    def resolve(self, url: str) -> SiteHandler:
        """Pick the handler for a URL, falling back to the generic one.

        Args:
            url: Chapter URL

        Returns:
            Matching SiteHandler
        """
        parsed = urlparse(url)
        handler = self.find(parsed.hostname or "")
        if handler is None:
            logger.info(f"No dedicated handler for {parsed.hostname}, using generic extraction")
            return self.fallback

        if not handler.matches_path(parsed.path):
            logger.warning(f"{url} does not look like a {handler.name} chapter page")
        return handler

    def detect(self, soup: BeautifulSoup) -> SiteHandler:
        """Pick a handler for a saved page by trying each one's content selectors."""
        for handler in self.handlers:
            if handler.find_content_area(soup) is not None:
                logger.info(f"Detected {handler.name} page layout")
                return handler
        return self.fallback

    def by_name(self, name: str) -> SiteHandler:
        for handler in self.handlers + [self.fallback]:
            if handler.name == name:
                return handler
        raise KeyError(f"Unknown handler: {name}")
