"""Chapter page download."""
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from utils.logger import setup_logger

logger = setup_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class FetchError(Exception):
    """Raised when a chapter page cannot be downloaded."""
    pass


class _ServerError(Exception):
    pass


class PageFetcher:
    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.transport = transport

    async def fetch(self, url: str) -> str:
        """Download a page, retrying network errors and 5xx responses.

        Args:
            url: Page URL

        Returns:
            Response body as text

        Raises:
            FetchError: If the page could not be downloaded
        """
        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.base_delay, max=30),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException, _ServerError)),
            reraise=True
        )
        async def _get():
            async with httpx.AsyncClient(
                follow_redirects=True,
                transport=self.transport,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT}
            ) as client:
                response = await client.get(url)
                if response.status_code >= 500:
                    raise _ServerError(f"{response.status_code} from {url}")
                response.raise_for_status()
                return response.text

        logger.info(f"Fetching {url}")
        try:
            return await _get()
        except (httpx.HTTPError, _ServerError) as e:
            raise FetchError(f"Could not fetch {url}: {e}") from e
