"""Source document fetching over HTTP."""

import logging
from typing import Optional

import httpx

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import FetchError
from docingest.services.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class SourceFetcher:
    """Service for downloading raw document text."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            config: Settings providing timeout and retry policy.
            client: Pre-built HTTP client, mainly for tests.
        """
        config = config or default_settings
        self.client = client
        self.timeout = config.fetch_timeout_seconds
        self.max_retries = config.max_retries
        self.retry_delay = config.retry_delay_seconds
        self.backoff_multiplier = config.retry_backoff_multiplier

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self.client is not None:
            await self.client.aclose()

    async def _get(self, url: str) -> str:
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise FetchError(
                f"Timed out fetching document after {self.timeout:.1f}s") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Error accessing file: {str(e)}") from e

        if not response.is_success:
            raise FetchError(
                f"Failed to fetch document: {response.status_code} {response.reason_phrase}"
            )
        return response.text

    async def fetch_text(self, url: str) -> str:
        """
        Fetch the raw text body of a document.

        Args:
            url: Source URL.

        Returns:
            Document text.

        Raises:
            FetchError: On transport errors, non-2xx responses, timeouts or an
                empty body.
        """
        await self.connect()
        text = await retry_with_backoff(
            lambda: self._get(url),
            max_retries=self.max_retries,
            delay=self.retry_delay,
            backoff_multiplier=self.backoff_multiplier,
            exceptions=(FetchError,),
            operation="Fetch document",
        )
        if not text.strip():
            raise FetchError("Document is empty or contains no valid text content")
        logger.info(f"Fetched {len(text)} characters from {url}")
        return text
