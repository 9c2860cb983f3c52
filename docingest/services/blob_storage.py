"""Blob storage cleanup for uploaded document files."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import BlobStorageError

logger = logging.getLogger(__name__)


class BlobStorageService:
    """Deletes uploaded files from the blob store's HTTP API."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        config = config or default_settings
        self.client = client
        self.base_url = config.blob_api_url.rstrip("/")
        self.token = config.blob_api_token
        self.prefix = config.blob_path_prefix
        self.timeout = config.fetch_timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def owns(self, file_path: Optional[str]) -> bool:
        """Whether ``file_path`` points into the blob store."""
        return bool(file_path) and file_path.startswith(self.prefix)

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self.client is not None:
            await self.client.aclose()

    async def delete(self, file_path: str) -> None:
        """
        Delete a stored file. A missing file counts as deleted.

        Args:
            file_path: Blob path of the file.

        Raises:
            BlobStorageError: If the blob API call fails.
        """
        if not self.enabled:
            logger.debug(f"Blob storage not configured, skipping delete of {file_path}")
            return

        await self.connect()
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = await self.client.delete(
                f"{self.base_url}/{quote(file_path)}", headers=headers)
        except httpx.HTTPError as e:
            raise BlobStorageError(f"Failed to delete blob {file_path}: {str(e)}") from e

        if response.status_code == 404:
            return
        if not response.is_success:
            raise BlobStorageError(
                f"Failed to delete blob {file_path}: {response.status_code} {response.reason_phrase}"
            )
