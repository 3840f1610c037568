"""Object storage for uploaded audio."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import urlparse, unquote

import aiohttp

from ..errors import StorageFailure

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Durable storage for audio objects addressed by URL."""

    name = "blob"

    @abstractmethod
    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        """Store an object and return its permanent URL.

        Raises:
            StorageFailure: If the upload fails
        """

    @abstractmethod
    async def delete(self, url: str) -> None:
        """Delete the object stored at the URL.

        Raises:
            StorageFailure: If the deletion fails
        """


class VercelBlobStore(BlobStore):
    """Vercel Blob REST API."""

    name = "vercel"

    def __init__(self,
                 token: str,
                 api_url: str = "https://blob.vercel-storage.com",
                 api_version: str = "7",
                 timeout: float = 60.0):
        if not token:
            raise ValueError("Vercel Blob token is required")
        self.token = token
        self.api_url = api_url.rstrip('/')
        self.api_version = api_version
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "x-api-version": self.api_version,
        }

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        headers = self._headers()
        headers["x-content-type"] = content_type
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.put(f"{self.api_url}/{filename}", headers=headers, data=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise StorageFailure(f"Blob upload error: {response.status} - {error_text}")
                    result = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise StorageFailure(f"Blob upload failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise StorageFailure(f"Blob upload timed out after {self.timeout.total}s") from e
        except ValueError as e:
            raise StorageFailure(f"Blob upload returned invalid JSON: {e}") from e

        url = result.get("url") if isinstance(result, dict) else None
        if not url or not isinstance(url, str):
            raise StorageFailure("Blob upload response has no url")
        logger.info(f"File uploaded to blob: {url}")
        return url

    async def delete(self, url: str) -> None:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(f"{self.api_url}/delete", headers=self._headers(),
                                        json={"urls": [url]}) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise StorageFailure(f"Blob delete error: {response.status} - {error_text}")
        except aiohttp.ClientError as e:
            raise StorageFailure(f"Blob delete failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise StorageFailure(f"Blob delete timed out after {self.timeout.total}s") from e
        logger.info(f"Audio file deleted from blob: {url}")


class LocalBlobStore(BlobStore):
    """Stores audio under a local directory and serves it from the app."""

    name = "local"

    def __init__(self, data_dir: str, public_base_url: str):
        """Initialize local store.

        Args:
            data_dir: Base data directory; audio goes to <data_dir>/audio
            public_base_url: Base URL the server is reachable at
        """
        self.audio_dir = Path(data_dir) / "audio"
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip('/')
        logger.info(f"LocalBlobStore initialized with audio_dir: {self.audio_dir}")

    def path_for(self, filename: str) -> Path:
        # Only the final path component is honoured
        return self.audio_dir / Path(filename).name

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        path = self.path_for(filename)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            raise StorageFailure(f"Error saving audio file {path}: {e}") from e
        logger.info(f"Audio file saved: {path} ({len(data)} bytes)")
        return f"{self.public_base_url}/audio/{path.name}"

    async def delete(self, url: str) -> None:
        name = unquote(urlparse(url).path.rsplit('/', 1)[-1])
        if not name:
            raise StorageFailure(f"Not a stored audio URL: {url!r}")
        path = self.path_for(name)
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            raise StorageFailure(f"Error deleting audio file {path}: {e}") from e
        logger.info(f"Audio file deleted: {path}")
