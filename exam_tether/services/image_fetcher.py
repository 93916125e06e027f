"""
Image fetcher - pulls question images so they can be served offline
"""
import aiofiles
import httpx
import logging
import os
from pathlib import PurePosixPath
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".jpg"
PUBLIC_PREFIX = "/images"


class ImageFetcher:
    """
    Downloads remote question images into a local directory

    The file name is derived from the question id, so re-running a download
    overwrites the same file instead of piling up copies. The remote API key
    is only sent to the remote backend's own origin.
    """

    def __init__(
        self,
        images_dir: str,
        remote_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.images_dir = images_dir
        self.remote_url = remote_url.rstrip("/")
        self.api_key = api_key
        self._remote_origin = self._origin(httpx.URL(self.remote_url))
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport)

    async def __aenter__(self) -> "ImageFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    @staticmethod
    def _origin(url: httpx.URL) -> tuple:
        return (url.scheme, url.host, url.port)

    def resolve(self, reference: str) -> httpx.URL:
        """Resolve absolute or relative references against the remote origin"""
        reference = reference.strip()
        if reference.startswith(("http://", "https://")):
            return httpx.URL(reference)
        return httpx.URL(self.remote_url + "/").join(reference)

    def local_filename(self, url: httpx.URL, question_id: str) -> str:
        extension = PurePosixPath(url.path).suffix or DEFAULT_EXTENSION
        return f"{question_id}{extension}"

    async def fetch(self, reference: Any, question_id: str) -> Optional[str]:
        """
        Download one image

        Args:
            reference: Remote URL or path as stored on the question
            question_id: Owning question id, used as the file name

        Returns:
            Local public path ("/images/<question_id>.<ext>") or None on any failure
        """
        if not reference or not isinstance(reference, str) or not reference.strip():
            return None

        try:
            url = self.resolve(reference)
            filename = self.local_filename(url, question_id)

            headers = {}
            if self._origin(url) == self._remote_origin:
                headers["Authorization"] = f"Bearer {self.api_key}"

            response = await self.client.get(url, headers=headers)
            if response.status_code != 200:
                logger.warning(f"Image download failed (HTTP {response.status_code}): {url}")
                return None

            os.makedirs(self.images_dir, exist_ok=True)
            async with aiofiles.open(os.path.join(self.images_dir, filename), "wb") as f:
                await f.write(response.content)

            return f"{PUBLIC_PREFIX}/{filename}"

        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            logger.warning(f"Image download failed for question {question_id}: {str(e)}")
            return None
