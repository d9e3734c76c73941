import asyncio
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlparse

import aiofiles
import aiofiles.os
import aiohttp

from lokalise_file_exchange.errors import DownloadTimeoutError, LokaliseError
from lokalise_file_exchange.extractor import ArchiveExtractor
from lokalise_file_exchange.file_exchange import LokaliseFileExchange
from lokalise_file_exchange.models import (
    DownloadBundle,
    DownloadTranslationParams,
    QueuedProcess,
)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _is_http_url(url: Any) -> bool:
    if not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class LokaliseDownload(LokaliseFileExchange):
    """Downloads translation bundles from Lokalise and unpacks them locally"""

    def __init__(self, *args, extractor: Optional[ArchiveExtractor] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.extractor = extractor or ArchiveExtractor()

    async def download_translations(
        self, params: Union[DownloadTranslationParams, dict]
    ) -> None:
        """Fetches a bundle, either directly or through an async process, and extracts it"""
        if isinstance(params, dict):
            params = DownloadTranslationParams(**params)
        process_params = params.process_download_file_params
        output_dir = os.path.abspath(params.extract_params.output_dir)

        if process_params.async_download:
            process = await self.get_translations_bundle_async(params.download_file_params)
            polled = await self.poller.poll(
                [process],
                process_params.poll_initial_wait_time,
                process_params.poll_maximum_wait_time,
            )
            bundle_url = self._bundle_url_from_process(
                polled[0], process_params.poll_maximum_wait_time
            )
        else:
            bundle = await self.get_translations_bundle(params.download_file_params)
            bundle_url = bundle.bundle_url

        zip_path = await self.download_zip(
            bundle_url, process_params.bundle_download_timeout or None
        )
        try:
            await self.unpack_zip(zip_path, output_dir)
        finally:
            await aiofiles.os.remove(zip_path)

    def _bundle_url_from_process(
        self, process: QueuedProcess, max_wait_time: float
    ) -> str:
        if process.status == "finished":
            url = process.details.get("download_url")
            if not _is_http_url(url):
                raise LokaliseError(
                    "Lokalise returned finished process without a valid download_url",
                    502,
                )
            return url

        if process.status in ("failed", "cancelled"):
            message = f"Download process {process.status}"
            if process.message:
                message += f": {process.message}"
            raise LokaliseError(message, 500, {"process_id": process.process_id})

        raise DownloadTimeoutError(
            f"Download process did not finish within {max_wait_time:g}ms "
            f"(last status={process.status or 'unknown'})",
            504,
            {"reason": "timeout"},
        )

    async def get_translations_bundle(
        self, download_file_params: dict[str, Any]
    ) -> DownloadBundle:
        return await self.executor.execute(
            lambda: self.api_client.download_bundle(self.project_id, download_file_params)
        )

    async def get_translations_bundle_async(
        self, download_file_params: dict[str, Any]
    ) -> QueuedProcess:
        return await self.executor.execute(
            lambda: self.api_client.download_bundle_async(
                self.project_id, download_file_params
            )
        )

    async def download_zip(self, url: str, timeout: Optional[float] = None) -> str:
        """Streams the bundle to a temporary file and returns its path; timeout is in milliseconds"""
        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise LokaliseError(f"Invalid URL: {url}") from e
        if parsed.scheme not in ("http", "https"):
            raise LokaliseError(f"Unsupported protocol in URL: {url}")
        if not parsed.netloc:
            raise LokaliseError(f"Invalid URL: {url}")

        temp_path = os.path.join(
            tempfile.gettempdir(), f"lokalise-translations-{uuid.uuid4().hex}.zip"
        )
        client_timeout = aiohttp.ClientTimeout(total=timeout / 1000 if timeout else None)
        self.logger.debug(f"Downloading bundle to {temp_path}")

        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        raise LokaliseError(
                            f"Failed to download ZIP file: {response.reason} ({response.status})",
                            response.status,
                        )
                    async with aiofiles.open(temp_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            DOWNLOAD_CHUNK_SIZE
                        ):
                            await f.write(chunk)
        except asyncio.TimeoutError as e:
            await self._discard(temp_path)
            raise DownloadTimeoutError(
                f"Request timed out after {timeout or 0:g}ms", 408, {"reason": "timeout"}
            ) from e
        except aiohttp.ClientError as e:
            await self._discard(temp_path)
            raise LokaliseError(f"Error downloading ZIP file: {e}") from e
        except BaseException:
            await self._discard(temp_path)
            raise

        return temp_path

    async def unpack_zip(self, zip_path: Union[str, Path], output_dir: Union[str, Path]) -> None:
        await self.extractor.extract(zip_path, output_dir)

    async def _discard(self, path: str) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
