from typing import Any, Optional

import aiohttp
from loguru import logger

from lokalise_file_exchange.models import ClientParams, DownloadBundle, QueuedProcess


class ApiError(Exception):
    """Error response returned by the Lokalise API"""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class LokaliseApiClient:
    """Thin async client for the Lokalise endpoints used by the file exchange"""

    def __init__(self, params: ClientParams):
        self.params = params
        self.base_url = params.host.rstrip("/")
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def headers(self) -> dict[str, str]:
        if self.params.use_oauth2:
            return {"Authorization": f"Bearer {self.params.api_key}"}
        return {"X-Api-Token": self.params.api_key}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "LokaliseApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self.logger.debug(f"{method} {url}")

        async with self._get_session().request(method, url, json=payload) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError:
                data = None

            if response.status >= 400:
                raise self._to_api_error(response.status, response.reason, data)
            if not isinstance(data, dict):
                raise ApiError(
                    f"Unexpected response body from {path}", response.status
                )
            return data

    @staticmethod
    def _to_api_error(
        status: int, reason: Optional[str], data: Any
    ) -> ApiError:
        error = data.get("error", data) if isinstance(data, dict) else {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        message = error.get("message") or reason or "Unknown error"
        code = error.get("code") or status
        return ApiError(message, int(code), error.get("details"))

    async def upload_file(
        self, project_id: str, params: dict[str, Any]
    ) -> QueuedProcess:
        data = await self._request(
            "POST", f"projects/{project_id}/files/upload", params
        )
        return QueuedProcess(**data["process"])

    async def download_bundle(
        self, project_id: str, params: dict[str, Any]
    ) -> DownloadBundle:
        data = await self._request(
            "POST", f"projects/{project_id}/files/download", params
        )
        return DownloadBundle(**data)

    async def download_bundle_async(
        self, project_id: str, params: dict[str, Any]
    ) -> QueuedProcess:
        data = await self._request(
            "POST", f"projects/{project_id}/files/async-download", params
        )
        return QueuedProcess(**data)

    async def get_process(self, project_id: str, process_id: str) -> QueuedProcess:
        data = await self._request(
            "GET", f"projects/{project_id}/processes/{process_id}"
        )
        return QueuedProcess(**data["process"])
