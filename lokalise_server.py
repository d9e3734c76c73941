import asyncio
import io
import uuid
import zipfile
from datetime import datetime
from typing import Optional

from aiohttp import web
from loguru import logger

DEFAULT_BUNDLE = {
    "en/en.json": b'{"welcome":"Welcome!"}',
    "fr_FR/fr_FR.json": b'{"welcome":"Bienvenue!"}',
}


def build_bundle(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def error_response(message: str, code: int) -> web.Response:
    return web.json_response({"error": {"message": message, "code": code}}, status=code)


class LokaliseServer:
    """In-process stand-in for the Lokalise file and process endpoints"""

    def __init__(
        self,
        completion_time: float = 2.0,
        bundle_files: Optional[dict[str, bytes]] = None,
    ):
        self.completion_time = completion_time
        self.bundle = build_bundle(bundle_files or DEFAULT_BUNDLE)
        self.port: Optional[int] = None
        self.processes: dict[str, dict] = {}
        self.started_at: dict[str, datetime] = {}
        self.uploads: list[dict] = []
        self.failing_filenames: set[str] = set()
        self.rate_limited_requests = 0
        self.final_status = "finished"
        self.status_requests = 0
        self.bundle_delay = 0.0

        self.app = web.Application()
        self.app.router.add_post("/api2/projects/{project_id}/files/upload", self.handle_upload)
        self.app.router.add_post(
            "/api2/projects/{project_id}/files/download", self.handle_download
        )
        self.app.router.add_post(
            "/api2/projects/{project_id}/files/async-download", self.handle_async_download
        )
        self.app.router.add_get(
            "/api2/projects/{project_id}/processes/{process_id}", self.handle_process
        )
        self.app.router.add_get("/bundles/translations.zip", self.handle_bundle)
        self.logger = logger

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def api_host(self) -> str:
        return f"{self.base_url}/api2/"

    def _new_process(self, process_type: str, details: dict) -> dict:
        process_id = uuid.uuid4().hex
        process = {
            "process_id": process_id,
            "type": process_type,
            "status": "queued",
            "message": "",
            "details": details,
        }
        self.processes[process_id] = process
        self.started_at[process_id] = datetime.now()
        return process

    def _rate_limited(self) -> bool:
        if self.rate_limited_requests > 0:
            self.rate_limited_requests -= 1
            self.logger.info("Returning 429 Too Many Requests")
            return True
        return False

    async def handle_upload(self, request):
        if self._rate_limited():
            return error_response("Too Many Requests", 429)

        payload = await request.json()
        filename = payload.get("filename")
        if filename in self.failing_filenames:
            self.logger.info(f"Rejecting upload of {filename}")
            return error_response(f"Failed to import {filename}", 500)

        self.uploads.append(payload)
        process = self._new_process(
            "file-import", {"files": [{"name_original": filename, "status": "queued"}]}
        )
        return web.json_response(
            {"project_id": request.match_info["project_id"], "process": process}
        )

    async def handle_download(self, request):
        if self._rate_limited():
            return error_response("Too Many Requests", 429)
        return web.json_response(
            {
                "project_id": request.match_info["project_id"],
                "bundle_url": f"{self.base_url}/bundles/translations.zip",
            }
        )

    async def handle_async_download(self, request):
        if self._rate_limited():
            return error_response("Too Many Requests", 429)
        process = self._new_process("async-export", {})
        return web.json_response({"process_id": process["process_id"]})

    async def handle_process(self, request):
        self.status_requests += 1
        process_id = request.match_info["process_id"]
        process = self.processes.get(process_id)
        if process is None:
            return error_response("Process not found", 404)

        elapsed = (datetime.now() - self.started_at[process_id]).total_seconds()
        if elapsed >= self.completion_time:
            process["status"] = self.final_status
            if self.final_status == "finished" and process["type"] == "async-export":
                process["details"] = {
                    "download_url": f"{self.base_url}/bundles/translations.zip"
                }
            elif self.final_status == "failed":
                process["message"] = "Export failed"
        else:
            process["status"] = "running"

        self.logger.info(
            f"Returning {process['status']} status for {process_id} (elapsed: {elapsed:.1f}s)"
        )
        return web.json_response({"process": process})

    async def handle_bundle(self, request):
        if self.bundle_delay:
            await asyncio.sleep(self.bundle_delay)
        return web.Response(body=self.bundle, content_type="application/zip")

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.port = port
        self.logger.info(f"Server started on port {port}")
        return site
