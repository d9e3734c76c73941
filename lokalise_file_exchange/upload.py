import base64
import inspect
import os
import re
from pathlib import PurePosixPath
from typing import Any, Optional, Union

import aiofiles

from lokalise_file_exchange.concurrency import run_bounded
from lokalise_file_exchange.file_exchange import LokaliseFileExchange
from lokalise_file_exchange.models import (
    CollectFileParams,
    FileUploadError,
    Inferer,
    ProcessedFile,
    ProcessUploadFileParams,
    QueuedProcess,
    UploadResult,
    UploadTranslationParams,
)


async def _infer(inferer: Optional[Inferer], file: str) -> Optional[str]:
    """Calls a sync or async inferer, returning None when it fails or yields a blank value"""
    if inferer is None:
        return None
    try:
        value = inferer(file)
        if inspect.isawaitable(value):
            value = await value
    except Exception:
        return None
    if not isinstance(value, str) or not value.strip():
        return None
    return value


class LokaliseUpload(LokaliseFileExchange):
    """Collects local translation files and uploads them to Lokalise"""

    async def upload_translations(
        self, params: Optional[Union[UploadTranslationParams, dict]] = None
    ) -> UploadResult:
        """Uploads every collected file; failures are reported per file instead of raised"""
        if params is None:
            params = UploadTranslationParams()
        elif isinstance(params, dict):
            params = UploadTranslationParams(**params)
        process_params = params.process_upload_file_params

        files = self.collect_files(params.collect_file_params)
        self.logger.info(f"Uploading {len(files)} file(s)")

        result = await self.parallel_upload(
            files, params.upload_file_params, process_params
        )

        if process_params.poll_statuses and result.processes:
            result.processes = await self.poller.poll(
                result.processes,
                process_params.poll_initial_wait_time,
                process_params.poll_maximum_wait_time,
            )

        self.logger.info(
            f"Upload finished: {len(result.processes)} succeeded, "
            f"{len(result.errors)} failed"
        )
        return result

    def collect_files(
        self, params: Optional[CollectFileParams] = None
    ) -> list[str]:
        """Walks the input directories and returns the matching file paths, sorted"""
        params = params or CollectFileParams()

        extensions = [ext if ext.startswith(".") else f".{ext}" for ext in params.extensions]
        match_any_extension = ".*" in extensions

        try:
            name_pattern = re.compile(params.file_name_pattern)
        except re.error as e:
            raise ValueError(f"Invalid fileNamePattern: {e}") from e

        try:
            exclude_patterns = [re.compile(p) for p in params.exclude_patterns]
        except re.error as e:
            raise ValueError(f"Invalid excludePatterns: {e}") from e

        collected = []
        queue = [os.path.abspath(d) for d in params.input_dirs]

        while queue:
            directory = queue.pop(0)
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError:
                self.logger.warning(f"Skipping inaccessible directory: {directory}")
                continue

            for entry in entries:
                full_path = os.path.abspath(entry.path)
                if any(p.search(full_path) for p in exclude_patterns):
                    continue

                if entry.is_dir():
                    if params.recursive:
                        queue.append(full_path)
                elif entry.is_file():
                    matches_extension = (
                        match_any_extension or os.path.splitext(entry.name)[1] in extensions
                    )
                    if matches_extension and name_pattern.search(entry.name):
                        collected.append(full_path)

        return sorted(collected)

    async def process_file(
        self,
        file: str,
        project_root: str,
        params: Optional[ProcessUploadFileParams] = None,
    ) -> ProcessedFile:
        """Reads a file and derives the filename and language code to upload it with"""
        params = params or ProcessUploadFileParams()

        filename = await _infer(params.filename_inferer, file)
        if filename is None:
            filename = os.path.relpath(file, project_root).replace(os.sep, "/")

        language = await _infer(params.language_inferer, file)
        if language is None:
            language = PurePosixPath(filename).stem

        async with aiofiles.open(file, "rb") as f:
            content = await f.read()

        return ProcessedFile(
            data=base64.b64encode(content).decode("ascii"),
            filename=filename,
            lang_iso=language,
        )

    async def upload_single_file(self, upload_params: dict[str, Any]) -> QueuedProcess:
        return await self.executor.execute(
            lambda: self.api_client.upload_file(self.project_id, upload_params)
        )

    async def parallel_upload(
        self,
        files: list[str],
        base_upload_params: Optional[dict[str, Any]] = None,
        params: Optional[ProcessUploadFileParams] = None,
    ) -> UploadResult:
        params = params or ProcessUploadFileParams()
        project_root = params.project_root or os.getcwd()
        base_upload_params = base_upload_params or {}

        async def upload(file: str, _index: int) -> QueuedProcess:
            processed = await self.process_file(file, project_root, params)
            return await self.upload_single_file(
                {**base_upload_params, **processed.model_dump()}
            )

        results = await run_bounded(
            files, self.config.concurrency, upload, return_exceptions=True
        )

        processes = []
        errors = []
        for file, outcome in zip(files, results):
            if isinstance(outcome, Exception):
                self.logger.warning(f"Failed to upload {file}: {outcome}")
                errors.append(FileUploadError(file=file, error=outcome))
            else:
                processes.append(outcome)
        return UploadResult(processes=processes, errors=errors)
