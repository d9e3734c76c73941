import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

FINISHED_STATUSES = frozenset({"finished", "cancelled", "failed"})

Inferer = Callable[[str], Union[str, Awaitable[str]]]


class RetryParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = 3
    initial_sleep_time: float = 1000.0  # ms
    jitter_ratio: float = 0.2
    rng: Callable[[], float] = random.random

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be greater than or equal to zero.")
        return value

    @field_validator("initial_sleep_time")
    @classmethod
    def _check_initial_sleep_time(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("initial_sleep_time must be a positive value.")
        return value

    @field_validator("jitter_ratio")
    @classmethod
    def _check_jitter_ratio(cls, value: float) -> float:
        if not 0 <= value <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1.")
        return value


class ClientParams(BaseModel):
    api_key: str
    host: str = "https://api.lokalise.com/api2/"
    use_oauth2: bool = False


class ExchangeConfig(BaseModel):
    project_id: str
    retry_params: RetryParams = Field(default_factory=RetryParams)
    concurrency: int = Field(default=6, gt=0)
    fast_follow_wait_time: float = Field(default=200.0, ge=0)  # ms


class QueuedProcess(BaseModel):
    """A server-side process as reported by the queued processes endpoint"""

    model_config = ConfigDict(extra="allow")

    process_id: str
    status: Optional[str] = None
    type: Optional[str] = None
    message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES


class DownloadBundle(BaseModel):
    model_config = ConfigDict(extra="allow")

    project_id: Optional[str] = None
    bundle_url: str


class ProcessedFile(BaseModel):
    data: str
    filename: str
    lang_iso: str


@dataclass
class FileUploadError:
    file: str
    error: Exception


@dataclass
class UploadResult:
    processes: list[QueuedProcess]
    errors: list[FileUploadError]


class CollectFileParams(BaseModel):
    input_dirs: list[str] = Field(default_factory=lambda: ["./locales"])
    extensions: list[str] = Field(default_factory=lambda: [".*"])
    exclude_patterns: list[str] = Field(default_factory=lambda: ["node_modules", "dist"])
    recursive: bool = True
    file_name_pattern: str = ".*"


class ProcessUploadFileParams(BaseModel):
    language_inferer: Optional[Inferer] = None
    filename_inferer: Optional[Inferer] = None
    project_root: Optional[str] = None
    poll_statuses: bool = False
    poll_initial_wait_time: float = Field(default=1000.0, gt=0)  # ms
    poll_maximum_wait_time: float = Field(default=120_000.0, ge=0)  # ms


class UploadTranslationParams(BaseModel):
    upload_file_params: dict[str, Any] = Field(default_factory=dict)
    collect_file_params: CollectFileParams = Field(default_factory=CollectFileParams)
    process_upload_file_params: ProcessUploadFileParams = Field(
        default_factory=ProcessUploadFileParams
    )


class ExtractParams(BaseModel):
    output_dir: str = "./"


class ProcessDownloadFileParams(BaseModel):
    async_download: bool = False
    poll_initial_wait_time: float = Field(default=1000.0, gt=0)  # ms
    poll_maximum_wait_time: float = Field(default=120_000.0, ge=0)  # ms
    bundle_download_timeout: float = Field(default=0, ge=0)  # ms, 0 disables


class DownloadTranslationParams(BaseModel):
    download_file_params: dict[str, Any]
    extract_params: ExtractParams = Field(default_factory=ExtractParams)
    process_download_file_params: ProcessDownloadFileParams = Field(
        default_factory=ProcessDownloadFileParams
    )
