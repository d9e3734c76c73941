from typing import Any, Optional


class LokaliseError(Exception):
    """Error surfaced by the file exchange, optionally carrying an API code and details"""

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

    def __str__(self) -> str:
        rendered = f"{type(self).__name__}: {self.message}"
        if self.code:
            rendered += f" (Code: {self.code})"
        if self.details:
            formatted = ", ".join(f"{key}: {value}" for key, value in self.details.items())
            rendered += f" | Details: {formatted}"
        return rendered


class MaliciousArchiveEntryError(LokaliseError):
    """An archive entry resolves outside of the extraction directory"""


class DownloadTimeoutError(LokaliseError):
    """A bundle request or an async download process ran out of time"""
