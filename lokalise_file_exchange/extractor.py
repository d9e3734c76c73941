import asyncio
import os
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Union

import aiofiles
from loguru import logger

from lokalise_file_exchange.errors import LokaliseError, MaliciousArchiveEntryError

DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class ArchiveEntry:
    name: str
    is_directory: bool
    iter_bytes: Callable[[], Iterator[bytes]]


def iter_archive_entries(
    archive: zipfile.ZipFile, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[ArchiveEntry]:
    """Lazily yields the entries of an open archive in index order"""
    for info in archive.infolist():

        def iter_bytes(info: zipfile.ZipInfo = info) -> Iterator[bytes]:
            with archive.open(info) as stream:
                while chunk := stream.read(chunk_size):
                    yield chunk

        yield ArchiveEntry(
            name=info.filename, is_directory=info.is_dir(), iter_bytes=iter_bytes
        )


def resolve_entry_path(output_dir: Path, name: str) -> Path:
    """Returns where an entry lands under output_dir, refusing paths that escape it"""
    full_path = os.path.normpath(os.path.join(output_dir, name))
    relative = os.path.relpath(full_path, output_dir)
    if (
        relative == os.pardir
        or relative.startswith(os.pardir + os.sep)
        or os.path.isabs(relative)
    ):
        raise MaliciousArchiveEntryError(f"Malicious ZIP entry detected: {name}")
    return Path(full_path)


class ArchiveExtractor:
    """Streams the entries of a ZIP archive into a directory"""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size
        self.logger = logger

    async def extract(
        self, archive_path: Union[str, Path], output_dir: Union[str, Path]
    ) -> int:
        """Extracts the archive and returns the number of files written.

        Every entry name is validated against the archive index before anything
        is written, so a single traversal attempt leaves the output untouched.
        """
        archive_path = Path(archive_path)
        output_dir = Path(os.path.abspath(output_dir))
        self.logger.info(f"Extracting {archive_path.name} to {output_dir}")

        try:
            archive = zipfile.ZipFile(archive_path)
        except (OSError, zipfile.BadZipFile) as e:
            raise LokaliseError(
                f"Failed to open ZIP file at {archive_path}: {e}"
            ) from e

        files_written = 0
        with archive:
            for info in archive.infolist():
                resolve_entry_path(output_dir, info.filename)

            for entry in iter_archive_entries(archive, self.chunk_size):
                target = resolve_entry_path(output_dir, entry.name)

                if entry.is_directory:
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                await self._write_entry(entry, target)
                files_written += 1

        self.logger.info(f"Extracted {files_written} file(s) from {archive_path.name}")
        return files_written

    async def _write_entry(self, entry: ArchiveEntry, target: Path) -> None:
        """Streams one entry to target.

        Decompression runs in a worker thread one chunk at a time. The first
        chunk is pulled before target is opened, so an entry that cannot be
        read (encrypted, unknown compression method) leaves no file behind.
        """
        chunks = entry.iter_bytes()
        try:
            chunk = await asyncio.to_thread(next, chunks, None)
            async with aiofiles.open(target, "wb") as destination:
                while chunk is not None:
                    await destination.write(chunk)
                    chunk = await asyncio.to_thread(next, chunks, None)
        # RuntimeError also covers NotImplementedError
        except (OSError, EOFError, RuntimeError, zipfile.BadZipFile, zlib.error) as e:
            raise LokaliseError(f"Failed to extract ZIP entry: {entry.name}") from e
