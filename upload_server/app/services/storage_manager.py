import os
import stat
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple
from uuid import uuid4

import aiofiles
import aiofiles.os
from fastapi import HTTPException, UploadFile

from upload_server import config
from upload_server.formatting import format_bytes
from upload_server.logger_config import setup_logger

logger = setup_logger()


class FileTooLarge(Exception):
    """Raised while streaming an upload once it passes the size limit."""

    def __init__(self, limit: int):
        super().__init__(f"File too large. Maximum size is {format_bytes(limit)}")
        self.limit = limit


def sanitize_filename(filename: str) -> str:
    """Reduce a client supplied name to its last path component.

    Both forward and back slashes are treated as separators, so
    ``../../etc/passwd`` and ``C:\\temp\\report.txt`` become ``passwd``
    and ``report.txt``. Names containing a NUL byte are rejected since no
    filesystem call accepts them.
    """
    filename = filename or ""
    if "\x00" in filename:
        logger.info(f"Rejected filename with NUL byte: {filename!r}")
        raise HTTPException(status_code=400, detail="Invalid filename")

    name = PurePosixPath(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        logger.info(f"Rejected filename: {filename!r}")
        raise HTTPException(status_code=400, detail="Invalid filename")
    return name


class StorageManager:
    """Owns the uploads directory; every handler goes through it.

    No locking is done. Concurrent uploads of the same name each stream into
    their own temp file and the last one to be moved into place wins.
    """

    def __init__(self, upload_dir: Path, temp_dir: Path):
        self.upload_dir = Path(upload_dir).absolute()
        self.temp_dir = Path(temp_dir).absolute()

    def ensure_directories(self):
        """Create the upload and temp directories if they don't exist."""
        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.upload_dir}, {self.temp_dir}")

        # Finished uploads are moved with os.replace, which can't cross devices
        if self._device(self.upload_dir) != self._device(self.temp_dir):
            logger.warning(
                f"Temporary directory {self.temp_dir} is on a different filesystem than "
                f"{self.upload_dir}; uploads will fail until TEMP_DIR is moved next to it"
            )

    def _device(self, path: Path) -> int:
        return os.stat(path).st_dev

    async def initialize(self):
        """Initialize the storage manager and report what is already stored."""
        logger.info("Initializing storage manager...")
        self.ensure_directories()

        # Clean leftovers of interrupted uploads
        files_removed = 0
        for name in await aiofiles.os.listdir(self.temp_dir):
            path = self.temp_dir / name
            if await aiofiles.os.path.isfile(path):
                await aiofiles.os.unlink(path)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

        entries = await self.list_files()
        stored_files = [entry for entry in entries if not entry["is_dir"]]
        total_size = sum(entry["size"] for entry in stored_files)
        logger.info(f"Uploads directory holds {len(stored_files)} files ({format_bytes(total_size)})")

    def resolve(self, filename: str) -> Path:
        """Get the absolute path a (sanitized) filename maps to."""
        return self.upload_dir / sanitize_filename(filename)

    async def _discard(self, path: Path):
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.unlink(path)
        except OSError as e:
            logger.error(f"Could not remove partial file {path}: {str(e)}")

    async def save_upload(self, filename: str, upload: UploadFile, max_bytes: int = 0) -> Tuple[Path, int]:
        """Stream an uploaded file into the uploads directory.

        The content goes to a unique temp file first and is moved over the
        destination once complete, so an existing file with the same name is
        replaced and never left half written.

        Args:
            filename: Client supplied filename, sanitized before use
            upload: The multipart file to read from
            max_bytes: Size ceiling for the file content in bytes, 0 for
                unlimited. Over HTTP the body limit middleware already caps the
                whole request, so this only trips for direct callers.

        Returns:
            Tuple of the destination path and the number of bytes written
        """
        destination = self.resolve(filename)
        temp_path = self.temp_dir / f"{uuid4().hex}.part"

        size = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                while chunk := await upload.read(config.CHUNK_SIZE):
                    size += len(chunk)
                    if max_bytes > 0 and size > max_bytes:
                        raise FileTooLarge(max_bytes)
                    await f.write(chunk)

            await aiofiles.os.replace(temp_path, destination)

        except FileTooLarge as e:
            logger.warning(f"Upload of {destination.name} aborted after {size} bytes: {str(e)}")
            await self._discard(temp_path)
            raise HTTPException(status_code=413, detail=str(e))

        except Exception as e:
            logger.error(f"Error saving file {destination.name}: {str(e)}", exc_info=True)
            await self._discard(temp_path)
            raise HTTPException(status_code=500, detail="Error saving file")

        logger.debug(f"Stored {destination} ({size} bytes)")
        return destination, size

    async def delete_file(self, filename: str) -> Path:
        """Delete a regular file from the uploads directory.

        The file is opened for read/write before removal so that ownership
        problems show up as "Permission denied" instead of a generic error.
        """
        path = self.resolve(filename)
        logger.info(f"Attempting to delete file: {path}")

        try:
            file_info = await aiofiles.os.stat(path)
        except FileNotFoundError:
            logger.info(f"File not found: {path}")
            raise HTTPException(status_code=404, detail="File not found")
        except OSError as e:
            logger.error(f"Error accessing file {path}: {str(e)}")
            raise HTTPException(status_code=500, detail="Error accessing file")

        if stat.S_ISDIR(file_info.st_mode):
            logger.info(f"Not a file: {path}")
            raise HTTPException(status_code=400, detail="Not a file")

        try:
            async with aiofiles.open(path, 'r+b'):
                pass
        except OSError as e:
            logger.error(f"Cannot open file (permission issue?): {str(e)}")
            raise HTTPException(status_code=500, detail="Permission denied")

        try:
            await aiofiles.os.unlink(path)
        except OSError as e:
            logger.error(f"Error deleting file {path}: {str(e)}")
            raise HTTPException(status_code=500, detail="Error deleting file")

        logger.info(f"Successfully deleted file: {path.name}")
        return path

    async def list_files(self) -> List[Dict]:
        """List the uploads directory, sorted by name."""
        entries = []
        for name in sorted(await aiofiles.os.listdir(self.upload_dir)):
            path = self.upload_dir / name
            try:
                file_info = await aiofiles.os.stat(path)
            except FileNotFoundError:
                # Removed while listing
                continue
            is_dir = stat.S_ISDIR(file_info.st_mode)
            size = 0 if is_dir else file_info.st_size
            entries.append({"name": name, "is_dir": is_dir, "size": size})
        return entries
