"""
Storage backend interface and the host-directory backend for davserve

Names handed to a FileSystem are slash-separated logical paths, regardless
of the host operating system convention.
"""

import abc
import os
import logging
from pathlib import Path
from typing import List, Union
import aiofiles
import aiofiles.os

from .models import FileInfo
from .utils import get_mime_type, normalize_path

logger = logging.getLogger(__name__)


class FileSystemError(Exception):
    """Generic filesystem error"""
    pass


class InvalidPathError(FileSystemError):
    """Raised when a logical path contains an invalid character or escapes the root"""
    pass


# Errors a backend raises for a bad, missing or unusable name
BACKEND_ERRORS = (OSError, FileSystemError)


class File(abc.ABC):
    """An open, request-scoped handle returned by FileSystem.open/create"""

    @abc.abstractmethod
    async def stat(self) -> FileInfo:
        ...

    @abc.abstractmethod
    async def readdir(self, count: int = 0) -> List[FileInfo]:
        """Return up to count entries, all of them when count <= 0"""

    @abc.abstractmethod
    async def read(self, size: int = -1) -> bytes:
        ...

    @abc.abstractmethod
    async def write(self, data: bytes) -> int:
        ...

    @abc.abstractmethod
    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...


class FileSystem(abc.ABC):
    """Access to a collection of named files"""

    @abc.abstractmethod
    async def open(self, name: str) -> File:
        """Open an existing file or directory for reading"""

    @abc.abstractmethod
    async def create(self, name: str) -> File:
        """Create or truncate a file for writing"""

    @abc.abstractmethod
    async def mkdir(self, name: str) -> None:
        """Create a directory along with any missing parents"""

    @abc.abstractmethod
    async def remove(self, name: str) -> None:
        """Remove a file or an empty directory"""


def clean_path(name: str) -> str:
    """
    Validate a logical path and clean it to its rooted form

    Raises:
        InvalidPathError: If the name holds a null byte or a host separator
    """
    if "\x00" in name:
        raise InvalidPathError("invalid character in file path")

    for sep in (os.sep, os.altsep):
        if sep and sep != "/" and sep in name:
            raise InvalidPathError("invalid character in file path")

    return normalize_path(name)


def safe_join(root_path: Path, name: str) -> Path:
    """
    Safely join a backend root with a logical path

    Args:
        root_path: Root directory path
        name: Logical path, cleaned of '.' and '..' before joining

    Returns:
        Resolved absolute path within root

    Raises:
        InvalidPathError: If the name is invalid or resolves outside root
    """
    parts = [part for part in clean_path(name).split("/") if part]

    base_path = root_path.resolve()
    full_path = base_path.joinpath(*parts) if parts else base_path

    # Resolve symlinks without requiring the target to exist
    try:
        resolved_path = full_path.resolve(strict=False)
    except OSError as e:
        raise FileSystemError(f"Failed to resolve path: {e}")

    # Ensure resolved path is within root
    try:
        resolved_path.relative_to(base_path)
    except ValueError:
        raise InvalidPathError(f"Path escapes root: {name}")

    return resolved_path


async def _stat_path(path: Path, logical: str) -> FileInfo:
    stat = await aiofiles.os.stat(path)
    is_dir = await aiofiles.os.path.isdir(path)
    return FileInfo(
        name=path.name,
        path=logical,
        size=0 if is_dir else stat.st_size,
        is_dir=is_dir,
        modified=stat.st_mtime,
        mime_type="" if is_dir else get_mime_type(path.name)
    )


class LocalFile(File):
    """Handle over a regular file opened with aiofiles"""

    def __init__(self, path: Path, logical: str, fobj):
        self.path = path
        self.logical = logical
        self._fobj = fobj

    async def stat(self) -> FileInfo:
        return await _stat_path(self.path, self.logical)

    async def readdir(self, count: int = 0) -> List[FileInfo]:
        raise NotADirectoryError(f"Not a directory: {self.logical}")

    async def read(self, size: int = -1) -> bytes:
        return await self._fobj.read(size)

    async def write(self, data: bytes) -> int:
        return await self._fobj.write(data)

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return await self._fobj.seek(offset, whence)

    async def close(self) -> None:
        await self._fobj.close()


class LocalDirectory(File):
    """Handle over a directory; it can be listed but not read"""

    def __init__(self, path: Path, logical: str):
        self.path = path
        self.logical = logical

    async def stat(self) -> FileInfo:
        return await _stat_path(self.path, self.logical)

    async def readdir(self, count: int = 0) -> List[FileInfo]:
        entries = []
        for entry in sorted(await aiofiles.os.listdir(self.path)):
            child = "/".join((self.logical.rstrip("/"), entry))
            try:
                entries.append(await _stat_path(self.path / entry, child))
            except OSError as e:
                logger.warning(f"Failed to stat {self.path / entry}: {e}")
                continue
            if 0 < count <= len(entries):
                break
        return entries

    async def read(self, size: int = -1) -> bytes:
        raise IsADirectoryError(f"Is a directory: {self.logical}")

    async def write(self, data: bytes) -> int:
        raise IsADirectoryError(f"Is a directory: {self.logical}")

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return 0

    async def close(self) -> None:
        pass


class Dir(FileSystem):
    """
    FileSystem backed by the native filesystem, restricted to one directory tree

    An empty root is treated as ".".
    """

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root or ".")

    def __repr__(self) -> str:
        return f"Dir({str(self.root)!r})"

    def sanitize_path(self, name: str) -> Path:
        return safe_join(self.root, name)

    async def open(self, name: str) -> File:
        path = self.sanitize_path(name)
        logical = clean_path(name)

        if await aiofiles.os.path.isdir(path):
            return LocalDirectory(path, logical)

        fobj = await aiofiles.open(path, "rb")
        return LocalFile(path, logical, fobj)

    async def create(self, name: str) -> File:
        path = self.sanitize_path(name)
        fobj = await aiofiles.open(path, "w+b")
        return LocalFile(path, clean_path(name), fobj)

    async def mkdir(self, name: str) -> None:
        path = self.sanitize_path(name)
        await aiofiles.os.makedirs(path, exist_ok=True)

    async def remove(self, name: str) -> None:
        path = self.sanitize_path(name)
        if await aiofiles.os.path.isdir(path):
            await aiofiles.os.rmdir(path)
        else:
            await aiofiles.os.remove(path)
