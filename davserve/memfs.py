"""In-memory storage backend.

Keeps every node in a flat dict keyed by cleaned logical path. Used for
deterministic tests and for serving scratch trees without touching disk.
"""

import os
import posixpath
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .fs import File, FileSystem, clean_path
from .models import FileInfo
from .utils import get_mime_type


@dataclass
class MemoryNode:
    """A file or directory held by MemoryFileSystem."""
    is_dir: bool
    data: bytearray = field(default_factory=bytearray)
    modified: float = field(default_factory=time.time)


class MemoryFile(File):
    """Handle over a MemoryNode. Writes land in the node immediately."""

    def __init__(self, fs: "MemoryFileSystem", path: str, node: MemoryNode):
        self._fs = fs
        self.path = path
        self.node = node
        self._pos = 0
        self.closed = False

    def _check_open(self):
        if self.closed:
            raise ValueError("I/O operation on closed file")

    async def stat(self) -> FileInfo:
        self._check_open()
        return self._fs._info(self.path, self.node)

    async def readdir(self, count: int = 0) -> List[FileInfo]:
        self._check_open()
        if not self.node.is_dir:
            raise NotADirectoryError(f"Not a directory: {self.path}")
        entries = [self._fs._info(p, n) for p, n in self._fs._children(self.path)]
        return entries[:count] if count > 0 else entries

    async def read(self, size: int = -1) -> bytes:
        self._check_open()
        if self.node.is_dir:
            raise IsADirectoryError(f"Is a directory: {self.path}")
        end = len(self.node.data) if size is None or size < 0 else self._pos + size
        chunk = bytes(self.node.data[self._pos:end])
        self._pos += len(chunk)
        return chunk

    async def write(self, data: bytes) -> int:
        self._check_open()
        if self.node.is_dir:
            raise IsADirectoryError(f"Is a directory: {self.path}")
        buf = self.node.data
        if self._pos > len(buf):
            buf.extend(b"\x00" * (self._pos - len(buf)))
        buf[self._pos:self._pos + len(data)] = data
        self._pos += len(data)
        self.node.modified = time.time()
        return len(data)

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._check_open()
        if whence == os.SEEK_SET:
            pos = offset
        elif whence == os.SEEK_CUR:
            pos = self._pos + offset
        elif whence == os.SEEK_END:
            pos = len(self.node.data) + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if pos < 0:
            raise OSError("negative seek position")
        self._pos = pos
        return pos

    async def close(self) -> None:
        self._check_open()
        self.closed = True
        self._fs._release(self)


class MemoryFileSystem(FileSystem):
    """FileSystem held entirely in memory.

    The tree argument follows the nested-dict convention: dicts are
    directories, bytes/str values are files.

    Example:
        MemoryFileSystem({
            "readme.txt": "Hello, world!",
            "docs": {"guide.txt": b"A guide"},
        })

    open_handles counts handles not yet closed, so tests can check that
    every request released what it acquired.
    """

    def __init__(self, tree: Optional[dict] = None):
        self._nodes: Dict[str, MemoryNode] = {"/": MemoryNode(is_dir=True)}
        self.open_handles = 0
        if tree:
            self._load("/", tree)

    def _load(self, base: str, tree: dict):
        for name, value in tree.items():
            path = posixpath.join(base, name)
            if isinstance(value, dict):
                self._nodes[path] = MemoryNode(is_dir=True)
                self._load(path, value)
            else:
                data = value.encode("utf-8") if isinstance(value, str) else value
                self._nodes[path] = MemoryNode(is_dir=False, data=bytearray(data))

    def _info(self, path: str, node: MemoryNode) -> FileInfo:
        return FileInfo(
            name=posixpath.basename(path),
            path=path,
            size=0 if node.is_dir else len(node.data),
            is_dir=node.is_dir,
            modified=node.modified,
            mime_type="" if node.is_dir else get_mime_type(path),
        )

    def _children(self, path: str):
        for child in sorted(self._nodes):
            if child != "/" and posixpath.dirname(child) == path:
                yield child, self._nodes[child]

    def _handle(self, path: str, node: MemoryNode) -> MemoryFile:
        self.open_handles += 1
        return MemoryFile(self, path, node)

    def _release(self, handle: MemoryFile):
        self.open_handles -= 1

    def exists(self, name: str) -> bool:
        return clean_path(name) in self._nodes

    def isdir(self, name: str) -> bool:
        node = self._nodes.get(clean_path(name))
        return node is not None and node.is_dir

    def read_bytes(self, name: str) -> bytes:
        node = self._nodes.get(clean_path(name))
        if node is None:
            raise FileNotFoundError(f"No such file: {name}")
        return bytes(node.data)

    async def open(self, name: str) -> File:
        path = clean_path(name)
        node = self._nodes.get(path)
        if node is None:
            raise FileNotFoundError(f"No such file or directory: {path}")
        return self._handle(path, node)

    async def create(self, name: str) -> File:
        path = clean_path(name)
        parent = self._nodes.get(posixpath.dirname(path))
        if parent is None:
            raise FileNotFoundError(f"No such directory: {posixpath.dirname(path)}")
        if not parent.is_dir:
            raise NotADirectoryError(f"Not a directory: {posixpath.dirname(path)}")

        node = self._nodes.get(path)
        if node is None:
            node = self._nodes[path] = MemoryNode(is_dir=False)
        elif node.is_dir:
            raise IsADirectoryError(f"Is a directory: {path}")
        else:
            del node.data[:]
            node.modified = time.time()
        return self._handle(path, node)

    async def mkdir(self, name: str) -> None:
        path = clean_path(name)
        parts = [p for p in path.split("/") if p]
        current = "/"
        for part in parts:
            current = posixpath.join(current, part)
            node = self._nodes.get(current)
            if node is None:
                self._nodes[current] = MemoryNode(is_dir=True)
            elif not node.is_dir:
                raise FileExistsError(f"File exists: {current}")

    async def remove(self, name: str) -> None:
        path = clean_path(name)
        node = self._nodes.get(path)
        if node is None:
            raise FileNotFoundError(f"No such file or directory: {path}")
        if path == "/":
            raise PermissionError("Cannot remove the root directory")
        if node.is_dir and any(True for _ in self._children(path)):
            raise OSError(f"Directory not empty: {path}")
        del self._nodes[path]
