"""
Data models and constants for davserve
"""

from enum import Enum
from http import HTTPStatus
from typing import Dict, Optional, TYPE_CHECKING
from dataclasses import dataclass, field

if TYPE_CHECKING:
    from .fs import FileSystem


class Outcome(Enum):
    """Result of a DAV operation, valued by its HTTP status"""
    CREATED = 201
    NO_CONTENT = 204
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    CONFLICT = 409
    INTERNAL_ERROR = 500

    @property
    def status_code(self) -> int:
        return self.value


# Extended status codes, http://www.webdav.org/specs/rfc4918.html#status.code.extensions.to.http11
STATUS_MULTI = 207
STATUS_MOVED_TEMPORARILY = 302
STATUS_LOCKED = 423
STATUS_FAILED_DEPENDENCY = 424
STATUS_INSUFFICIENT_STORAGE = 507

STATUS_TEXT: Dict[int, str] = {
    STATUS_MOVED_TEMPORARILY: "Moved Temporarily",
    STATUS_MULTI: "Multi-Status",
    STATUS_LOCKED: "Locked",
    STATUS_FAILED_DEPENDENCY: "Failed Dependency",
    STATUS_INSUFFICIENT_STORAGE: "Insufficient Storage",
}


def status_text(code: int) -> str:
    """Reason phrase for a status code, empty if the code is unknown"""
    if code in STATUS_TEXT:
        return STATUS_TEXT[code]
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


@dataclass
class FileInfo:
    """Stat metadata for a file or directory"""
    name: str
    path: str
    size: int
    is_dir: bool
    modified: float
    mime_type: str = ""


@dataclass(frozen=True)
class ServerConfig:
    """Immutable settings owned by a DavServer for its lifetime"""
    fs: "FileSystem"
    prefix: str = ""
    read_only: bool = False
    listings: bool = False
    create_parents: bool = True


@dataclass
class TlsConfig:
    """TLS configuration"""
    enabled: bool = False
    certfile: str = ""
    keyfile: str = ""


@dataclass
class ListenConfig:
    """Listening socket configuration"""
    addr: str = "0.0.0.0"
    port: int = 8080
    tls: TlsConfig = field(default_factory=TlsConfig)


@dataclass
class DavConfig:
    """Served tree configuration"""
    root: str = "./data"
    prefix: str = ""
    readOnly: bool = False
    listings: bool = False
    createParents: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration"""
    json: bool = False
    file: str = ""
    level: str = "INFO"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container"""
    server: ListenConfig = field(default_factory=ListenConfig)
    dav: DavConfig = field(default_factory=DavConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# HTTP Range parsing result
@dataclass
class HttpRange:
    """HTTP Range header parsing result"""
    start: Optional[int] = None
    end: Optional[int] = None
    suffix_length: Optional[int] = None

    def resolve(self, content_length: int) -> Optional[tuple[int, int]]:
        """Resolve range to (start, end) byte positions, None if unsatisfiable"""
        if self.suffix_length is not None:
            # bytes=-500 (last 500 bytes)
            if self.suffix_length <= 0 or content_length <= 0:
                return None
            start = max(0, content_length - self.suffix_length)
            return start, content_length - 1

        start = self.start if self.start is not None else 0
        if start >= content_length:
            return None

        end = self.end if self.end is not None else content_length - 1
        if end < start:
            return None

        # Clamp end to the last byte
        return start, min(end, content_length - 1)


# Common MIME types
MIME_TYPES = {
    '.txt': 'text/plain; charset=utf-8',
    '.html': 'text/html; charset=utf-8',
    '.css': 'text/css; charset=utf-8',
    '.js': 'text/javascript; charset=utf-8',
    '.json': 'application/json',
    '.xml': 'text/xml; charset=utf-8',
    '.pdf': 'application/pdf',
    '.zip': 'application/zip',
    '.gz': 'application/gzip',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.svg': 'image/svg+xml',
    '.mp3': 'audio/mpeg',
    '.mp4': 'video/mp4',
}

# Default MIME type for unknown files
DEFAULT_MIME_TYPE = 'application/octet-stream'
