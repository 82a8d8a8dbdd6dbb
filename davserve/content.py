"""
Content serving with conditional request and byte range support
"""

import os
import logging
from typing import AsyncGenerator, Awaitable, Callable, Dict, Optional, Protocol

from fastapi import Request, Response
from fastapi.responses import StreamingResponse

from .models import FileInfo
from .utils import (
    create_content_range_header,
    format_http_date,
    parse_http_date,
    parse_http_range,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Readable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int: ...


class EmptyFile:
    """Zero-length content that is always at EOF"""

    async def read(self, size: int = -1) -> bytes:
        return b""

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return 0


def check_preconditions(request: Request, modified: float) -> Optional[int]:
    """
    Evaluate date-based preconditions against a last-modified time

    Returns:
        304 or 412 when the request short-circuits, None otherwise
    """
    # An unknown modification time disables date validators
    if modified <= 0:
        return None

    # HTTP dates carry whole seconds only
    modified = float(int(modified))

    unmodified_since = parse_http_date(request.headers.get("if-unmodified-since"))
    if unmodified_since is not None and modified > unmodified_since:
        return 412

    if request.method in ("GET", "HEAD") and "if-none-match" not in request.headers:
        modified_since = parse_http_date(request.headers.get("if-modified-since"))
        if modified_since is not None and modified <= modified_since:
            return 304

    return None


def _range_applies(request: Request, modified: float) -> bool:
    if_range = request.headers.get("if-range")
    if not if_range:
        return True
    # No entity tags are issued, so only a matching date keeps the range
    return parse_http_date(if_range) == float(int(modified))


async def _iter_content(
    content: Readable,
    start: int,
    length: int,
    release: Optional[Callable[[], Awaitable[object]]],
) -> AsyncGenerator[bytes, None]:
    try:
        await content.seek(start)
        remaining = length
        while remaining > 0:
            chunk = await content.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        if release is not None:
            await release()


async def send_content(
    request: Request,
    info: FileInfo,
    content: Readable,
    release: Optional[Callable[[], Awaitable[object]]] = None,
) -> Response:
    """
    Build the response for a resource, streaming content when a body is due

    Headers and status are computed from the stat metadata only, so passing
    EmptyFile yields the same negotiation as the real content without a body.
    release is awaited exactly once: right away when no body is sent,
    otherwise after streaming finishes.
    """
    size = info.size
    headers: Dict[str, str] = {}
    if info.modified > 0:
        headers["Last-Modified"] = format_http_date(info.modified)

    status = check_preconditions(request, info.modified)
    if status is not None:
        if release is not None:
            await release()
        if status == 304:
            return Response(status_code=304, headers=headers)
        return Response(status_code=status)

    headers["Content-Type"] = info.mime_type or "application/octet-stream"
    headers["Accept-Ranges"] = "bytes"

    start, end = 0, size - 1
    status_code = 200

    range_header = request.headers.get("range")
    http_range = parse_http_range(range_header) if range_header else None
    if http_range is not None and _range_applies(request, info.modified):
        resolved = http_range.resolve(size)
        if resolved is None:
            if release is not None:
                await release()
            logger.debug(f"Unsatisfiable range {range_header!r} for {info.path} ({size} bytes)")
            return Response(
                status_code=416,
                headers={"Content-Range": f"bytes */{size}"},
            )
        start, end = resolved
        status_code = 206
        headers["Content-Range"] = create_content_range_header(start, end, size)

    length = max(0, end - start + 1)
    headers["Content-Length"] = str(length)

    return StreamingResponse(
        _iter_content(content, start, length, release),
        status_code=status_code,
        headers=headers,
    )
