"""
Utility functions for davserve
"""

import mimetypes
import posixpath
import time
from email.utils import parsedate_to_datetime
from typing import Optional
import logging

from .models import HttpRange, MIME_TYPES, DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)


def get_mime_type(name: str) -> str:
    """Get MIME type for a file name"""
    suffix = posixpath.splitext(name)[1].lower()

    # Check our custom MIME types first
    if suffix in MIME_TYPES:
        return MIME_TYPES[suffix]

    # Fall back to system mimetypes
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


def format_http_date(timestamp: float) -> str:
    """Format a POSIX timestamp as an RFC 7231 HTTP date"""
    return time.strftime("%a, %d %b %Y %H:%M:%S GMT", time.gmtime(timestamp))


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """Parse an HTTP date header into a POSIX timestamp, None if invalid"""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError, IndexError):
        return None


def parse_http_range(range_header: str) -> Optional[HttpRange]:
    """
    Parse HTTP Range header

    Supports:
    - bytes=start-end
    - bytes=start-
    - bytes=-suffix

    Args:
        range_header: Range header value (e.g., "bytes=0-1023")

    Returns:
        HttpRange object or None if invalid
    """
    if not range_header:
        return None

    # Must start with "bytes="
    if not range_header.startswith("bytes="):
        return None

    range_spec = range_header[6:].strip()

    # Handle multiple ranges (not supported, take first one)
    if ',' in range_spec:
        range_spec = range_spec.split(',')[0].strip()

    if '-' not in range_spec:
        return None

    start_str, end_str = range_spec.split('-', 1)
    start_str, end_str = start_str.strip(), end_str.strip()

    try:
        if not start_str:
            # Suffix range: bytes=-500
            return HttpRange(suffix_length=int(end_str))
        start = int(start_str)
        if not end_str:
            # Start range: bytes=500-
            return HttpRange(start=start)
        # Full range: bytes=0-1023
        return HttpRange(start=start, end=int(end_str))
    except ValueError:
        return None


def normalize_path(path: str) -> str:
    """Collapse a slash-separated path to its cleaned, rooted form"""
    cleaned = posixpath.normpath("/" + path)
    # normpath keeps a leading '//' as-is
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def create_content_range_header(start: int, end: int, total: int) -> str:
    """Create Content-Range header value"""
    return f"bytes {start}-{end}/{total}"
