"""
DAV request dispatch for davserve

Translates GET, HEAD, PUT and DELETE requests into FileSystem operations.
http://www.webdav.org/specs/rfc4918.html
"""

import logging
import posixpath
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates
from starlette.requests import ClientDisconnect

from .content import EmptyFile, send_content
from .fs import BACKEND_ERRORS, File
from .models import FileInfo, Outcome, ServerConfig
from .paths import resolve
from .utils import format_http_date

COPY_ERRORS = BACKEND_ERRORS + (ClientDisconnect,)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def request_uri(request: Request) -> str:
    """Unmodified request target as sent by the client"""
    raw_path = request.scope.get("raw_path")
    uri = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.scope["path"]
    query = request.scope.get("query_string", b"")
    if query:
        uri += "?" + query.decode("latin-1")
    return uri


def not_found(uri: str) -> Response:
    return PlainTextResponse(
        uri + "\n",
        status_code=Outcome.NOT_FOUND.status_code,
        headers={"X-Content-Type-Options": "nosniff"},
    )


class DavServer:
    """
    Serves one FileSystem according to an immutable ServerConfig

    The instance is an ASGI application and can be mounted directly.
    """

    def __init__(self, config: ServerConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.fs = config.fs
        self.log = logger or logging.getLogger(__name__)
        self._handlers: Dict[str, Callable[[Request], Awaitable[Response]]] = {
            "GET": self.do_get,
            "HEAD": self.do_head,
            "PUT": self.do_put,
            "DELETE": self.do_delete,
        }

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        response = await self.handle(request)
        await response(scope, receive, send)

    async def handle(self, request: Request) -> Response:
        client = request.client
        addr = f"{client.host}:{client.port}" if client else "-"
        self.log.info(f"DAV: {addr} {request.method} {request_uri(request)}")

        handler = self._handlers.get(request.method)
        if handler is None:
            self.log.info(f"DAV: unknown method {request.method}")
            return Response(status_code=Outcome.BAD_REQUEST.status_code)

        return await handler(request)

    def url2path(self, request: Request) -> str:
        return resolve(request.scope["path"], self.config.prefix)

    async def _release(self, handle: File) -> bool:
        try:
            await handle.close()
        except BACKEND_ERRORS as e:
            self.log.warning(f"DAV: failed to close handle: {e}")
            return False
        return True

    async def path_exists(self, path: str) -> bool:
        try:
            handle = await self.fs.open(path)
        except BACKEND_ERRORS as e:
            self.log.debug(f"DAV: open {path!r} failed: {e}")
            return False
        await self._release(handle)
        return True

    async def path_is_directory(self, path: str) -> bool:
        try:
            handle = await self.fs.open(path)
        except BACKEND_ERRORS as e:
            self.log.debug(f"DAV: open {path!r} failed: {e}")
            return False

        try:
            info = await handle.stat()
        except BACKEND_ERRORS as e:
            self.log.debug(f"DAV: stat {path!r} failed: {e}")
            return False
        finally:
            await self._release(handle)

        return info.is_dir

    # http://www.webdav.org/specs/rfc4918.html#rfc.section.9.4
    async def do_get(self, request: Request) -> Response:
        return await self.serve_resource(request, serve_content=True)

    async def do_head(self, request: Request) -> Response:
        return await self.serve_resource(request, serve_content=False)

    async def serve_resource(self, request: Request, serve_content: bool) -> Response:
        path = self.url2path(request)
        uri = request_uri(request)

        try:
            handle = await self.fs.open(path)
        except BACKEND_ERRORS as e:
            self.log.info(f"DAV: 404, File missing on disk: {uri} error {e}")
            return not_found(uri)

        try:
            info = await handle.stat()
        except BACKEND_ERRORS as e:
            await self._release(handle)
            self.log.info(f"DAV: 404, File missing on disk: {uri} error {e}")
            return not_found(uri)

        if info.is_dir:
            return await self.serve_directory(request, handle, uri)

        if serve_content:
            return await send_content(
                request, info, handle, release=lambda: self._release(handle)
            )

        await self._release(handle)
        return await send_content(request, info, EmptyFile())

    async def serve_directory(self, request: Request, handle: File, uri: str) -> Response:
        try:
            if not self.config.listings:
                self.log.info(f"DAV: 404, directory listing disabled: {uri}")
                return not_found(uri)
            entries = await handle.readdir()
        except BACKEND_ERRORS as e:
            self.log.info(f"DAV: 404, directory unreadable: {uri} error {e}")
            return not_found(uri)
        finally:
            await self._release(handle)

        base = request.scope["path"].rstrip("/")
        return templates.TemplateResponse(
            request=request,
            name="listing.html",
            context={
                "path": request.scope["path"],
                "entries": [self._listing_entry(base, entry) for entry in entries],
            },
        )

    @staticmethod
    def _listing_entry(base: str, entry: FileInfo) -> Dict[str, str]:
        name = entry.name + ("/" if entry.is_dir else "")
        return {
            "name": name,
            "href": f"{base}/{quote(name)}",
            "size": "-" if entry.is_dir else str(entry.size),
            "modified": format_http_date(entry.modified),
        }

    # http://www.webdav.org/specs/rfc4918.html#METHOD_PUT
    async def do_put(self, request: Request) -> Response:
        outcome = await self.put(self.url2path(request), request.stream())
        return Response(status_code=outcome.status_code)

    async def put(self, path: str, body: AsyncIterator[bytes]) -> Outcome:
        """Store body at path, truncating any existing content"""
        if self.config.read_only:
            self.log.info("DAV: PUT Forbidden: server is ReadOnly")
            return Outcome.FORBIDDEN

        if await self.path_is_directory(path):
            self.log.info(f"DAV: PUT on directory {path!r}, use MKCOL instead")
            return Outcome.METHOD_NOT_ALLOWED

        exists = await self.path_exists(path)

        parent = posixpath.dirname(path.rstrip("/"))
        if self.config.create_parents and not await self.path_exists(parent):
            try:
                await self.fs.mkdir(parent)
            except BACKEND_ERRORS as e:
                self.log.info(f"DAV: PUT error {e} making directory {parent!r}")

        try:
            handle = await self.fs.create(path)
        except BACKEND_ERRORS as e:
            self.log.info(f"DAV: PUT error with create path {path!r} error {e}")
            return Outcome.CONFLICT

        copied = True
        try:
            async for chunk in body:
                await handle.write(chunk)
        except COPY_ERRORS as e:
            copied = False
            self.log.info(f"DAV: PUT error copying body to {path!r} error {e!r}")

        # Buffered writes may only fail when flushed on close
        closed = await self._release(handle)
        if not (copied and closed):
            return Outcome.CONFLICT

        if exists:
            self.log.info(f"DAV: PUT status-no-content {path!r}")
            return Outcome.NO_CONTENT

        self.log.info(f"DAV: PUT created {path!r}")
        return Outcome.CREATED

    # http://www.webdav.org/specs/rfc4918.html#METHOD_DELETE
    async def do_delete(self, request: Request) -> Response:
        outcome = await self.delete(self.url2path(request))
        if outcome is Outcome.NO_CONTENT:
            self.log.info(f"DAV: DELETE successful {request_uri(request)}")
        else:
            self.log.info(f"DAV: DELETE unsuccessful {request_uri(request)}")
        return Response(status_code=outcome.status_code)

    async def delete(self, path: str) -> Outcome:
        """Remove the resource at path; directories are left untouched"""
        if self.config.read_only:
            self.log.info(f"DAV: DELETE attempted, file read-only {path!r}")
            return Outcome.FORBIDDEN

        if not await self.path_exists(path):
            self.log.info(f"DAV: DELETE 404 {path!r}")
            return Outcome.NOT_FOUND

        if await self.path_is_directory(path):
            # Deleting entire directories is disabled
            self.log.info(f"DAV: DELETE of directory {path!r} skipped")
            return Outcome.NO_CONTENT

        try:
            await self.fs.remove(path)
        except BACKEND_ERRORS as e:
            self.log.info(f"DAV: DELETE error removing {path!r} error {e}")
            return Outcome.INTERNAL_ERROR

        return Outcome.NO_CONTENT
