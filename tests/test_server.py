"""
Tests for DAV request dispatch and the GET/HEAD/PUT/DELETE handlers
"""

import asyncio
import logging

import pytest

pytest.importorskip("httpx", reason="httpx is required for TestClient")

from fastapi.testclient import TestClient

from davserve.main import make_app
from davserve.memfs import MemoryFile, MemoryFileSystem
from davserve.models import Outcome, ServerConfig
from davserve.server import DavServer


class RecordingFileSystem(MemoryFileSystem):
    """MemoryFileSystem that records every backend call"""

    def __init__(self, tree=None):
        super().__init__(tree)
        self.calls = []

    async def open(self, name):
        self.calls.append(("open", name))
        return await super().open(name)

    async def create(self, name):
        self.calls.append(("create", name))
        return await super().create(name)

    async def mkdir(self, name):
        self.calls.append(("mkdir", name))
        return await super().mkdir(name)

    async def remove(self, name):
        self.calls.append(("remove", name))
        return await super().remove(name)


def make_tree():
    return {
        "hello.txt": "hello world",
        "docs": {
            "guide.txt": "A guide",
        },
    }


def make_client(fs, **options):
    server = DavServer(ServerConfig(fs=fs, **options))
    return TestClient(make_app(server))


async def collect(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.fixture()
def fs():
    return RecordingFileSystem(make_tree())


@pytest.fixture()
def client(fs):
    with make_client(fs) as client:
        yield client


def test_get_returns_content(client, fs):
    response = client.get("/hello.txt")
    assert response.status_code == 200
    assert response.content == b"hello world"
    assert response.headers["content-length"] == "11"
    assert response.headers["content-type"].startswith("text/plain")
    assert "last-modified" in response.headers
    assert fs.open_handles == 0


def test_get_missing_returns_404_with_uri(client, fs):
    response = client.get("/never/created.txt?x=1")
    assert response.status_code == 404
    assert response.text == "/never/created.txt?x=1\n"
    assert fs.open_handles == 0


def test_put_then_get_returns_exact_bytes(client):
    body = bytes(range(256)) * 1000
    response = client.put("/new.bin", content=body)
    assert response.status_code == 201
    assert response.content == b""

    response = client.get("/new.bin")
    assert response.status_code == 200
    assert response.content == body


def test_put_twice_overwrites(client, fs):
    assert client.put("/a.txt", content=b"first version, long").status_code == 201
    assert client.put("/a.txt", content=b"second").status_code == 204

    assert fs.read_bytes("a.txt") == b"second"
    assert client.get("/a.txt").content == b"second"


def test_put_creates_missing_parents(client, fs):
    response = client.put("/x/y/z.txt", content=b"deep")
    assert response.status_code == 201
    assert fs.isdir("x/y")
    assert fs.read_bytes("x/y/z.txt") == b"deep"


def test_put_without_parents_is_conflict(fs):
    with make_client(fs, create_parents=False) as client:
        response = client.put("/x/y/z.txt", content=b"deep")
    assert response.status_code == 409
    assert not fs.exists("x")


def test_put_under_a_file_is_conflict(client, fs):
    response = client.put("/hello.txt/child", content=b"x")
    assert response.status_code == 409
    assert fs.read_bytes("hello.txt") == b"hello world"


def test_put_on_directory_is_not_allowed(client, fs):
    response = client.put("/docs", content=b"clobber")
    assert response.status_code == 405
    assert fs.isdir("docs")
    assert fs.read_bytes("docs/guide.txt") == b"A guide"
    assert not any(call[0] == "create" for call in fs.calls)


def test_read_only_put_and_delete_are_forbidden(fs):
    with make_client(fs, read_only=True) as client:
        assert client.put("/hello.txt", content=b"changed").status_code == 403
        assert client.put("/fresh.txt", content=b"new").status_code == 403
        assert client.delete("/hello.txt").status_code == 403
        assert fs.calls == []

        # Reads still work
        assert client.get("/hello.txt").content == b"hello world"

    assert fs.read_bytes("hello.txt") == b"hello world"
    assert not fs.exists("fresh.txt")


def test_delete_missing_returns_404(client):
    assert client.delete("/missing.txt").status_code == 404


def test_delete_file_then_get_returns_404(client, fs):
    assert client.delete("/hello.txt").status_code == 204
    assert not fs.exists("hello.txt")
    assert client.get("/hello.txt").status_code == 404


def test_delete_directory_is_a_no_op(client, fs):
    response = client.delete("/docs")
    assert response.status_code == 204
    assert fs.isdir("docs")
    assert fs.read_bytes("docs/guide.txt") == b"A guide"
    assert not any(call[0] == "remove" for call in fs.calls)


@pytest.mark.parametrize("method", ["PROPFIND", "MKCOL", "POST", "OPTIONS", "LOCK"])
def test_unsupported_methods_return_400(client, fs, method):
    response = client.request(method, "/hello.txt", content=b"<propfind/>")
    assert response.status_code == 400
    assert fs.calls == []


def test_head_matches_get(client, fs):
    get = client.get("/hello.txt")
    head = client.head("/hello.txt")

    assert head.status_code == get.status_code == 200
    assert head.content == b""
    assert dict(head.headers) == dict(get.headers)
    assert fs.open_handles == 0


def test_head_missing_returns_404(client):
    assert client.head("/missing.txt").status_code == 404


def test_directory_get_without_listings_is_404(client, fs):
    assert client.get("/docs").status_code == 404
    assert fs.open_handles == 0


def test_directory_listing_when_enabled(fs):
    with make_client(fs, listings=True) as client:
        response = client.get("/docs/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert 'href="/docs/guide.txt"' in response.text
    assert fs.open_handles == 0


def test_null_byte_paths_are_rejected(client, fs):
    assert client.get("/bad%00name.txt").status_code == 404
    assert client.put("/bad%00name.txt", content=b"x").status_code == 409
    assert client.delete("/bad%00name.txt").status_code == 404
    assert fs.open_handles == 0


class TestPrefix:
    """Prefix stripping and the fallback to the root"""

    def test_prefix_is_stripped(self, fs):
        with make_client(fs, prefix="/dav") as client:
            assert client.put("/dav/docs/new.txt", content=b"n").status_code == 201
            assert client.get("/dav/hello.txt").content == b"hello world"
        assert fs.read_bytes("docs/new.txt") == b"n"

    def test_unmatched_prefix_maps_to_root(self, fs):
        with make_client(fs, prefix="/dav", listings=True) as client:
            response = client.get("/elsewhere/hello.txt")
            assert response.status_code == 200
            assert "Index of" in response.text
            assert '>docs/</a>' in response.text

            # Root is a directory, so PUT and DELETE behave as for a directory
            assert client.put("/elsewhere/hello.txt", content=b"x").status_code == 405
            assert client.delete("/elsewhere/hello.txt").status_code == 204

        assert fs.read_bytes("hello.txt") == b"hello world"


class FailingStatFile(MemoryFile):
    async def stat(self):
        raise OSError("stat failed")


class FailingStatFileSystem(MemoryFileSystem):
    def _handle(self, path, node):
        self.open_handles += 1
        return FailingStatFile(self, path, node)


class FailingRemoveFileSystem(MemoryFileSystem):
    async def remove(self, name):
        raise PermissionError("read-only medium")


def test_stat_failure_is_404_and_releases_handle():
    fs = FailingStatFileSystem(make_tree())
    with make_client(fs) as client:
        assert client.get("/hello.txt").status_code == 404
        assert client.head("/hello.txt").status_code == 404
    assert fs.open_handles == 0


def test_remove_failure_is_500():
    fs = FailingRemoveFileSystem(make_tree())
    with make_client(fs) as client:
        assert client.delete("/hello.txt").status_code == 500
    assert fs.exists("hello.txt")


class ExplodingFileSystem(MemoryFileSystem):
    async def open(self, name):
        raise RuntimeError("boom")


def test_unexpected_exception_is_bare_500(caplog):
    caplog.set_level(logging.INFO)
    server = DavServer(ServerConfig(fs=ExplodingFileSystem(make_tree())))
    with TestClient(make_app(server), raise_server_exceptions=False) as client:
        response = client.get("/hello.txt")

    assert response.status_code == 500
    assert response.content == b""

    unhandled = [r for r in caplog.records if r.getMessage().startswith("Unhandled exception")]
    assert unhandled and unhandled[0].exc_info is not None

    access = [r for r in caplog.records if r.getMessage().startswith("ACCESS")]
    assert [r.levelno for r in access] == [logging.ERROR]
    assert "'status': 500" in access[0].getMessage()


class FailingCloseFile(MemoryFile):
    async def close(self):
        await super().close()
        raise OSError("close failed")


class FailingCloseFileSystem(MemoryFileSystem):
    def _handle(self, path, node):
        self.open_handles += 1
        return FailingCloseFile(self, path, node)


def test_close_failure_after_get_is_logged(caplog):
    caplog.set_level(logging.WARNING, logger="davserve.server")
    fs = FailingCloseFileSystem(make_tree())
    with make_client(fs) as client:
        response = client.get("/hello.txt")

    assert response.status_code == 200
    assert response.content == b"hello world"
    assert fs.open_handles == 0
    assert any("failed to close handle" in r.getMessage() for r in caplog.records)


class TestHandlers:
    """Drive the operation handlers without HTTP"""

    def setup_method(self):
        self.fs = MemoryFileSystem(make_tree())
        self.server = DavServer(ServerConfig(fs=self.fs))

    def test_put_outcomes(self):
        outcome = asyncio.run(self.server.put("n.txt", collect(b"a", b"b")))
        assert outcome is Outcome.CREATED
        assert self.fs.read_bytes("n.txt") == b"ab"

        outcome = asyncio.run(self.server.put("n.txt", collect(b"c")))
        assert outcome is Outcome.NO_CONTENT
        assert self.fs.read_bytes("n.txt") == b"c"

    def test_copy_failure_is_conflict_and_leaves_partial_file(self):
        async def broken_body():
            yield b"partial"
            raise OSError("connection reset")

        outcome = asyncio.run(self.server.put("hello.txt", broken_body()))
        assert outcome is Outcome.CONFLICT
        assert self.fs.read_bytes("hello.txt") == b"partial"
        assert self.fs.open_handles == 0

    def test_client_disconnect_is_conflict(self):
        from starlette.requests import ClientDisconnect

        async def disconnecting_body():
            yield b"half"
            raise ClientDisconnect()

        outcome = asyncio.run(self.server.put("up.txt", disconnecting_body()))
        assert outcome is Outcome.CONFLICT
        assert self.fs.open_handles == 0

    def test_delete_outcomes(self):
        assert asyncio.run(self.server.delete("nope")) is Outcome.NOT_FOUND
        assert asyncio.run(self.server.delete("docs")) is Outcome.NO_CONTENT
        assert asyncio.run(self.server.delete("hello.txt")) is Outcome.NO_CONTENT
        assert not self.fs.exists("hello.txt")
        assert self.fs.exists("docs/guide.txt")

    def test_existence_and_type_checks(self):
        assert asyncio.run(self.server.path_exists("docs"))
        assert asyncio.run(self.server.path_is_directory("docs"))
        assert not asyncio.run(self.server.path_is_directory("hello.txt"))
        assert not asyncio.run(self.server.path_exists("gone"))
        assert self.fs.open_handles == 0

    def test_concurrent_put_and_delete_end_in_a_legal_state(self):
        body = [b"x" * 10] * 5

        async def slow_body():
            for chunk in body:
                await asyncio.sleep(0)
                yield chunk

        async def race():
            return await asyncio.gather(
                self.server.put("hello.txt", slow_body()),
                self.server.delete("hello.txt"),
            )

        asyncio.run(race())
        if self.fs.exists("hello.txt"):
            assert self.fs.read_bytes("hello.txt") == b"".join(body)
        assert self.fs.open_handles == 0
