"""Tests for the static file responder."""

import os
from pathlib import Path

import pytest

from fileserver.handler import FileHandler
from fileserver.models import Request


def get(path: str, method: str = "GET", target: str | None = None, **headers: str) -> Request:
    return Request(
        method=method,
        target=target or path,
        path=path,
        version="HTTP/1.1",
        headers={k.replace("_", "-"): v for k, v in headers.items()},
    )


@pytest.fixture
def root(tmp_path: Path) -> Path:
    www = tmp_path / "www"
    www.mkdir()
    (www / "index.html").write_text("<h1>hello</h1>")
    (www / "style.css").write_text("body {}")
    docs = www / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("aaa")
    (docs / "b & c.txt").write_text("bc")
    (tmp_path / "secret.txt").write_text("top secret")
    return www


@pytest.fixture
def handler() -> FileHandler:
    return FileHandler()


class TestFiles:
    def test_serves_file(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/index.html"), str(root))
        assert resp.status == 200
        assert resp.body_path == str(root.resolve() / "index.html")
        assert resp.body_size == len("<h1>hello</h1>")
        assert resp.headers["Content-Type"] == "text/html"
        assert "ETag" in resp.headers
        assert "Last-Modified" in resp.headers

    def test_mime_type(self, handler: FileHandler, root: Path) -> None:
        assert handler.handle(get("/style.css"), str(root)).headers["Content-Type"] == "text/css"

    def test_unknown_type_is_octet_stream(self, handler: FileHandler, root: Path) -> None:
        (root / "blob.zzzunknown").write_bytes(b"\x00\x01")
        resp = handler.handle(get("/blob.zzzunknown"), str(root))
        assert resp.headers["Content-Type"] == "application/octet-stream"

    def test_missing_file_is_404(self, handler: FileHandler, root: Path) -> None:
        assert handler.handle(get("/nope.html"), str(root)).status == 404

    def test_head_is_allowed(self, handler: FileHandler, root: Path) -> None:
        assert handler.handle(get("/index.html", method="HEAD"), str(root)).status == 200

    def test_other_methods_are_405(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/index.html", method="POST"), str(root))
        assert resp.status == 405
        assert resp.headers["Allow"] == "GET, HEAD"

    def test_etag_revalidation(self, handler: FileHandler, root: Path) -> None:
        etag = handler.handle(get("/index.html"), str(root)).headers["ETag"]
        resp = handler.handle(get("/index.html", if_none_match=etag), str(root))
        assert resp.status == 304
        assert resp.body_path is None
        assert handler.handle(get("/index.html", if_none_match='"other"'), str(root)).status == 200

    def test_nul_byte_is_400(self, handler: FileHandler, root: Path) -> None:
        assert handler.handle(get("/index.html\x00.txt"), str(root)).status == 400


class TestContainment:
    @pytest.mark.parametrize(
        "path",
        ["/../secret.txt", "/../../etc/passwd", "/docs/../../secret.txt", "/docs/../../../../../../etc/passwd"],
    )
    def test_traversal_never_escapes_root(self, handler: FileHandler, root: Path, path: str) -> None:
        resp = handler.handle(get(path), str(root))
        assert resp.status in (403, 404)
        assert resp.body_path is None

    def test_dotdot_inside_root_is_fine(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/docs/../index.html"), str(root))
        assert resp.status == 200

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
    def test_symlink_out_of_root_is_forbidden(self, handler: FileHandler, root: Path) -> None:
        (root / "leak.txt").symlink_to(root.parent / "secret.txt")
        assert handler.handle(get("/leak.txt"), str(root)).status == 403

    def test_repeated_requests_are_identical(self, handler: FileHandler, root: Path) -> None:
        first = handler.handle(get("/index.html"), str(root))
        second = handler.handle(get("/index.html"), str(root))
        assert first == second


class TestDirectories:
    def test_root_serves_index(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/"), str(root))
        assert resp.status == 200
        assert resp.body_path is not None and resp.body_path.endswith("index.html")

    def test_missing_slash_redirects(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/docs", target="/docs?x=1"), str(root))
        assert resp.status == 301
        assert resp.headers["Location"] == "/docs/?x=1"

    def test_listing(self, handler: FileHandler, root: Path) -> None:
        resp = handler.handle(get("/docs/"), str(root))
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/html")
        page = resp.body.decode("utf-8")
        assert 'href="a.txt"' in page
        assert 'href="b%20%26%20c.txt"' in page
        assert "b &amp; c.txt" in page
        assert 'href="../"' in page

    def test_listing_disabled(self, root: Path) -> None:
        resp = FileHandler(dir_listing=False).handle(get("/docs/"), str(root))
        assert resp.status == 403
