import html
import logging
import mimetypes
import os
import stat
from email.utils import formatdate
from http import HTTPStatus
from typing import Dict, Optional, Tuple
from urllib.parse import quote

from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)

INDEX_FILES = ("index.html", "index.htm")


def status_response(status: int, headers: Optional[Dict[str, str]] = None) -> ResponseSpec:
    return ResponseSpec(status, HTTPStatus(status).phrase, headers=dict(headers or {}))


class FileHandler:
    """
    Static responder: maps a request path onto a document root and serves
    the file, an index file or a generated directory listing.

    The root is passed per request; nothing outside its real path is ever
    opened.
    """

    def __init__(self, dir_listing: bool = True, index_files: Tuple[str, ...] = INDEX_FILES) -> None:
        self.dir_listing = dir_listing
        self.index_files = index_files

    def handle(self, req: Request, root: str) -> ResponseSpec:
        if req.method.upper() not in ("GET", "HEAD"):
            return status_response(405, {"Allow": "GET, HEAD"})
        if "\x00" in req.path:
            return status_response(400)

        root_real = os.path.realpath(root)
        try:
            abs_path = self._safe_join(root_real, req.path)
        except PermissionError:
            logger.info("Refusing %r: resolves outside of %s", req.path, root_real)
            return status_response(403)

        if os.path.isdir(abs_path):
            if not req.path.endswith("/"):
                path, q, query = req.target.partition("?")
                return status_response(301, {"Location": path + "/" + q + query})
            index = self._find_index(abs_path)
            if index is None:
                if not self.dir_listing:
                    return status_response(403)
                return self._listing(req.path, root_real, abs_path)
            abs_path = index

        try:
            st = os.stat(abs_path)
        except OSError:
            return status_response(404)

        if not stat.S_ISREG(st.st_mode) or not os.access(abs_path, os.R_OK):
            return status_response(403)

        etag = f'"{int(st.st_mtime):x}.{st.st_size}"'
        headers = {
            "ETag": etag,
            "Last-Modified": formatdate(st.st_mtime, usegmt=True),
        }
        if self._etag_matches(req.headers.get("if-none-match"), etag):
            return ResponseSpec(304, "Not Modified", headers=headers)

        ctype, _ = mimetypes.guess_type(abs_path)
        headers["Content-Type"] = ctype or "application/octet-stream"
        return ResponseSpec(200, "OK", headers=headers, body_path=abs_path, body_size=st.st_size)

    def _find_index(self, directory: str) -> Optional[str]:
        for name in self.index_files:
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate
        return None

    @staticmethod
    def _etag_matches(header: Optional[str], etag: str) -> bool:
        if not header:
            return False
        tags = {t.strip() for t in header.split(",")}
        return "*" in tags or etag in tags or f"W/{etag}" in tags

    def _listing(self, url_path: str, root_real: str, directory: str) -> ResponseSpec:
        try:
            names = sorted(os.listdir(directory))
        except OSError:
            return status_response(403)

        title = html.escape(url_path)
        rows = []
        if directory != root_real:
            rows.append('<tr><td><a href="../">..</a></td><td></td><td>[DIR]</td></tr>')
        for name in names:
            full = os.path.join(directory, name)
            try:
                st = os.stat(full)
            except OSError:
                continue
            is_dir = stat.S_ISDIR(st.st_mode)
            label = name + "/" if is_dir else name
            size = "[DIR]" if is_dir else str(st.st_size)
            rows.append(
                f'<tr><td><a href="{quote(label, errors="surrogateescape")}">{html.escape(label)}</a></td>'
                f"<td>{formatdate(st.st_mtime, usegmt=True)}</td><td>{size}</td></tr>"
            )

        page = (
            "<!DOCTYPE html>\n"
            f"<html><head><meta charset=\"utf-8\"><title>Index of {title}</title></head>\n"
            f"<body><h1>Index of {title}</h1>\n"
            "<table><tr><th>Name</th><th>Modified</th><th>Size</th></tr>\n"
            + "\n".join(rows)
            + "\n</table></body></html>\n"
        )
        return ResponseSpec(200, "OK", headers={"Content-Type": "text/html; charset=utf-8"}, body=page.encode("utf-8", "surrogateescape"))

    def _safe_join(self, root_real: str, url_path: str) -> str:
        rel = url_path.lstrip("/")
        norm = os.path.normpath(rel) if rel else "."
        candidate = os.path.join(root_real, norm)
        real = os.path.realpath(candidate)

        root_prefix = root_real.rstrip(os.sep) + os.sep
        if real != root_real and not real.startswith(root_prefix):
            raise PermissionError("escape root")
        return real
