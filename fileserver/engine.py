import dataclasses
import socket
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Optional
from urllib.parse import unquote

from .config import VERSION, ServerConfig
from .models import Request, ResponseSpec


class HTTPError(Exception):
    """Protocol-level failure; the connection is answered and then closed."""

    def __init__(self, status: int, detail: str = "") -> None:
        self.status = status
        self.detail = detail or HTTPStatus(status).phrase
        super().__init__(f"{status} {self.detail}")


class HTTPEngine:
    """Incremental request parser and response serializer."""

    def __init__(self, config: ServerConfig, server_name: Optional[str] = None) -> None:
        self.config = config
        if server_name is None:
            server_name = f"fileserver/{VERSION} ({socket.gethostname()})"
        self.server_name = server_name

    def extract(self, buf: bytearray) -> Optional[Request]:
        """
        Pop one complete request off the front of ``buf``.
        Returns None while more bytes are needed; raises HTTPError when the
        buffered data can never become a valid request.
        """
        while buf.startswith(b"\r\n"):
            del buf[:2]

        end = buf.find(b"\r\n\r\n")
        if end < 0:
            if len(buf) > self.config.max_header_bytes:
                raise HTTPError(431)
            return None
        if end > self.config.max_header_bytes:
            raise HTTPError(431)

        req = self._parse_request(bytes(buf[:end]))

        if "transfer-encoding" in req.headers:
            raise HTTPError(501, "chunked request bodies are not supported")
        length_str = req.headers.get("content-length", "0")
        if not (length_str.isascii() and length_str.isdigit()):
            raise HTTPError(400, "bad content-length")
        length = int(length_str)
        if length > self.config.max_body_bytes:
            raise HTTPError(413)

        total = end + 4 + length
        if len(buf) < total:
            return None
        body = bytes(buf[end + 4:total])
        del buf[:total]
        return dataclasses.replace(req, body=body)

    def _parse_request(self, head: bytes) -> Request:
        lines = head.split(b"\r\n")

        request_line = lines[0].decode("iso-8859-1")
        parts = request_line.split()
        if len(parts) != 3:
            raise HTTPError(400, "bad request line")

        method, target, version = parts
        if not version.startswith("HTTP/"):
            raise HTTPError(400, "bad http version")

        headers = {}
        for bline in lines[1:]:
            if not bline:
                continue
            line = bline.decode("iso-8859-1", errors="ignore")
            if ":" not in line:
                raise HTTPError(400, "malformed header")
            k, v = line.split(":", 1)
            headers[k.strip().lower()] = v.strip()

        target = self._origin_form(target)
        path = target.split("?", 1)[0]
        # Raw non-ASCII bytes are UTF-8, same as their percent-encoded form.
        path = unquote(path.encode("iso-8859-1").decode("utf-8", "surrogateescape"))

        return Request(method=method, target=target, path=path, version=version, headers=headers)

    @staticmethod
    def _origin_form(target: str) -> str:
        """Reduce an absolute-form target (http://host/x?q) to /x?q."""
        scheme, sep, rest = target.partition("://")
        if not sep or not scheme.isalpha():
            return target
        for i, ch in enumerate(rest):
            if ch == "/":
                return rest[i:]
            if ch == "?":
                return "/" + rest[i:]
        return "/"

    @staticmethod
    def wants_keep_alive(req: Request) -> bool:
        connection = req.headers.get("connection", "").lower()
        if req.version == "HTTP/1.0":
            return "keep-alive" in connection
        return "close" not in connection

    def render(self, method: str, resp: ResponseSpec, keep_alive: bool) -> bytes:
        """Status line, headers and any in-memory body. File bodies are streamed separately."""
        head_only = method.upper() == "HEAD"

        headers = dict(resp.headers)
        headers.setdefault("Date", self._http_date())
        headers.setdefault("Server", self.server_name)
        headers.setdefault("Connection", "keep-alive" if keep_alive else "close")
        if resp.status >= 200 and resp.status not in (204, 304):
            headers.setdefault("Content-Length", str(resp.content_length))

        status_line = f"HTTP/1.1 {resp.status} {resp.reason}\r\n"
        header_block = status_line + "".join(f"{k}: {v}\r\n" for k, v in headers.items()) + "\r\n"
        data = header_block.encode("iso-8859-1")

        if head_only or resp.status == 304:
            return data
        return data + resp.body

    def error_response(self, status: int) -> ResponseSpec:
        return ResponseSpec(status, HTTPStatus(status).phrase, headers={"Content-Type": "text/plain; charset=utf-8"})

    @staticmethod
    def _http_date() -> str:
        dt = datetime.now(timezone.utc)
        return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")
