import logging
import socket
import time
from typing import BinaryIO, Optional, Tuple

from .logs import hexdump

hexdump_logger = logging.getLogger("fileserver.hexdump")


class Connection:
    """
    Buffers for one non-blocking client socket.

    Responses are queued as a header block plus an optional open file; the
    file is read into the write buffer one chunk at a time as the socket
    drains, so a large download never blocks the loop.
    """

    def __init__(self, sock: socket.socket, addr: Tuple, hexdump: bool = False) -> None:
        self.sock = sock
        self.addr = addr
        self.hexdump = hexdump
        self.rbuf = bytearray()
        self.wbuf = bytearray()
        self.close_after_flush = False
        self.requests_served = 0
        self.last_activity = time.monotonic()
        self._file: Optional[BinaryIO] = None

    @property
    def peer(self) -> str:
        return f"{self.addr[0]}:{self.addr[1]}"

    @property
    def busy(self) -> bool:
        return bool(self.wbuf) or self._file is not None

    def receive(self, chunk_size: int) -> bool:
        """Read what is available. False means the peer closed its side."""
        data = self.sock.recv(chunk_size)
        if not data:
            return False
        self.last_activity = time.monotonic()
        self._dump("<-", data)
        self.rbuf.extend(data)
        return True

    def start_response(self, head: bytes, body_path: Optional[str] = None) -> None:
        # Open first: if the file is gone nothing has been queued yet.
        if body_path is not None:
            self._file = open(body_path, "rb")
        self.wbuf.extend(head)
        self.requests_served += 1

    def flush(self, chunk_size: int) -> None:
        # At most one file chunk per call, so one download cannot hog the loop.
        if not self.wbuf and self._file is not None:
            data = self._file.read(chunk_size)
            if not data:
                self._close_file()
                return
            self.wbuf.extend(data)
        while self.wbuf:
            try:
                sent = self.sock.send(self.wbuf)
            except BlockingIOError:
                return
            self._dump("->", bytes(self.wbuf[:sent]))
            del self.wbuf[:sent]
            self.last_activity = time.monotonic()

    def flush_blocking(self, timeout: float, chunk_size: int) -> None:
        deadline = time.monotonic() + timeout
        self.sock.settimeout(timeout)
        while self.busy:
            if time.monotonic() > deadline:
                raise TimeoutError("drain deadline exceeded")
            self.flush(chunk_size)

    def close(self) -> None:
        self._close_file()
        try:
            self.sock.close()
        except OSError:
            pass

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _dump(self, direction: str, data: bytes) -> None:
        if self.hexdump and data:
            hexdump_logger.info("%s %s %d bytes\n%s", direction, self.peer, len(data), hexdump(data))
