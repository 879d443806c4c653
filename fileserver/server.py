import contextlib
import enum
import logging
import os
import selectors
import signal
import socket
import threading
import time
from typing import Dict, Optional, Tuple

from .config import VERSION, ServerConfig, parse_listen_address
from .connection import Connection
from .dispatcher import RequestDispatcher
from .engine import HTTPEngine, HTTPError
from .events import ConnectionClosed, ConnectionOpened, Event, MessageReceived
from .handler import FileHandler
from .logs import VERBOSE
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)


class ServerState(enum.Enum):
    INITIALIZING = "initializing"
    LISTENING = "listening"
    DRAINING = "draining"
    TERMINATED = "terminated"


class BindError(Exception):
    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Cannot listen on {address}: {reason}. Use http://ADDR:PORT or :PORT")


class ShutdownToken:
    """
    Cancellation token shared between the signal handler and the loop.
    The first trigger wins; later ones are ignored.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.signo = 0

    def trigger(self, signo: int) -> None:
        if self._event.is_set():
            return
        self.signo = signo
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


class EventLoopServer:
    def __init__(
        self,
        config: ServerConfig,
        dispatcher: Optional[RequestDispatcher] = None,
        shutdown: Optional[ShutdownToken] = None,
    ) -> None:
        self.config = config
        if dispatcher is None:
            dispatcher = RequestDispatcher(config, FileHandler(dir_listing=config.dir_listing))
        self.dispatcher = dispatcher
        self.shutdown = shutdown or ShutdownToken()
        self.engine = HTTPEngine(config)
        self.state = ServerState.INITIALIZING
        self.address: Optional[Tuple] = None

        # Created on bind() / run()
        self._listen_sock: Optional[socket.socket] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._connections: Dict[int, Connection] = {}

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._on_signal)
        signal.signal(signal.SIGTERM, self._on_signal)

    def _on_signal(self, signo: int, _frame) -> None:
        self.shutdown.trigger(signo)

    def bind(self) -> None:
        """Create, bind and listen. Raises BindError naming the address."""
        try:
            addr = parse_listen_address(self.config.listen)
        except ValueError as exc:
            raise BindError(self.config.listen, str(exc)) from exc

        family = socket.AF_INET6 if ":" in addr.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((addr.host, addr.port))
            sock.listen(self.config.backlog)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise BindError(self.config.listen, exc.strerror or str(exc)) from exc

        self._listen_sock = sock
        self.address = sock.getsockname()

    def run(self, install_signals: bool = True) -> int:
        """
        Serve until the shutdown token is set. Returns the signal number
        that stopped the loop (0 if the token was triggered without one).
        """
        if install_signals:
            self.install_signal_handlers()
        if self._listen_sock is None:
            self.bind()
        assert self._listen_sock is not None

        with contextlib.ExitStack() as stack:
            self._selector = stack.enter_context(selectors.DefaultSelector())
            stack.enter_context(self._listen_sock)
            stack.callback(self._release)
            self._selector.register(self._listen_sock, selectors.EVENT_READ, data=None)

            self.state = ServerState.LISTENING
            logger.info("fileserver version : v%s", VERSION)
            logger.info("Listening on       : %s", self.config.listen)
            logger.info("Web root           : [%s]", os.path.realpath(self.config.root))
            self._poll_loop()

            self.state = ServerState.DRAINING
            self._drain()

        self.state = ServerState.TERMINATED
        logger.info("Exiting on signal %d", self.shutdown.signo)
        return self.shutdown.signo

    def _poll_loop(self) -> None:
        assert self._selector is not None
        while not self.shutdown.is_set():
            for key, mask in self._selector.select(timeout=self.config.poll_interval):
                if key.data is None:
                    self._accept()
                    continue
                conn: Connection = key.data
                if mask & selectors.EVENT_READ:
                    self._on_readable(conn)
                if mask & selectors.EVENT_WRITE and self._is_open(conn):
                    self._on_writable(conn)
            self._sweep_idle(time.monotonic())

    def _handle_event(self, event: Event) -> None:
        match event:
            case ConnectionOpened(conn=conn):
                logger.log(VERBOSE, "%s connected", conn.peer)
            case MessageReceived(conn=conn, request=req):
                self._respond(conn, req)
            case ConnectionClosed(conn=conn):
                logger.log(VERBOSE, "%s closed after %d requests", conn.peer, conn.requests_served)
            case _:
                raise TypeError(f"unexpected loop event {event!r}")

    def _accept(self) -> None:
        assert self._listen_sock is not None and self._selector is not None
        while True:
            try:
                sock, addr = self._listen_sock.accept()
            except BlockingIOError:
                return
            except OSError as exc:
                logger.warning("accept failed: %s", exc)
                return

            sock.setblocking(False)
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

            conn = Connection(sock, addr, hexdump=self.config.hexdump)
            self._connections[sock.fileno()] = conn
            self._selector.register(sock, selectors.EVENT_READ, data=conn)
            self._handle_event(ConnectionOpened(conn))

    def _on_readable(self, conn: Connection) -> None:
        try:
            alive = conn.receive(self.config.chunk_size)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.debug("%s read failed: %s", conn.peer, exc)
            self._close(conn)
            return

        if not alive:
            conn.close_after_flush = True
        self._process_buffer(conn)

    def _on_writable(self, conn: Connection) -> None:
        try:
            conn.flush(self.config.chunk_size)
        except OSError as exc:
            logger.debug("%s write failed: %s", conn.peer, exc)
            self._close(conn)
            return
        # Pipelined requests wait until the previous response is out.
        self._process_buffer(conn)

    def _process_buffer(self, conn: Connection) -> None:
        while not conn.busy and not conn.close_after_flush:
            try:
                req = self.engine.extract(conn.rbuf)
            except HTTPError as exc:
                logger.info("%s bad request: %s", conn.peer, exc)
                self._send(conn, "GET", self.engine.error_response(exc.status), keep_alive=False)
                break
            except Exception:
                logger.exception("%s unparseable request", conn.peer)
                self._send(conn, "GET", self.engine.error_response(500), keep_alive=False)
                break
            if req is None:
                break
            self._handle_event(MessageReceived(conn, req))
        self._update_interest(conn)

    def _respond(self, conn: Connection, req: Request) -> None:
        keep_alive = self.engine.wants_keep_alive(req)
        try:
            resp = self.dispatcher.dispatch(req)
        except Exception:
            logger.exception("Unhandled error serving %s %s", req.method, req.target)
            resp = self.engine.error_response(500)
            keep_alive = False

        resp = self._send(conn, req.method, resp, keep_alive)
        level = logging.INFO if resp.status >= 400 else logging.DEBUG
        logger.log(level, '%s "%s %s %s" %d %d', conn.peer, req.method, req.target, req.version, resp.status, resp.content_length)

    def _send(self, conn: Connection, method: str, resp: ResponseSpec, keep_alive: bool) -> ResponseSpec:
        body_path = resp.body_path if method.upper() != "HEAD" else None
        try:
            conn.start_response(self.engine.render(method, resp, keep_alive), body_path)
        except OSError as exc:
            # The file went away between stat() and open().
            logger.info("%s cannot open %s: %s", conn.peer, body_path, exc)
            resp = self.engine.error_response(404)
            conn.start_response(self.engine.render(method, resp, keep_alive))
        if not keep_alive:
            conn.close_after_flush = True
        return resp

    def _update_interest(self, conn: Connection) -> None:
        if not self._is_open(conn):
            return
        if conn.close_after_flush and not conn.busy:
            self._close(conn)
            return

        events = selectors.EVENT_WRITE if conn.busy else selectors.EVENT_READ
        assert self._selector is not None
        try:
            self._selector.modify(conn.sock, events, data=conn)
        except (KeyError, ValueError, OSError):
            self._close(conn)

    def _sweep_idle(self, now: float) -> None:
        for conn in list(self._connections.values()):
            if not conn.busy and now - conn.last_activity > self.config.idle_timeout:
                logger.debug("%s idle for %.0fs, closing", conn.peer, now - conn.last_activity)
                self._close(conn)

    def _is_open(self, conn: Connection) -> bool:
        return self._connections.get(conn.sock.fileno()) is conn

    def _close(self, conn: Connection) -> None:
        if not self._is_open(conn):
            return
        del self._connections[conn.sock.fileno()]
        if self._selector is not None:
            try:
                self._selector.unregister(conn.sock)
            except (KeyError, ValueError):
                pass
        conn.close()
        self._handle_event(ConnectionClosed(conn))

    def _drain(self) -> None:
        pending = [c for c in self._connections.values() if c.busy]
        logger.debug("Draining %d connections, %d with pending output", len(self._connections), len(pending))
        for conn in pending:
            try:
                conn.flush_blocking(self.config.drain_timeout, self.config.chunk_size)
            except OSError as exc:
                logger.debug("%s not flushed: %s", conn.peer, exc)

    def _release(self) -> None:
        for conn in list(self._connections.values()):
            self._close(conn)
        self._connections.clear()
        self._selector = None
        self._listen_sock = None
