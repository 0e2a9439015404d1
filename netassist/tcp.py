"""TCP servers: a push/poll server and an echo-style request handler server."""

from __future__ import annotations

import logging
import os
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

_IO_TIMEOUT = 0.5
_REPLY_SIZE = 1024
_REQUEST_SIZE = 2048
_ACCEPT_POLL = 0.2


class AddressNotFoundError(LookupError):
    """Raised when no connected peer matches an address."""

    def __init__(self, addr: str) -> None:
        super().__init__(f"cannot find addr:{addr}")
        self.addr = addr


@dataclass
class MultiSendParam:
    addr: str
    data: bytes


@dataclass
class MultiSendResult:
    addr: str
    resp: bytes = b""
    error: Optional[Exception] = None


def _format_addr(sockaddr) -> str:
    host, port = sockaddr[0], sockaddr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _open_listener(port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        if os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("0.0.0.0", port))
        sock.listen()
        sock.settimeout(_ACCEPT_POLL)
    except OSError:
        sock.close()
        raise
    return sock


def _close_conn(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        conn.close()
    except OSError as exc:
        logger.error("Close conn error, %s", exc)


class _StreamListener:
    """Shared accept loop and connection registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conns: dict[str, socket.socket] = {}
        self._listener: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None

    def _listen(self, port: int) -> None:
        if self._listener is not None:
            raise RuntimeError("server is already running")
        with self._lock:
            self._conns = {}
        self._stop_event = threading.Event()
        self._listener = _open_listener(port)
        logger.info("Start tcp server on port %s", self._listener.getsockname()[1])
        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(self._listener,), daemon=True
        )
        self._accept_thread.start()

    def _accept_loop(self, listener: socket.socket) -> None:
        while not self._stop_event.is_set():
            try:
                conn, peer = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._stop_event.is_set():
                    logger.error("Error accepting %s", exc)
                return
            conn.settimeout(None)
            key = _format_addr(peer)
            logger.info("Accepting from %s", key)
            self._register(conn, key)

    def _register(self, conn: socket.socket, key: str) -> None:
        with self._lock:
            self._conns[key] = conn

    def _bound_address(self):
        if self._listener is None:
            return None
        return self._listener.getsockname()[:2]

    def _shutdown(self) -> None:
        listener = self._listener
        if listener is None:
            return
        logger.info("Stop tcp server")
        with self._lock:
            for conn in self._conns.values():
                _close_conn(conn)
            self._conns.clear()
        self._stop_event.set()
        if self._accept_thread is not None:
            self._accept_thread.join()
            self._accept_thread = None
        try:
            listener.close()
        except OSError as exc:
            logger.error("Close listener error, %s", exc)
        self._listener = None

    def _find_locked(self, addr: str) -> Optional[socket.socket]:
        return next((c for key, c in self._conns.items() if addr in key), None)


class TcpServer(_StreamListener):
    """Accepts clients and lets the caller push data to them by address."""

    def __init__(self) -> None:
        super().__init__()
        self._message_handler: Optional[Callable[[str, bytes], None]] = None

    def start(self, port: int, handler: Optional[Callable[[str, bytes], None]] = None) -> None:
        """Listen on ``port`` on all interfaces and accept in the background."""
        self._message_handler = handler
        self._listen(port)

    def address(self):
        """The bound (host, port), or None when not running."""
        return self._bound_address()

    def stop(self) -> None:
        """Close every client and the listener."""
        self._shutdown()

    def send_data(self, addr: str, data: bytes) -> None:
        """Send ``data`` plus a newline to the first peer whose address contains ``addr``."""
        payload = bytes(data) + b"\n"
        with self._lock:
            conn = self._find_locked(addr)
            if conn is None:
                raise AddressNotFoundError(addr)
            conn.settimeout(_IO_TIMEOUT)
            conn.sendall(payload)

    def send_data_ex(self, params: Iterable[MultiSendParam]) -> list[MultiSendResult]:
        """Send to several peers concurrently and collect one reply from each."""
        jobs = []
        for param in params:
            with self._lock:
                conn = self._find_locked(param.addr)
            jobs.append((param, conn))

        found = sum(1 for _, conn in jobs if conn is not None)
        if not found:
            return [
                MultiSendResult(p.addr, error=AddressNotFoundError(p.addr)) for p, _ in jobs
            ]

        with ThreadPoolExecutor(max_workers=found) as pool:
            futures = [
                pool.submit(self._exchange, p.addr, conn, p.data) if conn is not None else None
                for p, conn in jobs
            ]
            return [
                future.result()
                if future is not None
                else MultiSendResult(p.addr, error=AddressNotFoundError(p.addr))
                for (p, _), future in zip(jobs, futures)
            ]

    def send_and_receive(self, addr: str, data: bytes) -> bytes:
        """Send ``data`` plus a newline and return the peer's reply (empty if none)."""
        payload = bytes(data) + b"\n"
        with self._lock:
            conn = self._find_locked(addr)
            if conn is None:
                raise AddressNotFoundError(addr)
            conn.settimeout(_IO_TIMEOUT)
            conn.sendall(payload)
            try:
                reply = conn.recv(_REPLY_SIZE)
            except OSError:
                return b""
            if reply:
                logger.info("Receive data from:%s-%r", addr, reply)
            return reply

    @staticmethod
    def _exchange(addr: str, conn: socket.socket, data: bytes) -> MultiSendResult:
        try:
            conn.settimeout(_IO_TIMEOUT)
            conn.sendall(bytes(data) + b"\n")
            reply = conn.recv(_REPLY_SIZE)
        except OSError as exc:
            return MultiSendResult(addr, error=exc)
        if not reply:
            return MultiSendResult(addr, error=EOFError("connection closed by peer"))
        logger.info("Receive data from:%s-%r", addr, reply)
        return MultiSendResult(addr, resp=reply)


class TcpServerEx(_StreamListener):
    """Answers every chunk a client sends with the handler's response, or an echo."""

    def __init__(self) -> None:
        super().__init__()
        self._message_handler: Optional[Callable[[str, bytes], bytes]] = None

    def start(
        self,
        port: int,
        network: str = "tcp",
        handler: Optional[Callable[[str, bytes], bytes]] = None,
    ) -> None:
        """Listen on ``port``; ``network`` must name tcp (udp is not a stream network)."""
        kind = network.lower()
        if kind not in ("tcp", "udp"):
            raise ValueError("Invalid network type")
        if kind == "udp":
            raise OSError("listen udp: not a stream network")
        self._message_handler = handler
        self._listen(port)

    def address(self):
        """The bound (host, port), or None when not running."""
        return self._bound_address()

    def stop(self) -> None:
        """Close every client and the listener."""
        self._shutdown()
        logger.info("Stop tcp server success")

    def _register(self, conn: socket.socket, key: str) -> None:
        super()._register(conn, key)
        threading.Thread(target=self._serve_conn, args=(conn, key), daemon=True).start()

    def _serve_conn(self, conn: socket.socket, key: str) -> None:
        try:
            while True:
                try:
                    data = conn.recv(_REQUEST_SIZE)
                except OSError as exc:
                    logger.info("read from client failed, err: %s", exc)
                    break
                if not data:
                    logger.info("read from client failed, err: EOF")
                    break
                response = data
                if self._message_handler is not None:
                    response = self._message_handler(key, data) or b""
                try:
                    conn.sendall(response)
                except OSError as exc:
                    logger.info("write from client failed, err: %s", exc)
                    break
        finally:
            with self._lock:
                conn.close()
                if self._conns.get(key) is conn:
                    del self._conns[key]