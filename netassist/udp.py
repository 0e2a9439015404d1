"""UDP server with optional multicast membership and a queued sender."""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import os
import queue
import socket
import struct
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1024
DEFAULT_CHANNEL_SIZE = 1024
_READ_POLL = 1.0
_LINUX_MCAST_JOIN_SOURCE_GROUP = 46
_SOCKADDR_STORAGE_SIZE = 128

Handler = Callable[[tuple, bytes], Optional[bytes]]


class MulticastError(OSError):
    """Raised when a multicast group cannot be joined or reached."""


@dataclass
class UDPConfig:
    """Settings for :class:`UDPServer`."""

    port: int = 0
    buffer_size: int = 0
    channel_size: int = 0
    logger: Optional[logging.Logger] = None
    multicast_ip: str = ""
    source_ips: list[str] = field(default_factory=list)
    interface_name: str = ""


@dataclass
class SendCommand:
    """A datagram waiting to be sent to ``addr`` (``host:port``)."""

    data: bytes
    addr: str


def _parse_ip(text: str, what: str) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        raise MulticastError(f"invalid {what}: {text}") from None


def _interface_index(name: str) -> int:
    if not name:
        return 0
    try:
        return socket.if_nametoindex(name)
    except OSError as exc:
        raise MulticastError(f"failed to get network interface: {exc}") from exc


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    host = host.strip("[]")
    return host, int(port)


def _sockaddr_storage_v4(addr: ipaddress.IPv4Address) -> bytes:
    raw = (
        struct.pack("=H", socket.AF_INET)
        + struct.pack("!H", 0)
        + addr.packed
        + b"\0" * 8
    )
    return raw.ljust(_SOCKADDR_STORAGE_SIZE, b"\0")


def _join_group(sock: socket.socket, multicast_ip: str, interface_name: str, log: logging.Logger) -> None:
    group = _parse_ip(multicast_ip, "multicast address")
    index = _interface_index(interface_name)
    try:
        if group.version == 4:
            any_addr = socket.inet_aton("0.0.0.0")
            if index:
                mreq = struct.pack("=4s4si", group.packed, any_addr, index)
            else:
                mreq = struct.pack("=4s4s", group.packed, any_addr)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            log.info("Joined IPv4 multicast group: %s", multicast_ip)
        else:
            mreq = struct.pack("=16sI", group.packed, index)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
            log.info("Joined IPv6 multicast group: %s", multicast_ip)
    except OSError as exc:
        raise MulticastError(
            f"failed to join IPv{group.version} multicast group: {exc}"
        ) from exc


def _join_source_group(
    sock: socket.socket,
    group: ipaddress.IPv4Address,
    source: ipaddress.IPv4Address,
    index: int,
) -> None:
    if sys.platform.startswith("linux"):
        option = getattr(socket, "MCAST_JOIN_SOURCE_GROUP", _LINUX_MCAST_JOIN_SOURCE_GROUP)
        padding = b"\0" * (4 if struct.calcsize("P") == 8 else 0)
        request = (
            struct.pack("=I", index)
            + padding
            + _sockaddr_storage_v4(group)
            + _sockaddr_storage_v4(source)
        )
        sock.setsockopt(socket.IPPROTO_IP, option, request)
        return
    option = getattr(socket, "IP_ADD_SOURCE_MEMBERSHIP", None)
    if option is None:
        raise OSError("source-specific multicast is not supported on this platform")
    if index:
        raise OSError("selecting an interface by name needs Linux for source-specific multicast")
    any_addr = socket.inet_aton("0.0.0.0")
    request = struct.pack("=4s4s4s", group.packed, source.packed, any_addr)
    sock.setsockopt(socket.IPPROTO_IP, option, request)


def _join_source_specific_group(
    sock: socket.socket,
    multicast_ip: str,
    source_ips: list[str],
    interface_name: str,
    log: logging.Logger,
) -> None:
    if os.name == "nt":
        log.warning(
            "Source-specific multicast is not supported on Windows. "
            "Falling back to normal multicast."
        )
        _join_group(sock, multicast_ip, interface_name, log)
        return

    group = _parse_ip(multicast_ip, "multicast address")
    index = _interface_index(interface_name)

    if not source_ips:
        log.info("No source IPs specified, joining multicast group without source filtering.")
        _join_group(sock, multicast_ip, interface_name, log)
        return

    if group.version != 4:
        raise MulticastError(f"source-specific multicast needs an IPv4 group: {multicast_ip}")

    for source_ip in source_ips:
        source = _parse_ip(source_ip, "multicast source address")
        if source.version != 4:
            raise MulticastError(f"invalid multicast source address: {source_ip}")
        try:
            _join_source_group(sock, group, source, index)
        except OSError as exc:
            raise MulticastError(
                f"failed to join source-specific multicast group "
                f"(group: {multicast_ip}, source: {source_ip}): {exc}"
            ) from exc
        log.info(
            "Joined source-specific multicast group: %s (source: %s)", multicast_ip, source_ip
        )


class UDPServer:
    """Receives datagrams, answers them through a handler and sends queued messages."""

    def __init__(self) -> None:
        self.config = UDPConfig()
        self._log = logger
        self._sock: Optional[socket.socket] = None
        self._family = socket.AF_INET
        self._stop_event = threading.Event()
        self._queue: Optional[queue.Queue[SendCommand]] = None
        self._threads: list[threading.Thread] = []
        self._handler: Optional[Handler] = None
        self._with_sender = False
        self._running = False

    def start(self, config: UDPConfig, handler: Optional[Handler] = None, with_sender: bool = False) -> None:
        """Bind, join the configured multicast group and start background workers."""
        cfg = dataclasses.replace(config, source_ips=list(config.source_ips))
        log = cfg.logger or logger
        cfg.logger = log

        if cfg.port <= 0 or cfg.port > 65535:
            log.error("Invalid port: %d. Port must be between 1 and 65535.", cfg.port)
            raise ValueError(f"Invalid port: {cfg.port}. Port must be between 1 and 65535.")

        if self._running or self._sock is not None:
            self._log.warning("UDP server is already running.")
            return

        self.config = cfg
        self._log = log

        if cfg.buffer_size <= 0:
            cfg.buffer_size = DEFAULT_BUFFER_SIZE
            log.info("BufferSize not set. Using default: %d bytes.", cfg.buffer_size)
        if cfg.channel_size <= 0:
            cfg.channel_size = DEFAULT_CHANNEL_SIZE
            log.info("ChannelSize not set. Using default: %d.", cfg.channel_size)

        self._list_interfaces()

        if cfg.multicast_ip:
            try:
                infos = socket.getaddrinfo(cfg.multicast_ip, cfg.port, 0, socket.SOCK_DGRAM)
            except OSError as exc:
                log.error("Resolve UDP address failed: %s", exc)
                raise
            family, bind_addr = infos[0][0], infos[0][4]
        else:
            family, bind_addr = socket.AF_INET, ("0.0.0.0", cfg.port)

        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(bind_addr)
        except OSError as exc:
            sock.close()
            log.error("Listen UDP failed: %s", exc)
            raise

        if cfg.multicast_ip:
            try:
                _join_source_specific_group(
                    sock, cfg.multicast_ip, cfg.source_ips, cfg.interface_name, log
                )
            except MulticastError as exc:
                sock.close()
                log.error("Join multicast group failed: %s", exc)
                raise
            log.info("Joined multicast group: %s", cfg.multicast_ip)

        sock.settimeout(_READ_POLL)
        self._sock = sock
        self._family = family
        self._queue = queue.Queue(maxsize=cfg.channel_size)
        self._stop_event = threading.Event()
        self._handler = handler
        self._with_sender = with_sender
        log.info("Listening on %s", sock.getsockname()[:2])
        log.info("Buffer size: %d bytes", cfg.buffer_size)
        log.info("Channel size: %d", cfg.channel_size)
        self._running = True

        self._threads = [
            threading.Thread(target=self._receive_loop, args=(sock,), daemon=True)
        ]
        if with_sender:
            self._threads.append(threading.Thread(target=self._send_loop, daemon=True))
        for thread in self._threads:
            thread.start()

    def address(self):
        """The bound (host, port), or None when not running."""
        if self._sock is None:
            return None
        return self._sock.getsockname()[:2]

    def stop(self) -> None:
        """Stop the workers and close the socket."""
        sock = self._sock
        if sock is None:
            return
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads = []
        self._running = False
        try:
            sock.close()
        except OSError as exc:
            self._log.error("Close UDP connection failed: %s", exc)
        self._sock = None
        self._log.info("UDP server stopped")

    def send_data(self, data: bytes, addr: str) -> None:
        """Queue ``data`` for ``addr``; drop it with a warning when the queue is full."""
        if self._queue is None:
            raise RuntimeError("UDP server has not been started")
        if self._stop_event.is_set():
            return
        try:
            self._queue.put_nowait(SendCommand(bytes(data), addr))
        except queue.Full:
            self._log.warning("Send channel full, message to %s dropped", addr)

    def _list_interfaces(self) -> None:
        try:
            interfaces = socket.if_nameindex()
        except OSError as exc:
            self._log.error("Failed to list interfaces: %s", exc)
            return
        for index, name in interfaces:
            self._log.info("Name: %s, Index: %d", name, index)

    def _receive_loop(self, sock: socket.socket) -> None:
        bufsize = self.config.buffer_size
        while not self._stop_event.is_set():
            try:
                data, addr = sock.recvfrom(bufsize)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._stop_event.is_set():
                    self._log.error("Read error: %s", exc)
                return
            if not data:
                continue
            if self._handler is not None:
                threading.Thread(
                    target=self._respond, args=(sock, addr, data), daemon=True
                ).start()
        self._log.info("UDP receiver stopping...")

    def _respond(self, sock: socket.socket, addr, data: bytes) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            response = handler(addr, data)
        except Exception:
            self._log.exception("UDP handler failed for %s", addr)
            return
        if response:
            try:
                sock.sendto(response, addr)
            except OSError as exc:
                self._log.error("Send response error: %s", exc)

    def _send_loop(self) -> None:
        assert self._queue is not None
        while not self._stop_event.is_set():
            try:
                command = self._queue.get(timeout=_READ_POLL)
            except queue.Empty:
                continue
            self._send(command)
        self._log.info("UDP sender stopping...")

    def _send(self, command: SendCommand) -> None:
        sock = self._sock
        if sock is None:
            return
        try:
            host, port = _split_host_port(command.addr)
            infos = socket.getaddrinfo(host, port, self._family, socket.SOCK_DGRAM)
        except (OSError, ValueError) as exc:
            self._log.error("Resolve address failed: %s", exc)
            return
        try:
            sock.sendto(command.data, infos[0][4])
        except OSError as exc:
            self._log.error("Send UDP data failed: %s", exc)


def _encode(message: Union[str, bytes]) -> bytes:
    return message.encode("utf-8") if isinstance(message, str) else bytes(message)


def _send_once(multicast_ip: str, port: int, message: Union[str, bytes], local_ip: Optional[str]) -> None:
    try:
        infos = socket.getaddrinfo(multicast_ip, port, 0, socket.SOCK_DGRAM)
    except OSError as exc:
        raise MulticastError(f"failed to resolve multicast address: {exc}") from exc
    family, target = infos[0][0], infos[0][4]

    local_addr = None
    if local_ip is not None:
        try:
            local_infos = socket.getaddrinfo(local_ip, 0, family, socket.SOCK_DGRAM)
        except OSError as exc:
            raise MulticastError(f"failed to resolve local address: {exc}") from exc
        local_addr = local_infos[0][4]

    try:
        sock = socket.socket(family, socket.SOCK_DGRAM)
    except OSError as exc:
        raise MulticastError(f"failed to create UDP connection: {exc}") from exc
    with sock:
        try:
            if local_addr is not None:
                sock.bind(local_addr)
            sock.connect(target)
        except OSError as exc:
            raise MulticastError(f"failed to create UDP connection: {exc}") from exc
        try:
            sock.send(_encode(message))
        except OSError as exc:
            raise MulticastError(f"failed to send multicast message: {exc}") from exc


def send_multicast(multicast_ip: str, port: int, message: Union[str, bytes]) -> None:
    """Send one datagram holding ``message`` to ``multicast_ip:port``."""
    _send_once(multicast_ip, port, message, None)


def send_multicast_with_interface(
    multicast_ip: str, port: int, message: Union[str, bytes], local_ip: str
) -> None:
    """Send one datagram to ``multicast_ip:port`` from a socket bound to ``local_ip``."""
    _send_once(multicast_ip, port, message, local_ip)