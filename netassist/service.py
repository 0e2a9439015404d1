"""Runs the TCP and UDP debug servers together with the HTTP API."""

from __future__ import annotations

import argparse
import logging
import signal
import socketserver
import threading
from dataclasses import dataclass, field
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from netassist.tcp import TcpServerEx
from netassist.udp import UDPConfig, UDPServer
from netassist.web import create_app

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "conf/app.conf"
DEFAULT_LOG_FILE = "./logs/net-assist.log"


@dataclass
class ServiceSettings:
    """Settings read from the application configuration file."""

    tcp_server_port: int = 10000
    udp_server_port: int = 9999
    udp_multicast_ip: str = ""
    udp_interface_name: str = ""
    udp_source_ips: list[str] = field(default_factory=list)
    http_addr: str = ""
    http_port: int = 8080
    run_mode: str = "dev"


def parse_source_ips(text: str) -> list[str]:
    """Split a comma separated list, dropping blanks."""
    return [part.strip() for part in text.split(",") if part.strip()]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _parse_conf(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    section = ""
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip().lower()
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        if section:
            key = f"{section}::{key}"
        values[key] = _unquote(value.strip())
    return values


def load_settings(path: Optional[str] = None) -> ServiceSettings:
    """Read ``key = value`` settings; sections named after the run mode take precedence."""
    if path is None:
        return ServiceSettings()
    values = _parse_conf(Path(path).read_text(encoding="utf-8"))
    defaults = ServiceSettings()
    run_mode = values.get("runmode", defaults.run_mode)

    def text(key: str, default: str) -> str:
        return values.get(f"{run_mode.lower()}::{key}", values.get(key, default))

    def number(key: str, default: int) -> int:
        try:
            return int(text(key, str(default)))
        except ValueError:
            return default

    return ServiceSettings(
        tcp_server_port=number("tcp_server_port", defaults.tcp_server_port),
        udp_server_port=number("udp_server_port", defaults.udp_server_port),
        udp_multicast_ip=text("udp_multicast_ip", ""),
        udp_interface_name=text("udp_interface_name", ""),
        udp_source_ips=parse_source_ips(text("udp_source_ips", "")),
        http_addr=text("httpaddr", defaults.http_addr),
        http_port=number("httpport", defaults.http_port),
        run_mode=run_mode,
    )


def tcp_message_handler(addr: str, data: bytes) -> bytes:
    """Log a TCP request and echo it back."""
    logger.info("recv from %s, %s", addr, bytes(data).hex())
    return data


def udp_message_handler(addr, data: bytes) -> bytes:
    """Log a UDP datagram and echo it back."""
    logger.info("Received UDP message from %s:\n %r\n", addr, data)
    return data


class Service:
    """The TCP echo server and the UDP server, started and stopped together."""

    def __init__(self, settings: Optional[ServiceSettings] = None) -> None:
        self.settings = settings if settings is not None else ServiceSettings()
        self.tcp_server = TcpServerEx()
        self.udp_server = UDPServer()

    def start(self) -> None:
        """Start both servers; a server that fails to start is logged and skipped."""
        settings = self.settings
        try:
            self.tcp_server.start(settings.tcp_server_port, "TCP", tcp_message_handler)
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("Error listening %s", exc)

        config = UDPConfig(
            port=settings.udp_server_port,
            buffer_size=1024,
            channel_size=1024,
            multicast_ip=settings.udp_multicast_ip,
            interface_name=settings.udp_interface_name,
            source_ips=list(settings.udp_source_ips),
        )
        try:
            self.udp_server.start(config, udp_message_handler, False)
        except (OSError, ValueError) as exc:
            logger.error("UDP server failed to start: %s", exc)

    def stop(self) -> None:
        """Stop both servers."""
        logger.info("Stopping service...")
        try:
            self.tcp_server.stop()
            self.udp_server.stop()
        finally:
            logger.info("Service stopped.")


class _ThreadingWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):  # noqa: A002
        logger.info("%s - %s", self.address_string(), format % args)


def _configure_logging(log_file: str) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    try:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(path, when="midnight", encoding="utf-8")
    except OSError as exc:
        logger.error("%s", exc)
        return
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s")
    )
    root.addHandler(handler)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the servers and the HTTP API until interrupted."""
    parser = argparse.ArgumentParser(prog="netassist", description="Network debug assistant.")
    parser.add_argument("--config", help=f"configuration file (default: {DEFAULT_CONFIG} if present)")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help="log file path")
    args = parser.parse_args(argv)

    _configure_logging(args.log_file)

    if args.config is not None:
        settings = load_settings(args.config)
    elif Path(DEFAULT_CONFIG).is_file():
        settings = load_settings(DEFAULT_CONFIG)
    else:
        settings = ServiceSettings()

    service = Service(settings)
    service.start()

    app = create_app()
    http_server = make_server(
        settings.http_addr,
        settings.http_port,
        app,
        server_class=_ThreadingWSGIServer,
        handler_class=_QuietHandler,
    )
    http_thread = threading.Thread(target=http_server.serve_forever, daemon=True)
    http_thread.start()

    stop_requested = threading.Event()

    def _on_signal(signum, frame):
        stop_requested.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)
    while not stop_requested.wait(0.5):
        pass

    http_server.shutdown()
    http_server.server_close()
    service.stop()
    print("End...")
    return 0