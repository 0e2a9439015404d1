import logging
import queue
import socket
import threading

import pytest

from netassist.udp import (
    MulticastError,
    UDPConfig,
    UDPServer,
    send_multicast,
    send_multicast_with_interface,
)


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


@pytest.fixture
def server():
    srv = UDPServer()
    yield srv
    srv.stop()


@pytest.fixture
def client():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(3.0)
    yield sock
    sock.close()


@pytest.mark.parametrize("port", [0, -1, 65536])
def test_invalid_port_is_rejected(server, port):
    with pytest.raises(ValueError):
        server.start(UDPConfig(port=port))
    assert server.address() is None


def test_defaults_are_filled_in(server):
    port = free_udp_port()
    server.start(UDPConfig(port=port, buffer_size=0, channel_size=0))
    assert server.config.buffer_size == 1024
    assert server.config.channel_size == 1024
    assert server.address()[1] == port


def test_handler_response_is_sent_back(server, client):
    port = free_udp_port()
    seen = queue.Queue()

    def handler(addr, data):
        seen.put(addr)
        return data.upper()

    server.start(UDPConfig(port=port), handler, False)
    client.sendto(b"ping", ("127.0.0.1", port))
    reply, _ = client.recvfrom(1024)
    assert reply == b"PING"
    assert seen.get(timeout=3)[1] == client.getsockname()[1]


def test_empty_handler_response_sends_nothing(server, client):
    port = free_udp_port()
    called = threading.Event()

    def handler(addr, data):
        called.set()
        return b""

    server.start(UDPConfig(port=port), handler, False)
    client.settimeout(0.5)
    client.sendto(b"quiet", ("127.0.0.1", port))
    assert called.wait(3)
    with pytest.raises(socket.timeout):
        client.recvfrom(1024)


def test_send_data_delivers_through_sender(server, client):
    port = free_udp_port()
    server.start(UDPConfig(port=port), None, True)
    host, client_port = client.getsockname()
    server.send_data(b"hello", f"{host}:{client_port}")
    data, sender = client.recvfrom(1024)
    assert data == b"hello"
    assert sender[1] == port


def test_send_data_before_start_raises():
    with pytest.raises(RuntimeError):
        UDPServer().send_data(b"x", "127.0.0.1:9")


def test_full_queue_drops_message(server, caplog):
    port = free_udp_port()
    test_logger = logging.getLogger("test.udp.queue")
    server.start(UDPConfig(port=port, channel_size=1, logger=test_logger), None, False)
    with caplog.at_level(logging.WARNING, logger="test.udp.queue"):
        server.send_data(b"one", "127.0.0.1:9")
        server.send_data(b"two", "127.0.0.1:9")
    assert "dropped" in caplog.text


def test_second_start_keeps_first_binding(server):
    first = free_udp_port()
    server.start(UDPConfig(port=first))
    second = free_udp_port()
    server.start(UDPConfig(port=second))
    assert server.address()[1] == first


def test_stop_then_restart(server, client):
    port = free_udp_port()
    server.start(UDPConfig(port=port), lambda addr, data: data, False)
    server.stop()
    assert server.address() is None
    server.send_data(b"ignored", "127.0.0.1:9")
    server.stop()
    assert server.address() is None

    server.start(UDPConfig(port=port), lambda addr, data: data, False)
    client.sendto(b"again", ("127.0.0.1", port))
    reply, _ = client.recvfrom(1024)
    assert reply == b"again"


def test_unknown_interface_fails_to_join(server):
    port = free_udp_port()
    config = UDPConfig(
        port=port, multicast_ip="239.1.2.3", interface_name="no-such-iface0"
    )
    with pytest.raises(MulticastError):
        server.start(config)
    assert server.address() is None


def test_invalid_source_ip_fails_to_join(server):
    port = free_udp_port()
    config = UDPConfig(port=port, multicast_ip="239.1.2.3", source_ips=["bogus"])
    with pytest.raises(MulticastError):
        server.start(config)
    assert server.address() is None


def test_send_multicast_reaches_listener(server):
    port = free_udp_port()
    received = queue.Queue()
    server.start(UDPConfig(port=port), lambda addr, data: received.put(data), False)
    send_multicast("127.0.0.1", port, "hello")
    assert received.get(timeout=3) == b"hello"


def test_send_multicast_with_interface_binds_local_ip(server):
    port = free_udp_port()
    received = queue.Queue()
    server.start(
        UDPConfig(port=port), lambda addr, data: received.put((addr, data)), False
    )
    send_multicast_with_interface("127.0.0.1", port, "bound", "127.0.0.1")
    addr, data = received.get(timeout=3)
    assert data == b"bound"
    assert addr[0] == "127.0.0.1"


def test_send_multicast_with_unavailable_local_ip_fails():
    with pytest.raises(MulticastError):
        send_multicast_with_interface("127.0.0.1", free_udp_port(), "x", "192.0.2.1")