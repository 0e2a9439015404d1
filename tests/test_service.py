import socket

import pytest

from netassist.service import (
    Service,
    ServiceSettings,
    load_settings,
    parse_source_ips,
    tcp_message_handler,
    udp_message_handler,
)


def _free_udp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_parse_source_ips_strips_and_drops_blanks():
    assert parse_source_ips(" 10.0.0.1, ,10.0.0.2 ,") == ["10.0.0.1", "10.0.0.2"]


def test_parse_source_ips_empty():
    assert parse_source_ips("") == []


def test_default_settings():
    settings = load_settings(None)
    assert settings.tcp_server_port == 10000
    assert settings.udp_server_port == 9999
    assert settings.udp_source_ips == []


def test_load_settings_from_file(tmp_path):
    conf = tmp_path / "app.conf"
    conf.write_text(
        "# comment\n"
        "tcp_server_port = 12000\n"
        "udp_server_port = 12001\n"
        'udp_multicast_ip = "239.1.1.1"\n'
        "udp_source_ips = 10.0.0.1, 10.0.0.2\n"
        "udp_interface_name = eth7\n",
        encoding="utf-8",
    )
    settings = load_settings(str(conf))
    assert settings.tcp_server_port == 12000
    assert settings.udp_server_port == 12001
    assert settings.udp_multicast_ip == "239.1.1.1"
    assert settings.udp_source_ips == ["10.0.0.1", "10.0.0.2"]
    assert settings.udp_interface_name == "eth7"


def test_invalid_number_falls_back_to_default(tmp_path):
    conf = tmp_path / "app.conf"
    conf.write_text("tcp_server_port = abc\n", encoding="utf-8")
    assert load_settings(str(conf)).tcp_server_port == 10000


def test_run_mode_section_overrides_top_level(tmp_path):
    conf = tmp_path / "app.conf"
    conf.write_text(
        "runmode = prod\ntcp_server_port = 12000\n[prod]\ntcp_server_port = 12002\n",
        encoding="utf-8",
    )
    settings = load_settings(str(conf))
    assert settings.run_mode == "prod"
    assert settings.tcp_server_port == 12002


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.conf"))


def test_handlers_echo():
    assert tcp_message_handler("127.0.0.1:1", b"\x01\x02") == b"\x01\x02"
    assert udp_message_handler(("127.0.0.1", 1), b"abc") == b"abc"


def test_service_echoes_tcp_and_udp():
    udp_port = _free_udp_port()
    service = Service(ServiceSettings(tcp_server_port=0, udp_server_port=udp_port))
    service.start()
    try:
        tcp_port = service.tcp_server.address()[1]
        with socket.create_connection(("127.0.0.1", tcp_port), timeout=2) as conn:
            conn.sendall(b"ping")
            assert conn.recv(64) == b"ping"

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
            client.settimeout(3)
            client.sendto(b"hello", ("127.0.0.1", udp_port))
            data, _ = client.recvfrom(64)
            assert data == b"hello"
    finally:
        service.stop()
    assert service.tcp_server.address() is None
    assert service.udp_server.address() is None


def test_bad_udp_port_leaves_tcp_running():
    service = Service(ServiceSettings(tcp_server_port=0, udp_server_port=70000))
    service.start()
    try:
        assert service.udp_server.address() is None
        tcp_port = service.tcp_server.address()[1]
        with socket.create_connection(("127.0.0.1", tcp_port), timeout=2) as conn:
            conn.sendall(b"x")
            assert conn.recv(16) == b"x"
    finally:
        service.stop()