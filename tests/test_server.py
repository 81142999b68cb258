import socket

import httpx
import pytest

from media_transfer.core.errors import BindConflict
from media_transfer.core.network import bind_first_available
from media_transfer.server import TransferServer

def listening_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    return sock

def free_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port

@pytest.fixture
def blocked_ports():
    sockets = [listening_socket(), listening_socket()]
    yield [s.getsockname()[1] for s in sockets]
    for s in sockets:
        s.close()

def test_bind_skips_ports_in_use(blocked_ports):
    port = free_port()

    sock, bound = bind_first_available("127.0.0.1", blocked_ports + [port])
    sock.close()

    assert bound == port

def test_bind_conflict_when_all_ports_taken(blocked_ports):
    with pytest.raises(BindConflict) as excinfo:
        bind_first_available("127.0.0.1", blocked_ports)

    assert excinfo.value.detail["ports"] == blocked_ports

def test_server_falls_back_to_free_port(test_settings, blocked_ports):
    port = free_port()
    settings = test_settings.model_copy(update={
        "HOST": "127.0.0.1",
        "PREFERRED_PORT": blocked_ports[0],
        "FALLBACK_PORTS": [blocked_ports[1], port],
    })
    server = TransferServer.from_settings(settings)

    try:
        assert server.start() == port
        assert server.is_alive
        assert server.advertised_url().endswith(f":{port}")

        response = httpx.get(f"http://127.0.0.1:{port}/api/status")
        assert response.status_code == 200
        assert response.json()["running"] is True
    finally:
        server.stop()

    assert not server.is_alive
    assert server.active_port is None

def test_server_start_raises_when_no_port_free(test_settings, blocked_ports):
    settings = test_settings.model_copy(update={
        "HOST": "127.0.0.1",
        "PREFERRED_PORT": blocked_ports[0],
        "FALLBACK_PORTS": [blocked_ports[1]],
    })
    server = TransferServer.from_settings(settings)

    with pytest.raises(BindConflict):
        server.start()
    assert server.active_port is None
