import socket

from aiohttp.test_utils import unused_port

from utils.port_utils import check_port_availability, is_port_in_use


def test_free_port():
    port = unused_port()
    assert not is_port_in_use(port)
    assert check_port_availability(port) == (True, f"Port {port} is free")


def test_busy_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(('127.0.0.1', 0))
        busy.listen(1)
        port = busy.getsockname()[1]

        available, message = check_port_availability(port)

    assert not available
    assert str(port) in message
