import logging
import socket
from typing import Iterable, Tuple

from media_transfer.core.errors import BindConflict

logger = logging.getLogger("network")


def bind_first_available(host: str, ports: Iterable[int]) -> Tuple[socket.socket, int]:
    """
    Claim the first port in ``ports`` that can be bound on ``host``.

    The socket is left listening so the port stays ours until the server
    takes it over. Raises ``BindConflict`` when every candidate is taken.
    """
    tried = []
    for port in ports:
        tried.append(port)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(128)
        except OSError as e:
            sock.close()
            logger.warning(f"Port {port} in use, trying next... ({e})")
            continue
        return sock, sock.getsockname()[1]
    raise BindConflict(tried)


def local_ip_address() -> str:
    """
    Best guess at the LAN address other devices can reach us on.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connecting a UDP socket only picks a route
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()
