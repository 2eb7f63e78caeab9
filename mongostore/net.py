"""TCP helpers for the station modules."""

from __future__ import annotations

import logging
import socket

from .protocol import Packet

logger = logging.getLogger(__name__)


def start_server(host, port) -> socket.socket:
    """Open a listening TCP socket on ``host``:``port``."""
    family, socktype, proto, _, address = socket.getaddrinfo(
        host, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
    )[0]
    server = socket.socket(family, socktype, proto)
    try:
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(address)
        server.listen(socket.SOMAXCONN)
    except OSError:
        server.close()
        logger.warning("Could not start the server; start the module again.")
        raise
    logger.debug("Ready to listen for clients")
    return server


def wait_for_client(server: socket.socket) -> socket.socket:
    """Accept one client connection and return its socket."""
    client, _ = server.accept()
    logger.info("A client connected")
    return client


def connect(host, port) -> socket.socket:
    """Connect to ``host``:``port``, raising ConnectionError on failure."""
    try:
        return socket.create_connection((host, int(port)))
    except OSError as exc:
        raise ConnectionError(f"cannot connect to {host}:{port}") from exc


def send_packet(sock: socket.socket, packet: Packet) -> None:
    sock.sendall(packet.serialize())