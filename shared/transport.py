from __future__ import annotations
import socket
from contextlib import suppress
from typing import Any, Optional, Tuple

from shared.errors import ResolutionFailure, SocketOpenFailure
from shared.log import get_logger
from shared.retry import Deadline

logger = get_logger(__name__)

BUFFER_SIZE = 1024


class DatagramConnection:
    """Connected UDP socket to a single status bar server"""

    def __init__(self, sock: socket.socket, peer: Tuple[Any, ...]) -> None:
        self.sock = sock
        self.peer = peer
        self._closed = False

    @classmethod
    def open(cls, host: str, port: str) -> "DatagramConnection":
        """
        Resolve ``host``/``port`` and connect a datagram socket to the first result.

        Raises:
            ResolutionFailure: address lookup failed or returned nothing
            SocketOpenFailure: the socket could not be created or connected
        """
        try:
            infos = socket.getaddrinfo(host, port, 0, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE)
        except (socket.gaierror, UnicodeError) as e:
            raise ResolutionFailure(f"Cannot resolve {host}:{port}: {e}") from e
        if not infos:
            raise ResolutionFailure(f"No datagram address for {host}:{port}")

        family, sock_type, proto, _, address = infos[0]
        logger.debug(f"Resolved {host}:{port} to {address}")

        try:
            sock = socket.socket(family, sock_type, proto)
        except OSError as e:
            raise SocketOpenFailure(f"Cannot create socket for {address}: {e}") from e
        try:
            sock.connect(address)
        except OSError as e:
            sock.close()
            raise SocketOpenFailure(f"Cannot connect socket to {address}: {e}") from e

        logger.debug(f"Connected datagram socket to {address}")
        return cls(sock, address)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> int:
        return self.sock.send(data)

    def recv(self, deadline: Optional[Deadline] = None, bufsize: int = BUFFER_SIZE) -> bytes:
        """Block for one datagram, raising TimeoutError once ``deadline`` passes"""
        if deadline is None:
            self.sock.settimeout(None)
        else:
            remaining = deadline.remaining()
            if remaining <= 0:
                raise TimeoutError("Deadline already expired")
            self.sock.settimeout(remaining)
        return self.sock.recv(bufsize)

    def shutdown(self) -> None:
        """Shut down both directions; a peer that never answered is not an error"""
        if self._closed:
            return
        with suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sock.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"DatagramConnection(peer={self.peer!r}, {state})"
