from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from shared.config import ConnectionOptions
from shared.errors import BarClientError
from shared.transport import DatagramConnection


@dataclass(frozen=True)
class ClientIdentity:
    name: str


@dataclass
class ServerSession:
    """An acknowledged session; owns the connection it was negotiated on."""

    connection: DatagramConnection
    session_id: int
    heartbeat_interval: int  # seconds
    protocol_version: int

    def close(self) -> None:
        self.connection.shutdown()
        self.connection.close()


@dataclass
class ClientContext:
    """
    Mutable client state threaded through every client operation.

    ``session`` stays None until a handshake receives an Ack. Not safe for
    concurrent use; callers sharing a context must lock around operations.
    """

    identity: ClientIdentity
    session: Optional[ServerSession] = None
    options: Optional[ConnectionOptions] = None  # options of the last handshake
    last_error: Optional[BarClientError] = None

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def connected(self) -> bool:
        return self.session is not None

    def close(self) -> None:
        """Release the held session, if any."""
        session, self.session = self.session, None
        if session is not None:
            session.close()

    def __enter__(self) -> "ClientContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@contextmanager
def run_client(name: str) -> Iterator[ClientContext]:
    """
    Create a fresh context for client ``name``; its session is closed on exit.

    Example:
        with run_client("cpu") as ctx:
            if connect_client(ctx):
                update_client(ctx, "cpu: 12%")
    """
    with ClientContext(ClientIdentity(name)) as ctx:
        yield ctx
