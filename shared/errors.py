from __future__ import annotations


class BarClientError(Exception):
    """Base class for every failure the status client reports."""
    pass


class ConfigError(BarClientError):
    """Raised when connection options or the config file are invalid."""
    pass


class ResolutionFailure(BarClientError):
    """Host/port could not be resolved to a datagram endpoint."""
    pass


class SocketOpenFailure(BarClientError):
    """The datagram socket could not be created or connected."""
    pass


class AttemptTimeout(BarClientError):
    """A single handshake attempt did not complete before its deadline."""
    pass


class AttemptFault(BarClientError):
    """A single handshake attempt raised a transport fault."""
    pass


class HandshakeExhausted(BarClientError):
    """Every handshake attempt timed out or faulted."""
    pass


class ProtocolMismatch(BarClientError):
    """The server answered the handshake with something other than an Ack."""
    pass


class NotConnected(BarClientError):
    """Heartbeat or update invoked without an established session."""
    pass


class SendFailure(BarClientError):
    """A heartbeat or update could not be sent over the session connection."""
    pass
