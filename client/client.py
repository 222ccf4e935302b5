#!/usr/bin/env python3
"""
BarTender Status Client

Registers a named client with the status bar server over UDP, then keeps the
session alive and pushes status updates:

    with run_client("cpu") as ctx:
        if connect_client(ctx, ConnectionOptions(host="bar.local")):
            touch_client(ctx)
            update_client(ctx, "cpu: 12%")

Failures are never raised to the caller. Each operation returns whether it
succeeded, logs the failure and records it on ``ctx.last_error``.
"""

from __future__ import annotations
import socket
from typing import Callable, Optional

from client.state import ClientContext, ServerSession, run_client
from shared.config import DEFAULT_CONNECTION_OPTIONS, ConnectionOptions
from shared.errors import (
    AttemptFault,
    AttemptTimeout,
    BarClientError,
    HandshakeExhausted,
    NotConnected,
    ProtocolMismatch,
    SendFailure,
)
from shared.log import get_logger, log_protocol_message
from shared.messages import DEFAULT_CODEC, Ack, Alive, Init, Message, MessageCodec, Unknown, Update
from shared.retry import Deadline, attempt
from shared.transport import DatagramConnection
from shared.utils import format_hostport

logger = get_logger(__name__)

ConnectionOpener = Callable[[str, str], DatagramConnection]

__all__ = [
    "ConnectionOptions",
    "DEFAULT_CONNECTION_OPTIONS",
    "connect_client",
    "run_client",
    "touch_client",
    "update_client",
]


def connect_client(
    ctx: ClientContext,
    options: Optional[ConnectionOptions] = None,
    *,
    codec: MessageCodec = DEFAULT_CODEC,
    open_connection: ConnectionOpener = DatagramConnection.open,
) -> bool:
    """
    Run the Init/Ack handshake and store the resulting session on ``ctx``.

    Any session already held by ``ctx`` is replaced, and closed, whatever
    the outcome. Takes at most ``retries * timeout`` seconds once the socket
    is open.

    Returns:
        True when the server acknowledged the client, False otherwise
    """
    options = options or DEFAULT_CONNECTION_OPTIONS
    ctx.options = options
    session: Optional[ServerSession] = None
    try:
        session = _handshake(ctx, options, codec, open_connection)
    except BarClientError as e:
        _report(ctx, e, peer=format_hostport(options.host, options.port))
    else:
        ctx.last_error = None
    finally:
        previous, ctx.session = ctx.session, session
        if previous is not None:
            previous.close()
    return session is not None


def _handshake(
    ctx: ClientContext,
    options: ConnectionOptions,
    codec: MessageCodec,
    open_connection: ConnectionOpener,
) -> ServerSession:
    peer = format_hostport(options.host, options.port)
    logger.debug("Opening connection", extra={"client": ctx.name, "peer": peer})
    conn = open_connection(options.host, options.port)

    def send_init(deadline: Deadline) -> Message:
        init = Init(ctx.name)
        log_protocol_message(logger, "debug", "Sending init message", init, client=ctx.name, peer=peer)
        try:
            payload = codec.encode(init)
        except Exception as e:
            raise AttemptFault(f"Cannot encode {init}: {e}") from e
        try:
            conn.send(payload)
            data = conn.recv(deadline)
        except (TimeoutError, socket.timeout) as e:
            raise AttemptTimeout(f"No reply from {peer} within {options.timeout}s") from e
        except OSError as e:
            raise AttemptFault(f"Transport fault talking to {peer}: {e}") from e
        reply = _decode(codec, data)
        log_protocol_message(logger, "debug", f"Received from server: {reply}", reply, client=ctx.name, peer=peer)
        return reply

    try:
        reply = attempt(options.timeout, options.retries, send_init, retry_on=(AttemptTimeout, AttemptFault))
    except BaseException:
        conn.close()
        raise

    if reply is None:
        conn.close()
        raise HandshakeExhausted(
            f"No acknowledgment from {peer} after {options.retries} attempt(s) of {options.timeout}s"
        )

    if not isinstance(reply, Ack):
        conn.shutdown()
        conn.close()
        raise ProtocolMismatch(f"Server did not respond with Ack; response: {reply}")

    session = ServerSession(
        connection=conn,
        session_id=reply.session_id,
        heartbeat_interval=reply.heartbeat_interval,
        protocol_version=reply.version,
    )
    log_protocol_message(
        logger, "info",
        f"Session established (heartbeat every {session.heartbeat_interval}s, protocol v{session.protocol_version})",
        reply, client=ctx.name, peer=peer,
    )
    return session


def _decode(codec: MessageCodec, data: bytes) -> Message:
    # A codec that raises is treated the same as a reply that is not an Ack
    try:
        return codec.decode(data)
    except Exception as e:
        return Unknown(data, f"Decode failed: {e}")


def touch_client(ctx: ClientContext, *, codec: MessageCodec = DEFAULT_CODEC) -> bool:
    """Send an Alive heartbeat for the current session."""
    return _send(ctx, lambda session: Alive(session.session_id), codec)


def update_client(ctx: ClientContext, content: str, *, codec: MessageCodec = DEFAULT_CODEC) -> bool:
    """Push ``content`` as the client's status; the payload is passed through as-is."""
    return _send(ctx, lambda session: Update(session.session_id, content), codec)


def _send(ctx: ClientContext, build: Callable[[ServerSession], Message], codec: MessageCodec) -> bool:
    session = ctx.session
    if session is None:
        _report(ctx, NotConnected("Connection is closed"))
        return False

    message = build(session)
    try:
        data = codec.encode(message)
    except Exception as e:
        _report(ctx, SendFailure(f"Cannot encode {message.TYPE.value}: {e}"), session_id=session.session_id)
        return False
    try:
        sent = session.connection.send(data)
    except OSError as e:
        _report(ctx, SendFailure(f"Failed to send {message.TYPE.value}: {e}"), session_id=session.session_id)
        return False
    if sent != len(data):
        _report(
            ctx,
            SendFailure(f"Short send of {message.TYPE.value}: {sent}/{len(data)} bytes"),
            session_id=session.session_id,
        )
        return False

    ctx.last_error = None
    log_protocol_message(logger, "debug", "Sent", message, client=ctx.name)
    return True


def _report(ctx: ClientContext, error: BarClientError, **context: object) -> None:
    ctx.last_error = error
    logger.error(f"{type(error).__name__}: {error}", extra={"client": ctx.name, **context})
