import time

import pytest

from conftest import TIMEOUT, FakeConnection
from client.client import connect_client
from client.state import ClientContext, ClientIdentity, ServerSession
from shared.config import ConnectionOptions
from shared.errors import HandshakeExhausted, ProtocolMismatch, ResolutionFailure, SocketOpenFailure
from shared.messages import Ack, Alive, Init, Update


def make_ctx(name="cpu"):
    return ClientContext(ClientIdentity(name))


def opener_for(conn):
    calls = []

    def open_connection(host, port):
        calls.append((host, port))
        return conn

    open_connection.calls = calls
    return open_connection


def test_ack_establishes_session():
    ctx = make_ctx()
    conn = FakeConnection([Ack(7, 30, 2)])

    assert connect_client(ctx, ConnectionOptions(), open_connection=opener_for(conn)) is True

    session = ctx.session
    assert isinstance(session, ServerSession)
    assert session.session_id == 7
    assert session.heartbeat_interval == 30
    assert session.protocol_version == 2
    assert session.connection is conn
    assert conn.closed is False
    assert conn.sent_messages == [Init("cpu")]
    assert ctx.last_error is None


def test_handshake_uses_configured_address_and_records_options():
    ctx = make_ctx()
    conn = FakeConnection([Ack(1, 5, 1)])
    opener = opener_for(conn)
    options = ConnectionOptions(host="bar.example", port="4242", retries=1, timeout=2)

    connect_client(ctx, options, open_connection=opener)

    assert opener.calls == [("bar.example", "4242")]
    assert ctx.options is options


def test_defaults_used_when_options_omitted():
    ctx = make_ctx()
    opener = opener_for(FakeConnection([Ack(1, 5, 1)]))

    connect_client(ctx, open_connection=opener)

    assert opener.calls == [("localhost", "9999")]
    assert ctx.options == ConnectionOptions(host="localhost", port="9999", retries=3, timeout=60)


@pytest.mark.parametrize("reply", [
    Alive(7),
    Update(7, "hi"),
    Init("server?"),
    b"not json at all",
    b'{"type":"ACK","payload":{"session_id":"7","heartbeat_interval":30,"version":2}}',
])
def test_non_ack_reply_is_rejected_without_retry(reply):
    ctx = make_ctx()
    conn = FakeConnection([reply, Ack(7, 30, 2)])

    assert connect_client(ctx, ConnectionOptions(retries=3), open_connection=opener_for(conn)) is False

    assert ctx.session is None
    assert isinstance(ctx.last_error, ProtocolMismatch)
    assert conn.shutdown_called is True
    assert conn.closed is True
    assert len(conn.sent) == 1
    assert conn.recv_calls == 1


def test_every_attempt_timing_out_exhausts_handshake():
    ctx = make_ctx()
    conn = FakeConnection([TIMEOUT, TIMEOUT, TIMEOUT, Ack(7, 30, 2)])

    assert connect_client(ctx, ConnectionOptions(retries=3), open_connection=opener_for(conn)) is False

    assert ctx.session is None
    assert isinstance(ctx.last_error, HandshakeExhausted)
    assert len(conn.sent) == 3
    # Exhaustion releases the socket too
    assert conn.closed is True


def test_transport_faults_are_retried():
    ctx = make_ctx()
    conn = FakeConnection([ConnectionRefusedError("port unreachable"), TIMEOUT, Ack(9, 10, 1)])

    assert connect_client(ctx, ConnectionOptions(retries=3), open_connection=opener_for(conn)) is True

    assert ctx.session.session_id == 9
    assert len(conn.sent) == 3


def test_send_fault_counts_as_failed_attempt():
    ctx = make_ctx()
    conn = FakeConnection([Ack(9, 10, 1)])
    conn.send_error = OSError("network unreachable")

    assert connect_client(ctx, ConnectionOptions(retries=2), open_connection=opener_for(conn)) is False

    assert isinstance(ctx.last_error, HandshakeExhausted)
    assert conn.recv_calls == 0


def test_zero_retries_sends_nothing():
    ctx = make_ctx()
    conn = FakeConnection([Ack(7, 30, 2)])

    assert connect_client(ctx, ConnectionOptions(retries=0), open_connection=opener_for(conn)) is False

    assert conn.sent == []
    assert isinstance(ctx.last_error, HandshakeExhausted)


@pytest.mark.parametrize("error", [ResolutionFailure("no such host"), SocketOpenFailure("no sockets")])
def test_open_failures_abort_handshake(error):
    ctx = make_ctx()

    def open_connection(host, port):
        raise error

    assert connect_client(ctx, open_connection=open_connection) is False
    assert ctx.session is None
    assert ctx.last_error is error


def test_raising_codec_is_treated_as_mismatch():
    class BrokenCodec:
        def encode(self, message):
            return b"init"

        def decode(self, data):
            raise ValueError("cannot decode")

    ctx = make_ctx()
    conn = FakeConnection([b"whatever"])

    assert connect_client(ctx, open_connection=opener_for(conn), codec=BrokenCodec()) is False
    assert isinstance(ctx.last_error, ProtocolMismatch)
    assert conn.closed is True


def test_new_handshake_replaces_previous_session():
    ctx = make_ctx()
    first = FakeConnection([Ack(1, 30, 2)])
    second = FakeConnection([Ack(2, 30, 2)])
    connect_client(ctx, open_connection=opener_for(first))

    assert connect_client(ctx, open_connection=opener_for(second)) is True

    assert ctx.session.session_id == 2
    assert first.closed is True
    assert second.closed is False


def test_failed_rehandshake_leaves_no_session():
    ctx = make_ctx()
    first = FakeConnection([Ack(1, 30, 2)])
    connect_client(ctx, open_connection=opener_for(first))

    rejected = FakeConnection([b"garbage"])
    assert connect_client(ctx, open_connection=opener_for(rejected)) is False

    assert ctx.session is None
    assert first.closed is True


def test_success_clears_previous_error():
    ctx = make_ctx()
    connect_client(ctx, ConnectionOptions(retries=0), open_connection=opener_for(FakeConnection()))
    assert ctx.last_error is not None

    connect_client(ctx, open_connection=opener_for(FakeConnection([Ack(3, 30, 2)])))

    assert ctx.last_error is None


def test_handshake_against_udp_server(fake_server):
    ctx = make_ctx("battery")
    options = ConnectionOptions(host=fake_server.host, port=fake_server.port, retries=2, timeout=2)

    try:
        assert connect_client(ctx, options) is True
        assert ctx.session.session_id == 7
        assert fake_server.wait_for(1) == [Init("battery")]
    finally:
        ctx.close()


def test_silent_server_times_out_within_budget(fake_server):
    fake_server.reply = None
    ctx = make_ctx()
    options = ConnectionOptions(host=fake_server.host, port=fake_server.port, retries=2, timeout=1)

    started = time.monotonic()
    assert connect_client(ctx, options) is False
    elapsed = time.monotonic() - started

    assert ctx.session is None
    assert isinstance(ctx.last_error, HandshakeExhausted)
    assert elapsed < 2 + 1.0
    assert len(fake_server.wait_for(2)) == 2


def test_rejecting_server(fake_server):
    fake_server.reply = Alive(3)
    ctx = make_ctx()
    options = ConnectionOptions(host=fake_server.host, port=fake_server.port, retries=3, timeout=2)

    assert connect_client(ctx, options) is False
    assert isinstance(ctx.last_error, ProtocolMismatch)
    assert fake_server.wait_for(1) == [Init("cpu")]


def test_deeply_nested_reply_is_rejected_not_raised():
    ctx = make_ctx()
    conn = FakeConnection([b"[" * 100_000])

    assert connect_client(ctx, open_connection=opener_for(conn)) is False

    assert ctx.session is None
    assert isinstance(ctx.last_error, ProtocolMismatch)
    assert conn.closed is True


def test_codec_raising_anything_on_decode_is_a_mismatch():
    class RecursiveCodec:
        def encode(self, message):
            return b"init"

        def decode(self, data):
            raise RecursionError("too deep")

    ctx = make_ctx()
    conn = FakeConnection([b"whatever"])

    assert connect_client(ctx, open_connection=opener_for(conn), codec=RecursiveCodec()) is False
    assert isinstance(ctx.last_error, ProtocolMismatch)


def test_codec_failing_to_encode_init_exhausts_handshake():
    class NoEncodeCodec:
        def encode(self, message):
            raise KeyError("no encoder")

        def decode(self, data):
            return Ack(7, 30, 2)

    ctx = make_ctx()
    conn = FakeConnection([Ack(7, 30, 2)])

    assert connect_client(ctx, ConnectionOptions(retries=2), open_connection=opener_for(conn),
                          codec=NoEncodeCodec()) is False

    assert isinstance(ctx.last_error, HandshakeExhausted)
    assert conn.sent == []
    assert conn.closed is True
