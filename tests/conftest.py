import socket
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.messages import Ack, Init, Message, encode_message, parse_message


TIMEOUT = object()  # scripted reply: raise TimeoutError from recv


class FakeConnection:
    """Stands in for DatagramConnection; replies are scripted per recv call."""

    def __init__(self, replies: Optional[List[Union[bytes, Message, BaseException, object]]] = None) -> None:
        self.replies = list(replies or [])
        self.sent: List[bytes] = []
        self.peer = ("127.0.0.1", 9999)
        self.recv_calls = 0
        self.shutdown_called = False
        self.closed = False
        self.send_error: Optional[BaseException] = None
        self.short_send = False

    @property
    def sent_messages(self) -> List[Message]:
        return [parse_message(data) for data in self.sent]

    def send(self, data: bytes) -> int:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)
        return len(data) - 1 if self.short_send else len(data)

    def recv(self, deadline=None, bufsize: int = 1024) -> bytes:
        self.recv_calls += 1
        if not self.replies:
            raise TimeoutError("no scripted reply")
        reply = self.replies.pop(0)
        if reply is TIMEOUT:
            raise TimeoutError("scripted timeout")
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, bytes):
            return reply
        return encode_message(reply)

    def shutdown(self) -> None:
        self.shutdown_called = True

    def close(self) -> None:
        self.closed = True


class FakeBarServer:
    """Loopback UDP server answering Init with ``reply``; None stays silent."""

    def __init__(self) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.host, port = self.sock.getsockname()
        self.port = str(port)
        self.reply: Optional[Message] = Ack(7, 30, 2)
        self.received: List[Message] = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> "FakeBarServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()

    def wait_for(self, count: int, timeout: float = 2.0) -> List[Message]:
        end = time.monotonic() + timeout
        while len(self.received) < count and time.monotonic() < end:
            time.sleep(0.02)
        return list(self.received)

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            message = parse_message(data)
            self.received.append(message)
            if isinstance(message, Init) and self.reply is not None:
                self.sock.sendto(encode_message(self.reply), addr)


@pytest.fixture
def fake_server():
    server = FakeBarServer().start()
    try:
        yield server
    finally:
        server.stop()


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """No BARTENDER_* settings leak in from the developer's environment."""
    for key in ("BARTENDER_HOST", "BARTENDER_PORT", "BARTENDER_RETRIES", "BARTENDER_TIMEOUT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BARTENDER_CONFIG", str(tmp_path / "absent.yaml"))
    return tmp_path
