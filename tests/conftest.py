import socket
import threading

import pytest
from hyperframe.exceptions import HyperframeError
from hyperframe.frame import Frame, SettingsFrame

from h2_conformance_framework.config import RunConfig
from h2_conformance_framework.errors import ReadTimeoutError
from h2_conformance_framework.session import CLIENT_PREFACE

CLOSE = object()


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ScriptedSession:
    """
    Session stand-in that replays (delay, frame-or-exception) events

    A delay longer than the requested timeout consumes the timeout on the
    fake clock and raises ReadTimeoutError, keeping the rest of the delay.
    """

    def __init__(self, clock, events=(), scheme='http', authority='sut.test:80',
                 peer_max_frame_size=16384):
        self.clock = clock
        self.events = list(events)
        self.scheme = scheme
        self.authority = authority
        self.peer_max_frame_size = peer_max_frame_size
        self.closed = False
        self.close_calls = 0
        self.timeouts = []
        self.writes = []
        self._next_stream_id = 1

    def next_stream_id(self):
        stream_id = self._next_stream_id
        self._next_stream_id += 2
        return stream_id

    def write_settings(self, settings=None):
        self.writes.append(('SETTINGS', dict(settings or {})))

    def write_headers(self, stream_id, fields, end_stream=True, end_headers=True):
        self.writes.append(('HEADERS', stream_id, list(fields), end_stream, end_headers))

    def write_data(self, stream_id, data, end_stream=True):
        self.writes.append(('DATA', stream_id, data, end_stream))

    def write_raw(self, data):
        self.writes.append(('RAW', data))

    def receive(self, timeout):
        self.timeouts.append(timeout)
        if not self.events:
            self.clock.advance(timeout)
            raise ReadTimeoutError("idle")
        delay, item = self.events[0]
        if delay > timeout:
            self.clock.advance(timeout)
            self.events[0] = (delay - timeout, item)
            raise ReadTimeoutError("idle")
        self.events.pop(0)
        self.clock.advance(delay)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.close_calls += 1
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def recv_exact(conn, size):
    data = b''
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            raise EOFError("peer closed")
        data += chunk
    return data


class FakeH2Server:
    """
    Minimal HTTP/2 peer on a loopback port

    Answers the preface with SETTINGS, acknowledges client SETTINGS (or sends
    settings_reply instead) and hands every other frame to on_frame, which
    returns bytes to send, None, or CLOSE.
    """

    def __init__(self, on_frame=None, settings=None, settings_reply=None):
        self.on_frame = on_frame or (lambda frame: None)
        self.settings = settings or {}
        # Sent in answer to client SETTINGS; None means a plain ACK
        self.settings_reply = settings_reply
        self.received = []
        self.connections = 0
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind(('127.0.0.1', 0))
        self.listener.listen(8)
        self.port = self.listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def run_config(self, timeout=1.0, **kwargs):
        return RunConfig(host='127.0.0.1', port=self.port, timeout=timeout, **kwargs)

    def _serve(self):
        while True:
            try:
                conn, _ = self.listener.accept()
            except OSError:
                return
            self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        with conn:
            conn.settimeout(5)
            try:
                if recv_exact(conn, len(CLIENT_PREFACE)) != CLIENT_PREFACE:
                    return
                conn.sendall(SettingsFrame(0, settings=self.settings).serialize())
                while True:
                    header = recv_exact(conn, 9)
                    frame, length = Frame.parse_frame_header(memoryview(header))
                    frame.parse_body(memoryview(recv_exact(conn, length)))
                    self.received.append(frame)
                    if isinstance(frame, SettingsFrame):
                        if 'ACK' not in frame.flags:
                            reply = self.settings_reply
                            if reply is None:
                                reply = SettingsFrame(0, flags=['ACK']).serialize()
                            conn.sendall(reply)
                        continue
                    reply = self.on_frame(frame)
                    if reply is CLOSE:
                        return
                    if reply:
                        conn.sendall(reply)
            except (OSError, EOFError, HyperframeError):
                return

    def close(self):
        self.listener.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def run_config():
    return RunConfig(host='sut.test', port=80, timeout=1.0)


@pytest.fixture
def fake_server():
    servers = []

    def start(on_frame=None, **kwargs):
        server = FakeH2Server(on_frame, **kwargs)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


@pytest.fixture
def unused_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
