"""
One adversarial HTTP/2 connection, from preface to close
"""

import ipaddress
import socket
import time
from typing import Callable, Dict, Optional

from hyperframe.frame import DataFrame, HeadersFrame, SettingsFrame
from tlslite.api import HandshakeSettings, TLSConnection
from tlslite.errors import TLSError

from .config import RunConfig
from .errors import (ConnectSetupError, ConnectionClosedError, ReadTimeoutError,
                     WriteError)
from .frames import FrameExchange, GoAway, InboundFrame, OtherFrame
from .hpack_codec import HeaderCodec, HeaderFields

CLIENT_PREFACE = b'PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n'
ALPN_H2 = bytearray(b'h2')
DEFAULT_MAX_FRAME_SIZE = 16384


class Session:
    """
    A single HTTP/2 connection owned by one case

    Holds the socket, the frame exchange, a private HPACK encoder and the
    client stream-id counter. Use as a context manager so the connection is
    closed on every exit path.
    """

    def __init__(self, sock, run_config: RunConfig, clock: Callable[[], float] = time.monotonic,
                 verbose: bool = False):
        self.sock = sock
        self.run_config = run_config
        self.clock = clock
        self.verbose = verbose
        self.exchange = FrameExchange(sock, clock=clock)
        self.codec = HeaderCodec()
        self.peer_settings: Dict[int, int] = {}
        self.closed = False
        self._next_stream_id = 1

    @classmethod
    def open(cls, run_config: RunConfig, settings_exchange: bool = True,
             clock: Callable[[], float] = time.monotonic, verbose: bool = False) -> 'Session':
        """
        Connect to the SUT and perform the HTTP/2 connection preface

        Args:
            run_config: Resolved run configuration
            settings_exchange: Also send SETTINGS and wait for the server's ACK
            clock: Monotonic clock for handshake deadlines
            verbose: Print connection trace lines

        Returns:
            Open Session

        Raises:
            ConnectSetupError: If TCP, TLS or the SETTINGS exchange fails
        """
        try:
            sock = socket.create_connection(run_config.address, timeout=run_config.timeout)
        except OSError as e:
            raise ConnectSetupError(f"cannot connect to {run_config.authority}: {e}") from e

        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            if run_config.secure:
                sock = _negotiate_tls(sock, run_config)
        except (ConnectSetupError, OSError) as e:
            sock.close()
            if isinstance(e, ConnectSetupError):
                raise
            raise ConnectSetupError(f"cannot configure socket: {e}") from e

        session = cls(sock, run_config, clock=clock, verbose=verbose)
        if verbose:
            print(f"    [Session] Connected to {run_config.authority} "
                  f"({'tls' if run_config.secure else 'plain'})")
        try:
            session.handshake(settings_exchange)
        except ConnectSetupError:
            session.close()
            raise
        return session

    def handshake(self, settings_exchange: bool = True):
        """
        Send the client preface and optionally complete the SETTINGS exchange

        Server SETTINGS frames are acknowledged and recorded while waiting for
        the ACK of ours.

        Raises:
            ConnectSetupError: On write failure, close, GOAWAY or timeout
        """
        try:
            self.exchange.send_raw(CLIENT_PREFACE)
            if not settings_exchange:
                return
            self.write_settings()

            deadline = self.clock() + self.run_config.timeout
            acked = False
            while not acked:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise ReadTimeoutError("SETTINGS ACK not received in time")
                frame = self.exchange.receive(remaining)
                if isinstance(frame, GoAway):
                    raise ConnectSetupError(f"server rejected the connection: {frame}")
                if isinstance(frame, OtherFrame) and frame.kind == 'SETTINGS':
                    if 'ACK' in frame.flags:
                        acked = True
                    else:
                        self.peer_settings.update(frame.settings)
                        self.write_settings_ack()
        except (ReadTimeoutError, ConnectionClosedError, WriteError) as e:
            raise ConnectSetupError(f"handshake failed: {e}") from e

        if self.verbose:
            print(f"    [Session] SETTINGS exchange complete (peer: {self.peer_settings})")

    @property
    def authority(self) -> str:
        return self.run_config.authority

    @property
    def scheme(self) -> str:
        return 'https' if self.run_config.secure else 'http'

    @property
    def peer_max_frame_size(self) -> int:
        return self.peer_settings.get(SettingsFrame.MAX_FRAME_SIZE, DEFAULT_MAX_FRAME_SIZE)

    def next_stream_id(self) -> int:
        """Allocate the next client-initiated (odd) stream id"""
        stream_id = self._next_stream_id
        self._next_stream_id += 2
        return stream_id

    def write_settings(self, settings: Optional[Dict[int, int]] = None):
        self.exchange.send(SettingsFrame(0, settings=settings or {}))

    def write_settings_ack(self):
        self.exchange.send(SettingsFrame(0, flags=['ACK']))

    def write_headers(self, stream_id: int, fields: HeaderFields,
                      end_stream: bool = True, end_headers: bool = True):
        """Encode fields with this session's codec and send a HEADERS frame"""
        flags = []
        if end_stream:
            flags.append('END_STREAM')
        if end_headers:
            flags.append('END_HEADERS')
        frame = HeadersFrame(stream_id, data=self.codec.encode(fields), flags=flags)
        self.exchange.send(frame)

    def write_data(self, stream_id: int, data: bytes, end_stream: bool = True):
        flags = ['END_STREAM'] if end_stream else []
        self.exchange.send(DataFrame(stream_id, data=data, flags=flags))

    def write_raw(self, data: bytes):
        self.exchange.send_raw(data)

    def receive(self, timeout: float) -> InboundFrame:
        return self.exchange.receive(timeout)

    def close(self):
        """Release the connection; further calls do nothing"""
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.close()
        except (OSError, TLSError):
            # Peer already tore the connection down
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Session {self.authority} next_stream={self._next_stream_id} [{state}]>"


def _negotiate_tls(sock: socket.socket, run_config: RunConfig) -> TLSConnection:
    """
    Wrap a connected socket in TLS and require ALPN 'h2'

    Certificates are not verified; the harness only needs an encrypted pipe.
    """
    connection = TLSConnection(sock)
    server_name = None if _is_ip_address(run_config.host) else run_config.host
    try:
        connection.handshakeClientCert(settings=HandshakeSettings(), serverName=server_name,
                                       alpn=[ALPN_H2])
    except (TLSError, OSError) as e:
        raise ConnectSetupError(f"TLS handshake with {run_config.authority} failed: {e}") from e

    negotiated = connection.session.appProto if connection.session else None
    if negotiated != ALPN_H2:
        connection.close()
        raise ConnectSetupError(f"server did not select h2 via ALPN (got {negotiated!r})")
    return connection


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True