"""
Frame exchange over a connected socket

Wraps hyperframe so the rest of the harness only sees the handful of inbound
frame kinds that matter for verdicts.
"""

import socket
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, FrozenSet, Optional, Tuple, Union

from hyperframe.exceptions import HyperframeError
from hyperframe.frame import Frame, GoAwayFrame, RstStreamFrame, SettingsFrame
from tlslite.errors import TLSError

from .errors import ConnectionClosedError, ReadTimeoutError, WriteError

FRAME_HEADER_SIZE = 9
RECV_CHUNK_SIZE = 65535


class FrameType(IntEnum):
    """HTTP/2 frame types"""
    DATA = 0x0
    HEADERS = 0x1
    PRIORITY = 0x2
    RST_STREAM = 0x3
    SETTINGS = 0x4
    PUSH_PROMISE = 0x5
    PING = 0x6
    GOAWAY = 0x7
    WINDOW_UPDATE = 0x8
    CONTINUATION = 0x9


class ErrorCode(IntEnum):
    """HTTP/2 error codes (RFC 7540 section 7)"""
    NO_ERROR = 0x0
    PROTOCOL_ERROR = 0x1
    INTERNAL_ERROR = 0x2
    FLOW_CONTROL_ERROR = 0x3
    SETTINGS_TIMEOUT = 0x4
    STREAM_CLOSED = 0x5
    FRAME_SIZE_ERROR = 0x6
    REFUSED_STREAM = 0x7
    CANCEL = 0x8
    COMPRESSION_ERROR = 0x9
    CONNECT_ERROR = 0xa
    ENHANCE_YOUR_CALM = 0xb
    INADEQUATE_SECURITY = 0xc
    HTTP_1_1_REQUIRED = 0xd


def error_code_name(code: int) -> str:
    """Symbolic name for an error code, hex for unknown values"""
    try:
        return ErrorCode(code).name
    except ValueError:
        return f"0x{code:x}"


@dataclass(frozen=True)
class StreamReset:
    """RST_STREAM: error scoped to one stream"""
    stream_id: int
    error_code: int

    def __str__(self):
        return f"RST_STREAM(stream={self.stream_id}, {error_code_name(self.error_code)})"


@dataclass(frozen=True)
class GoAway:
    """GOAWAY: the peer is terminating the connection"""
    error_code: int
    last_stream_id: Optional[int] = None
    debug_data: bytes = b''

    def __str__(self):
        return f"GOAWAY(last_stream={self.last_stream_id}, {error_code_name(self.error_code)})"


@dataclass(frozen=True)
class OtherFrame:
    """Any frame the classifier only needs to know the kind of"""
    kind: str
    stream_id: int = 0
    flags: FrozenSet[str] = frozenset()
    # (identifier, value) pairs; only filled for SETTINGS
    settings: Tuple[Tuple[int, int], ...] = ()

    def __str__(self):
        if self.flags:
            return f"{self.kind}[{','.join(sorted(self.flags))}](stream={self.stream_id})"
        return f"{self.kind}(stream={self.stream_id})"


InboundFrame = Union[StreamReset, GoAway, OtherFrame]


def frame_kind(type_byte: int) -> str:
    try:
        return FrameType(type_byte).name
    except ValueError:
        return f"UNKNOWN_0x{type_byte:02x}"


def classify_frame(frame: Frame) -> InboundFrame:
    """
    Reduce a parsed hyperframe frame to the inbound variant

    Args:
        frame: Frame whose body has already been parsed

    Returns:
        StreamReset, GoAway or OtherFrame
    """
    if isinstance(frame, RstStreamFrame):
        return StreamReset(stream_id=frame.stream_id, error_code=frame.error_code)
    if isinstance(frame, GoAwayFrame):
        return GoAway(
            error_code=frame.error_code,
            last_stream_id=frame.last_stream_id,
            debug_data=bytes(frame.additional_data)
        )
    return OtherFrame(
        kind=frame_kind(frame.type),
        stream_id=frame.stream_id,
        flags=frozenset(frame.flags),
        settings=tuple(sorted(frame.settings.items())) if isinstance(frame, SettingsFrame) else ()
    )


class FrameExchange:
    """Send and receive HTTP/2 frames over a socket-like connection"""

    def __init__(self, sock, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            sock: Connected socket or tlslite TLSConnection
            clock: Monotonic clock used to split the read timeout across recv calls
        """
        self.sock = sock
        self.clock = clock
        self._buffer = bytearray()

    def send(self, frame: Frame):
        """Serialize and write a hyperframe frame"""
        self.send_raw(frame.serialize())

    def send_raw(self, data: bytes):
        """Write pre-encoded bytes, e.g. a deliberately malformed frame"""
        try:
            self.sock.sendall(data)
        except (OSError, TLSError) as e:
            raise WriteError(f"write failed: {e}") from e

    def receive(self, timeout: float) -> InboundFrame:
        """
        Read the next complete frame

        Args:
            timeout: Seconds to wait, relative to this call

        Returns:
            The inbound frame

        Raises:
            ReadTimeoutError: No complete frame within the timeout
            ConnectionClosedError: Peer closed or reset the connection
        """
        deadline = self.clock() + timeout

        self._fill(FRAME_HEADER_SIZE, deadline)
        header = bytes(self._buffer[:FRAME_HEADER_SIZE])
        length = int.from_bytes(header[:3], 'big')

        self._fill(FRAME_HEADER_SIZE + length, deadline)
        body = bytes(self._buffer[FRAME_HEADER_SIZE:FRAME_HEADER_SIZE + length])
        del self._buffer[:FRAME_HEADER_SIZE + length]

        return self._decode(header, body)

    def _decode(self, header: bytes, body: bytes) -> InboundFrame:
        try:
            frame, _ = Frame.parse_frame_header(memoryview(header), strict=False)
            frame.parse_body(memoryview(body))
        except HyperframeError:
            # Body did not parse; framing is still aligned so keep going
            return OtherFrame(kind=frame_kind(header[3]),
                              stream_id=int.from_bytes(header[5:9], 'big') & 0x7FFFFFFF)
        return classify_frame(frame)

    def _fill(self, size: int, deadline: float):
        while len(self._buffer) < size:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ReadTimeoutError("read deadline elapsed")
            try:
                self.sock.settimeout(remaining)
                chunk = self.sock.recv(RECV_CHUNK_SIZE)
            except socket.timeout as e:
                raise ReadTimeoutError("read deadline elapsed") from e
            except (OSError, TLSError) as e:
                raise ConnectionClosedError(f"connection lost: {e}") from e
            if not chunk:
                raise ConnectionClosedError("connection closed by peer")
            self._buffer.extend(chunk)
