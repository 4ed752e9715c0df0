"""
Declarative predicates over inbound frames
"""

from dataclasses import dataclass
from typing import List, Tuple, Type, Union

from .frames import ErrorCode, GoAway, InboundFrame, OtherFrame, StreamReset, error_code_name

SignalKind = Union[Type[StreamReset], Type[GoAway]]


@dataclass(frozen=True)
class Expectation:
    """
    A frame the SUT is required (or, when negative, forbidden) to send

    Matches a StreamReset or GoAway carrying one of the listed error codes.
    """
    signal: SignalKind
    error_codes: Tuple[int, ...]
    description: str = ""
    negative: bool = False

    def __post_init__(self):
        if self.signal not in (StreamReset, GoAway):
            raise TypeError(f"Expectations only match StreamReset or GoAway, not {self.signal!r}")
        if not self.error_codes:
            raise ValueError("Expectation needs at least one error code")
        if not self.description:
            object.__setattr__(self, 'description', self._describe())

    def _describe(self) -> str:
        scope = "stream error" if self.signal is StreamReset else "connection error"
        codes = " or ".join(error_code_name(c) for c in self.error_codes)
        prefix = "no " if self.negative else ""
        return f"{prefix}{scope} of type {codes}"

    def matches(self, frame: InboundFrame) -> bool:
        if isinstance(frame, StreamReset):
            return self.signal is StreamReset and frame.error_code in self.error_codes
        if isinstance(frame, GoAway):
            return self.signal is GoAway and frame.error_code in self.error_codes
        if isinstance(frame, OtherFrame):
            return False
        raise TypeError(f"Unexpected inbound frame type: {type(frame).__name__}")


def stream_error(*codes: ErrorCode) -> List[Expectation]:
    return [Expectation(StreamReset, tuple(codes))]


def connection_error(*codes: ErrorCode) -> List[Expectation]:
    return [Expectation(GoAway, tuple(codes))]


def stream_or_connection_error(*codes: ErrorCode) -> List[Expectation]:
    """Accept the error at either granularity, whichever the SUT sends first"""
    return stream_error(*codes) + connection_error(*codes)


def forbid_connection_error(*codes: ErrorCode) -> List[Expectation]:
    """Fail as soon as the SUT tears down the connection with one of these codes"""
    return [Expectation(GoAway, tuple(codes), negative=True)]


def forbid_stream_error(*codes: ErrorCode) -> List[Expectation]:
    return [Expectation(StreamReset, tuple(codes), negative=True)]
