"""
Exception taxonomy for the HTTP/2 conformance harness
"""


class HarnessError(Exception):
    """Base class for every error raised by the harness"""
    pass


class ConfigError(HarnessError):
    """Malformed or missing run configuration (aborts the run)"""
    pass


class ConnectSetupError(HarnessError):
    """Transport, TLS or SETTINGS exchange failed before the case could run"""
    pass


class WriteError(HarnessError):
    """Writing a crafted frame to the SUT failed"""
    pass


class CodecError(HarnessError):
    """The header codec could not encode the requested field list"""
    pass


class ReadTimeoutError(HarnessError):
    """No complete frame arrived before the read deadline"""
    pass


class ConnectionClosedError(HarnessError):
    """The peer closed or reset the connection"""
    pass
