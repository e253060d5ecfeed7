class StreamerError(Exception):
    """Base error for the streamer feed client."""


class FormatError(StreamerError, ValueError):
    pass


class ProtocolError(StreamerError, ValueError):
    """Structural corruption in a quote frame; the frame is unusable."""


class TransportError(StreamerError, ConnectionError):
    """Socket level failure: timeout, empty read or closed connection."""


class HandshakeError(TransportError):
    pass
