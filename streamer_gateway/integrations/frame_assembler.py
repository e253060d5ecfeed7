from __future__ import annotations

import socket
from typing import Any

from streamer_gateway.errors import TransportError
from streamer_gateway.integrations.record_decoder import TERMINATOR

TERMINATOR_BYTES = TERMINATOR.to_bytes(2, "big")


def is_complete(buffer: bytes) -> bool:
    return len(buffer) >= 2 and buffer[-2:] == TERMINATOR_BYTES


class FrameAssembler:
    """Keeps reading until the buffered message ends with the terminator.

    Segment sizes are not interpreted, so a terminator value that happens to
    sit at the end of a partial read completes the message early.
    """

    def __init__(self, recv_max: int = 3000) -> None:
        self.recv_max = recv_max
        self.continuation_reads = 0

    def assemble(self, sock: Any, initial: bytes) -> bytes:
        buffer = bytearray(initial)
        while not is_complete(buffer):
            try:
                chunk = sock.recv(self.recv_max)
            except socket.timeout as exc:
                raise TransportError("timeout waiting for frame continuation") from exc
            except OSError as exc:
                raise TransportError(f"frame continuation read failed: {exc}") from exc
            if not chunk:
                raise TransportError("connection closed during frame continuation")
            self.continuation_reads += 1
            buffer.extend(chunk)
        return bytes(buffer)
