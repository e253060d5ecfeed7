from __future__ import annotations

import socket
import sys
import time
from enum import Enum
from typing import Any, Callable, Optional, TextIO

from streamer_gateway.config.settings import StreamerConfig
from streamer_gateway.errors import HandshakeError, ProtocolError, TransportError
from streamer_gateway.integrations.frame_assembler import FrameAssembler
from streamer_gateway.integrations.record_decoder import decode_quotes

STATUS_QUOTE = 83
STATUS_HEARTBEAT = 72
STATUS_AUTH_FAILED = 68  # never actually sent; bad credentials just yield silence


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    HANDSHAKING = "HANDSHAKING"
    STREAMING = "STREAMING"


class StreamerClient:
    """Streamer feed client: handshake, frame receive loop and reconnect."""

    def __init__(
        self,
        config: StreamerConfig,
        on_quotes: Optional[Callable[[Any], None]] = None,
        *,
        on_heartbeat: Optional[Callable[[int], None]] = None,
        on_state_change: Optional[Callable[..., None]] = None,
        socket_factory: Optional[Callable[..., Any]] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        log_stream: Optional[TextIO] = None,
    ) -> None:
        self.config = config
        self._on_quotes = on_quotes
        self._on_heartbeat = on_heartbeat
        self._on_state_change = on_state_change
        self._socket_factory = socket_factory or socket.create_connection
        self._sleep_fn = sleep_fn
        self._clock = clock
        self._log_stream = log_stream
        self._assembler = FrameAssembler(recv_max=config.recv_max)
        self._sock: Any = None

        self.running = False
        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.reconnect_count = 0
        self.batches_received = 0
        self.last_heartbeat_ts: int | None = None

    def _log(self, event: str, message: str = "") -> None:
        out = self._log_stream or sys.stderr
        line = f"[FEED][{event}] ts={int(self._clock())}"
        if message:
            line = f"{line} {message}"
        print(line, file=out, flush=True)

    def _emit_state(self, *, connected: bool, heartbeat_ts: int | None = None) -> None:
        if self._on_state_change is None:
            return
        self._on_state_change(
            connected=connected,
            reconnect_count=self.reconnect_count,
            last_error=self.last_error,
            heartbeat_ts=heartbeat_ts,
        )

    def stop(self) -> None:
        self.running = False
        sock = self._sock
        if sock is not None:
            # unblocks a pending recv in the worker thread
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        self._emit_state(connected=False)

    def build_handshake_message(self) -> str:
        cfg = self.config
        # exact bytes matter: the server only pattern-matches this request
        return (
            f"GET /!U={cfg.user}&W={cfg.password}|S=QUOTE&C=SUBS&P={cfg.symbols_param}"
            f"&T={cfg.fields_param}"
            " HTTP/1.1\n"
            "Accept-Language: en\n"
            "Connection: Keep-Alive\n"
            f"User-agent: {cfg.agent}\n"
            f"Host: {cfg.host}\n\n"
        )

    def connect(self) -> Any:
        cfg = self.config
        self.state = ConnectionState.CONNECTING
        try:
            sock = self._socket_factory((cfg.host, cfg.port), cfg.timeout_sec)
        except OSError as exc:
            raise TransportError(f"connect to {cfg.host}:{cfg.port} failed: {exc}") from exc

        self.state = ConnectionState.HANDSHAKING
        try:
            sock.settimeout(cfg.timeout_sec)
            sock.sendall(self.build_handshake_message().encode("latin-1"))
            reply = sock.recv(cfg.handshake_recv_max)
        except OSError as exc:
            sock.close()
            raise HandshakeError(f"handshake failed: {exc}") from exc
        if not reply:
            sock.close()
            raise HandshakeError("handshake failed: empty reply")

        self._log("connect_ok", f"host={cfg.host} port={cfg.port} symbols={cfg.symbols_param}")
        return sock

    def _recv(self, sock: Any) -> bytes:
        try:
            chunk = sock.recv(self.config.recv_max)
        except socket.timeout as exc:
            raise TransportError(f"no data within {self.config.timeout_sec}s") from exc
        except OSError as exc:
            raise TransportError(f"read failed: {exc}") from exc
        if not chunk:
            raise TransportError("connection closed by server")
        return chunk

    def _dispatch_frame(self, frame: bytes) -> Any:
        cfg = self.config
        if cfg.deliver_raw:
            payload: Any = frame
        else:
            payload = decode_quotes(
                frame,
                max_symbol_length=cfg.max_symbol_length,
                strict_symbol_length=cfg.strict_symbol_length,
                strict_marker=cfg.strict_marker,
                log_stream=self._log_stream,
            )
        self.batches_received += 1
        if self._on_quotes is not None:
            self._on_quotes(payload)
        return payload

    def handle_chunk(self, sock: Any, chunk: bytes) -> int:
        """Classify a freshly read chunk by its status byte and act on it."""
        status = chunk[0]
        if status == STATUS_QUOTE:
            frame = self._assembler.assemble(sock, chunk)
            self._dispatch_frame(frame)
        elif status == STATUS_HEARTBEAT:
            self.last_heartbeat_ts = int(self._clock())
            if self._on_heartbeat is not None:
                self._on_heartbeat(self.last_heartbeat_ts)
        else:
            # common on this feed, not an error
            self._log("unknown_status", f"status={status} bytes={len(chunk)}")
        return status

    def stream(self, sock: Any) -> None:
        self.state = ConnectionState.STREAMING
        self.last_error = None
        self._emit_state(connected=True, heartbeat_ts=int(self._clock()))
        while self.running:
            chunk = self._recv(sock)
            self.handle_chunk(sock, chunk)

    def run_once(self) -> None:
        """One session: connect, handshake and stream until failure or stop."""
        sock = self.connect()
        self._sock = sock
        try:
            self.stream(sock)
        finally:
            self._sock = None
            sock.close()
            self.state = ConnectionState.DISCONNECTED

    def _backoff_delay(self, failures: int) -> float:
        cfg = self.config
        if cfg.retry_backoff_base_sec <= 0:
            return 0.0
        return min(cfg.retry_backoff_base_sec * (2 ** (failures - 1)), cfg.retry_backoff_cap_sec)

    def run_with_reconnect(self) -> bool:
        """Reconnect forever (or up to max_retries).

        Returns True when stopped via ``stop()``, False when retries run out.
        """
        max_retries = self.config.max_retries

        self.running = True
        self.last_error = None
        self.reconnect_count = 0
        self._emit_state(connected=False)

        failures = 0
        while self.running:
            delivered = self.batches_received
            try:
                self.run_once()
            except (TransportError, ProtocolError, OSError) as exc:
                if not self.running:
                    break
                self.last_error = str(exc)
                kind = "frame_error" if isinstance(exc, ProtocolError) else "session_error"
                self._log(kind, f"error={self.last_error} action=reconnect")

                if self.batches_received > delivered:
                    failures = 0
                failures += 1
                self.reconnect_count += 1
                self._emit_state(connected=False)

                if max_retries is not None and failures >= max_retries:
                    self._log("retry_exhausted", f"failures={failures}")
                    self.running = False
                    return False

                delay = self._backoff_delay(failures)
                if delay > 0:
                    self._sleep_fn(delay)

        self._log("stopped", f"reconnect_count={self.reconnect_count}")
        return True
