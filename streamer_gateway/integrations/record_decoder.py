from __future__ import annotations

import struct
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from streamer_gateway.errors import ProtocolError
from streamer_gateway.integrations.float_codec import bytes_to_bits, decode_float

TERMINATOR = 65290
MARKER = 1
DEFAULT_MAX_SYMBOL_LENGTH = 5

Quote = Dict[str, Any]
QuoteBatch = Dict[str, Quote]

# code -> (field name, kind); "skip_uint" fields carry 4 reserved bytes first.
FIELD_CODES: Dict[int, tuple[str | None, str]] = {
    1: ("bid", "float"),
    2: ("ask", "float"),
    3: ("last", "float"),
    4: ("bid_size", "uint"),
    5: ("ask_size", "uint"),
    6: ("bid_exchange", "char"),
    7: ("ask_exchange", "char"),
    8: ("volume", "skip_uint"),
    9: ("last_size", "uint"),
    10: ("trade_time", "time"),
    11: ("quote_time", "time"),
    12: ("high", "float"),
    13: ("low", "float"),
    14: ("tick", "char"),
    15: ("prev_close", "float"),
    16: ("exchange", "char"),
    17: (None, "reserved"),
    18: (None, "reserved"),
    19: ("island_bid", "float"),
    20: ("island_ask", "float"),
    21: ("island_volume", "skip_uint"),
}


def _take(buffer: bytes, offset: int, width: int) -> bytes:
    end = offset + width
    if end > len(buffer):
        raise ProtocolError(f"insufficient data: need {end} bytes, have {len(buffer)}")
    return buffer[offset:end]


def _unpack(fmt: str, buffer: bytes, offset: int) -> int:
    return struct.unpack(fmt, _take(buffer, offset, struct.calcsize(fmt)))[0]


def format_time_of_day(seconds: int) -> str:
    """Render a UTC seconds value as zero-padded HH:MM:SS."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%H:%M:%S")


def _read_field(kind: str, buffer: bytes, i: int) -> tuple[Any, int]:
    if kind == "float":
        return decode_float(bytes_to_bits(_take(buffer, i, 4))), i + 4
    if kind == "uint":
        return _unpack(">I", buffer, i), i + 4
    if kind == "skip_uint":
        return _unpack(">I", buffer, i + 4), i + 8
    if kind == "char":
        return chr(_unpack(">H", buffer, i)), i + 2
    if kind == "time":
        return format_time_of_day(_unpack(">I", buffer, i)), i + 4
    raise ProtocolError(f"unsupported field kind {kind!r}")


def decode_quotes(
    buffer: bytes,
    *,
    max_symbol_length: int = DEFAULT_MAX_SYMBOL_LENGTH,
    strict_symbol_length: bool = False,
    strict_marker: bool = False,
    log_stream: Optional[TextIO] = None,
) -> QuoteBatch:
    """Decode one assembled quote message into a symbol -> quote mapping.

    Each record is: status byte, 16-bit segment size, 16-bit marker (always 1),
    one pad byte, 16-bit symbol length, symbol bytes, tagged fields, then the
    16-bit terminator. Any structural problem raises ``ProtocolError`` and no
    partial batch is returned. A symbol repeated within the buffer keeps the
    last record.
    """
    out = log_stream or sys.stderr
    batch: QuoteBatch = {}
    total = len(buffer)
    i = 0

    while i < total:
        quote: Quote = {}

        i += 1  # status
        size = _unpack(">H", buffer, i)
        i += 2

        p = i + size
        if p > total:
            raise ProtocolError(
                f"insufficient data: segment needs {p} bytes, buffer has {total}; "
                "aborting quote processing"
            )

        marker = _unpack(">H", buffer, i)
        if marker != MARKER:
            if strict_marker:
                raise ProtocolError(f"marker value should be {MARKER}, got {marker}")
            print(f"[DECODE][marker_mismatch] value={marker} action=continue", file=out, flush=True)
        i += 2

        i += 1  # pad before symbol length
        sym_len = _unpack(">H", buffer, i)
        i += 2

        if i + sym_len > p:
            raise ProtocolError(f"symbol length {sym_len} runs past segment end {p}")
        symbol = buffer[i : i + sym_len].decode("latin-1")
        i += sym_len
        if sym_len > max_symbol_length:
            if strict_symbol_length:
                raise ProtocolError(
                    f"symbol {symbol!r} longer than {max_symbol_length} characters"
                )
            print(
                f"[DECODE][symbol_oversized] symbol={symbol} length={sym_len} "
                f"max={max_symbol_length} action=continue",
                file=out,
                flush=True,
            )
        quote["symbol"] = symbol

        while i < p:
            code = buffer[i]
            i += 1

            entry = FIELD_CODES.get(code)
            if entry is None:
                raise ProtocolError(f"field code {code} is not available; aborting quote processing")
            name, kind = entry
            if kind == "reserved":
                print(f"[DECODE][reserved_field] symbol={symbol} code={code}", file=out, flush=True)
                continue
            quote[name], i = _read_field(kind, buffer, i)

        if i != p:
            raise ProtocolError(f"parity check wrong: {i} != {p}")

        term = _unpack(">H", buffer, i)
        if term != TERMINATOR:
            raise ProtocolError(f"terminator wrong: {term}")
        i += 2

        batch[symbol] = quote

    if i != total:
        raise ProtocolError(f"quote processing error: {i} != {total}")

    return batch
