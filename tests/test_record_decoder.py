import io
import struct
import unittest

from streamer_gateway.errors import ProtocolError
from streamer_gateway.integrations.record_decoder import FIELD_CODES, decode_quotes

_TERMINATOR = b"\xff\x0a"


def _field(code, value):
    _, kind = FIELD_CODES[code]
    if kind == "float":
        return bytes([code]) + struct.pack(">f", value)
    if kind in ("uint", "time"):
        return bytes([code]) + struct.pack(">I", value)
    if kind == "skip_uint":
        return bytes([code]) + b"\x00" * 4 + struct.pack(">I", value)
    if kind == "char":
        return bytes([code]) + struct.pack(">H", ord(value))
    return bytes([code])


def _record(symbol, fields, *, status=83, marker=1, terminator=_TERMINATOR, size_delta=0):
    sym = symbol.encode("latin-1")
    body = b"".join(_field(code, value) for code, value in fields)
    segment = struct.pack(">H", marker) + b"\x00" + struct.pack(">H", len(sym)) + sym + body
    return bytes([status]) + struct.pack(">H", len(segment) + size_delta) + segment + terminator


class TestRecordDecoder(unittest.TestCase):
    def setUp(self):
        self.log = io.StringIO()

    def decode(self, buffer, **kwargs):
        return decode_quotes(buffer, log_stream=self.log, **kwargs)

    def test_two_symbols_with_bid_and_ask(self):
        buffer = _record("QCOM", [(1, 45.5), (2, 45.75)]) + _record("IBM", [(1, 120.25), (2, 120.5)])

        batch = self.decode(buffer)

        self.assertEqual(list(batch), ["QCOM", "IBM"])
        self.assertEqual(batch["QCOM"], {"symbol": "QCOM", "bid": 45.5, "ask": 45.75})
        self.assertEqual(batch["IBM"], {"symbol": "IBM", "bid": 120.25, "ask": 120.5})
        self.assertEqual(self.log.getvalue(), "")

    def test_every_field_code_decodes_to_its_value(self):
        fields = [
            (1, 10.5), (2, 10.75), (3, 10.625), (4, 200), (5, 300), (6, "Q"), (7, "P"),
            (8, 1234567), (9, 100), (10, 34200), (11, 57599), (12, 11.0), (13, 9.5),
            (14, "U"), (15, 10.25), (16, "q"), (17, None), (18, None), (19, 10.5),
            (20, 10.875), (21, 98765),
        ]

        quote = self.decode(_record("JDSU", fields))["JDSU"]

        self.assertEqual(
            quote,
            {
                "symbol": "JDSU",
                "bid": 10.5,
                "ask": 10.75,
                "last": 10.625,
                "bid_size": 200,
                "ask_size": 300,
                "bid_exchange": "Q",
                "ask_exchange": "P",
                "volume": 1234567,
                "last_size": 100,
                "trade_time": "09:30:00",
                "quote_time": "15:59:59",
                "high": 11.0,
                "low": 9.5,
                "tick": "U",
                "prev_close": 10.25,
                "exchange": "q",
                "island_bid": 10.5,
                "island_ask": 10.875,
                "island_volume": 98765,
            },
        )
        self.assertIn("[DECODE][reserved_field] symbol=JDSU code=17", self.log.getvalue())

    def test_time_fields_wrap_at_day_boundary(self):
        quote = self.decode(_record("AMAT", [(10, 86400 + 3661)]))["AMAT"]
        self.assertEqual(quote["trade_time"], "01:01:01")

    def test_symbol_only_record(self):
        self.assertEqual(self.decode(_record("IBM", [])), {"IBM": {"symbol": "IBM"}})

    def test_empty_buffer_yields_empty_batch(self):
        self.assertEqual(self.decode(b""), {})

    def test_repeated_symbol_keeps_last_record(self):
        buffer = _record("IBM", [(1, 1.0)]) + _record("IBM", [(2, 2.0)])
        self.assertEqual(self.decode(buffer), {"IBM": {"symbol": "IBM", "ask": 2.0}})

    def test_declared_size_past_buffer_is_fatal(self):
        with self.assertRaisesRegex(ProtocolError, "insufficient data"):
            self.decode(_record("IBM", [(1, 1.0)], size_delta=50))

    def test_unknown_field_code_is_fatal(self):
        buffer = _record("IBM", [(1, 1.0)]) + _record("QCOM", [(1, 1.0)])
        corrupt = bytearray(buffer)
        corrupt[11] = 22  # field code slot of the first record
        with self.assertRaisesRegex(ProtocolError, "field code 22"):
            self.decode(bytes(corrupt))

    def test_bad_terminator_is_fatal(self):
        with self.assertRaisesRegex(ProtocolError, "terminator wrong: 65291"):
            self.decode(_record("IBM", [(1, 1.0)], terminator=b"\xff\x0b"))

    def test_field_overrunning_segment_fails_parity(self):
        # declared size stops one byte into the bid value
        buffer = _record("IBM", [(1, 1.0)], size_delta=-3) + b"\x00" * 3
        with self.assertRaises(ProtocolError):
            self.decode(buffer)

    def test_truncated_terminator_is_fatal(self):
        buffer = _record("IBM", [(1, 1.0)])[:-1]
        with self.assertRaisesRegex(ProtocolError, "insufficient data"):
            self.decode(buffer)

    def test_truncated_float_field_is_fatal(self):
        # segment ends inside the buffer but the bid value runs past it
        buffer = _record("IBM", [(1, 1.0)], size_delta=-3, terminator=b"")[:-3]
        with self.assertRaisesRegex(ProtocolError, "insufficient data: need 16 bytes, have 13"):
            self.decode(buffer)

    def test_truncated_volume_field_is_fatal(self):
        buffer = _record("IBM", [(8, 500)], size_delta=-5, terminator=b"")[:-5]
        with self.assertRaisesRegex(ProtocolError, "insufficient data: need 20 bytes, have 15"):
            self.decode(buffer)

    def test_marker_mismatch_warns_and_continues(self):
        batch = self.decode(_record("IBM", [(1, 1.5)], marker=2))

        self.assertEqual(batch, {"IBM": {"symbol": "IBM", "bid": 1.5}})
        self.assertIn("[DECODE][marker_mismatch] value=2 action=continue", self.log.getvalue())

    def test_marker_mismatch_can_be_fatal(self):
        with self.assertRaises(ProtocolError):
            self.decode(_record("IBM", [(1, 1.5)], marker=2), strict_marker=True)

    def test_oversized_symbol_warns_and_continues(self):
        batch = self.decode(_record("^COMPX", [(3, 1500.5)]))

        self.assertEqual(batch["^COMPX"]["last"], 1500.5)
        self.assertIn("[DECODE][symbol_oversized] symbol=^COMPX length=6 max=5", self.log.getvalue())

    def test_oversized_symbol_can_be_fatal(self):
        with self.assertRaises(ProtocolError):
            self.decode(_record("^COMPX", [(3, 1500.5)]), strict_symbol_length=True)

    def test_symbol_length_limit_is_configurable(self):
        self.decode(_record("^COMPX", []), max_symbol_length=6)
        self.assertEqual(self.log.getvalue(), "")


if __name__ == "__main__":
    unittest.main()
