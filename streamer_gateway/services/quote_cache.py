from __future__ import annotations

import sys
import time
from typing import Any, Optional, TextIO

from streamer_gateway.integrations.record_decoder import Quote
from streamer_gateway.schemas.quote import QuoteSnapshot


class QuoteCache:
    """Latest decoded fields per symbol, stamped with their arrival time.

    Snapshots are built on read so freshness is always relative to ``now``.
    """

    def __init__(self, stale_after_sec: int = 120) -> None:
        self.stale_after_sec = stale_after_sec
        self._fields: dict[str, Quote] = {}
        self._received_at: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._fields)

    def store(self, symbol: str, fields: Quote, ts: int) -> None:
        self._fields[symbol] = {**fields, "symbol": symbol}
        self._received_at[symbol] = int(ts)

    def symbols(self) -> list[str]:
        return list(self._fields)

    def fields(self, symbol: str) -> Quote | None:
        stored = self._fields.get(symbol)
        return dict(stored) if stored is not None else None

    def age(self, symbol: str, now: int) -> float:
        return float(max(now - self._received_at[symbol], 0))

    def snapshot(self, symbol: str, now: int | None = None) -> QuoteSnapshot | None:
        if symbol not in self._fields:
            return None
        ref = int(time.time()) if now is None else now
        age = self.age(symbol, ref)
        return QuoteSnapshot(
            **self._fields[symbol],
            ts=self._received_at[symbol],
            freshness_sec=age,
            state="HEALTHY" if age <= self.stale_after_sec else "STALE",
        )

    def snapshots(self, symbols: list[str] | None = None, now: int | None = None) -> list[QuoteSnapshot]:
        """Snapshots for ``symbols`` in request order (unknown ones skipped), or all."""
        ref = int(time.time()) if now is None else now
        wanted = self.symbols() if symbols is None else [s for s in symbols if s in self._fields]
        return [self.snapshot(s, now=ref) for s in wanted]

    def stale_symbols(self, now: int) -> list[str]:
        return [s for s in self._fields if self.age(s, now) > self.stale_after_sec]

    def clear(self) -> None:
        self._fields.clear()
        self._received_at.clear()


class QuoteIngestWorker:
    """Feed sink: decoded batch -> cache update, heartbeat and state tracking."""

    def __init__(
        self,
        cache: QuoteCache,
        heartbeat_timeout_sec: int = 90,
        log_stream: Optional[TextIO] = None,
    ) -> None:
        self.cache = cache
        self.heartbeat_timeout_sec = heartbeat_timeout_sec
        self._log_stream = log_stream
        self.batches = 0
        self.upserts = 0
        self.feed_connected = False
        self.last_batch_ts: int | None = None
        self.last_heartbeat_ts: int | None = None
        self.last_error: str | None = None
        self.reconnect_count = 0

    def on_quotes(self, batch: Any) -> list[QuoteSnapshot]:
        if not isinstance(batch, dict):
            print(
                f"[QUOTE][batch_skip] reason=raw_payload type={type(batch).__name__}",
                file=self._log_stream or sys.stderr,
                flush=True,
            )
            return []

        now = int(time.time())
        for symbol, fields in batch.items():
            self.cache.store(symbol, fields, ts=now)
        self.upserts += len(batch)
        self.batches += 1
        self.feed_connected = True
        self.last_batch_ts = now
        return self.cache.snapshots(list(batch), now=now)

    def on_heartbeat(self, ts: int) -> None:
        self.last_heartbeat_ts = int(ts)

    def sync_feed_state(
        self,
        *,
        connected: bool,
        reconnect_count: int,
        last_error: str | None,
        heartbeat_ts: int | None = None,
    ) -> None:
        self.feed_connected = bool(connected)
        self.reconnect_count = int(reconnect_count)
        self.last_error = last_error
        if heartbeat_ts is not None:
            self.last_heartbeat_ts = int(heartbeat_ts)

    def metrics(self, now: int | None = None) -> dict:
        ref = int(time.time()) if now is None else now

        heartbeat_fresh = False
        if self.last_heartbeat_ts is not None:
            heartbeat_fresh = (ref - self.last_heartbeat_ts) <= self.heartbeat_timeout_sec

        return {
            "cached_symbols": len(self.cache),
            "batches": self.batches,
            "upserts": self.upserts,
            "stale_symbols": len(self.cache.stale_symbols(ref)),
            "feed_connected": self.feed_connected,
            "heartbeat_fresh": heartbeat_fresh,
            "last_batch_ts": self.last_batch_ts,
            "last_heartbeat_ts": self.last_heartbeat_ts,
            "last_error": self.last_error,
            "reconnect_count": self.reconnect_count,
        }


quote_cache = QuoteCache()
quote_ingest_worker = QuoteIngestWorker(quote_cache)
