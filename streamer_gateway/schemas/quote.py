from pydantic import BaseModel


class QuoteSnapshot(BaseModel):
    symbol: str
    bid: float | None = None
    ask: float | None = None
    last: float | None = None
    bid_size: int | None = None
    ask_size: int | None = None
    bid_exchange: str | None = None
    ask_exchange: str | None = None
    volume: int | None = None
    last_size: int | None = None
    trade_time: str | None = None
    quote_time: str | None = None
    high: float | None = None
    low: float | None = None
    tick: str | None = None
    prev_close: float | None = None
    exchange: str | None = None
    island_bid: float | None = None
    island_ask: float | None = None
    island_volume: int | None = None
    ts: int
    freshness_sec: float = 0.0
    state: str = "HEALTHY"
