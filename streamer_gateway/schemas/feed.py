from pydantic import BaseModel


class FeedStatus(BaseModel):
    host: str
    port: int
    symbols: list[str]
    fields: list[int]
    state: str
    running: bool
    reconnect_count: int
    last_error: str | None = None
    batches_received: int
    last_heartbeat_ts: int | None = None
