from fastapi import APIRouter, HTTPException, Request

from streamer_gateway.schemas.feed import FeedStatus
from streamer_gateway.services.quote_cache import quote_cache, quote_ingest_worker

router = APIRouter()


@router.get('/quotes/{symbol}')
def get_quote(symbol: str):
    row = quote_cache.snapshot(symbol.strip().upper())
    if row is None:
        raise HTTPException(status_code=404, detail='QUOTE_NOT_FOUND')
    return row.model_dump()


@router.get('/quotes')
def get_quotes(symbols: str):
    req = [s.strip().upper() for s in symbols.split(',') if s.strip()]
    return [row.model_dump() for row in quote_cache.snapshots(req)]


@router.get('/feed/status')
def get_feed_status(request: Request):
    client = request.app.state.feed_client
    if client is None:
        raise HTTPException(status_code=503, detail='FEED_NOT_CONFIGURED')
    cfg = client.config
    return FeedStatus(
        host=cfg.host,
        port=cfg.port,
        symbols=list(cfg.symbols),
        fields=list(cfg.fields),
        state=client.state.value,
        running=client.running,
        reconnect_count=client.reconnect_count,
        last_error=client.last_error,
        batches_received=client.batches_received,
        last_heartbeat_ts=client.last_heartbeat_ts,
    ).model_dump()


@router.get('/metrics/quote')
def quote_metrics():
    return quote_ingest_worker.metrics()
