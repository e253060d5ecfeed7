from __future__ import annotations

import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import ValidationError

from streamer_gateway.api.routes import router
from streamer_gateway.config.settings import VERSION, StreamerConfig, get_settings
from streamer_gateway.integrations.streamer_client import StreamerClient
from streamer_gateway.services.quote_cache import QuoteIngestWorker, quote_ingest_worker
from streamer_gateway.services.quote_state import QuoteStateAccumulator


def build_streamer_client(config: StreamerConfig, worker: QuoteIngestWorker) -> StreamerClient:
    on_quotes = worker.on_quotes
    if config.accumulate and not config.deliver_raw:
        on_quotes = QuoteStateAccumulator().wrap(worker.on_quotes)
    return StreamerClient(
        config,
        on_quotes=on_quotes,
        on_heartbeat=worker.on_heartbeat,
        on_state_change=worker.sync_feed_state,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = None
    try:
        settings = app.state.get_settings()
    except ValidationError as exc:
        # keep the API up without feed credentials (tests, local runs)
        print(f"[APP][feed_disabled] reason=invalid_settings errors={exc.error_count()}", flush=True)

    if settings is None:
        app.state.feed_client = None
        yield
        return

    client = app.state.client_factory(settings, quote_ingest_worker)
    app.state.feed_client = client

    feed_worker = threading.Thread(
        target=client.run_with_reconnect,
        daemon=True,
        name='streamer-feed-worker',
    )
    app.state.feed_worker_thread = feed_worker
    print("[APP][feed_worker_start] thread=streamer-feed-worker", flush=True)
    feed_worker.start()

    try:
        yield
    finally:
        client.stop()
        feed_worker.join(timeout=1.0)
        print("[APP][feed_worker_stop] thread=streamer-feed-worker", flush=True)


app = FastAPI(title="Streamer Gateway", version=VERSION, lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.client_factory = build_streamer_client
app.state.feed_client = None
