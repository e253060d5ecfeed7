from __future__ import annotations

from pathlib import Path
import sys
from typing import Any, Callable

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from streamer_gateway.config.settings import StreamerConfig
from streamer_gateway.integrations.streamer_client import StreamerClient
from streamer_gateway.services.quote_state import QuoteStateAccumulator


def print_batch(batch: Any) -> None:
    if isinstance(batch, (bytes, bytearray)):
        print(f"raw frame ({len(batch)} bytes): {bytes(batch).hex()}")
        sys.stdout.flush()
        return
    for symbol, fields in batch.items():
        print(symbol)
        for name, value in fields.items():
            print(f"\t{name}={value}")
    sys.stdout.flush()


def build_sink(config: StreamerConfig) -> Callable[[Any], None]:
    # raw frames cannot be merged
    if config.accumulate and not config.deliver_raw:
        return QuoteStateAccumulator().wrap(print_batch)
    return print_batch


def main(client_factory: Callable[..., StreamerClient] = StreamerClient) -> None:
    config = StreamerConfig.from_env()
    client = client_factory(config, on_quotes=build_sink(config))
    try:
        client.run_with_reconnect()
    except KeyboardInterrupt:
        client.stop()


if __name__ == "__main__":
    main()
