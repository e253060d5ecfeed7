from __future__ import annotations

from typing import Any, Callable, Dict

Quote = Dict[str, Any]


def merge_quotes(previous: Dict[str, Quote], delta: Dict[str, Quote]) -> Dict[str, Quote]:
    """Fold a decoded batch into accumulated per-symbol state.

    Fields present in the delta overwrite stored ones, everything else is
    retained. ``previous`` is updated in place and returned.
    """
    for symbol, fields in delta.items():
        stored = previous.get(symbol)
        if stored is None:
            previous[symbol] = dict(fields)
        else:
            stored.update(fields)
    return previous


class QuoteStateAccumulator:
    """Sink wrapper that emits the merged view instead of the raw delta."""

    def __init__(self) -> None:
        self.state: Dict[str, Quote] = {}

    def merge(self, delta: Dict[str, Quote]) -> Dict[str, Quote]:
        merge_quotes(self.state, delta)
        return {symbol: dict(self.state[symbol]) for symbol in delta}

    def wrap(self, sink: Callable[[Dict[str, Quote]], None]) -> Callable[[Dict[str, Quote]], None]:
        def _on_quotes(delta: Dict[str, Quote]) -> None:
            sink(self.merge(delta))

        return _on_quotes

    def get(self, symbol: str) -> Quote | None:
        row = self.state.get(symbol)
        return dict(row) if row is not None else None
