from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Iterable, Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SYMBOL_ENTRY_BYTES = 1024
SEARCH_ENTRY_BYTES = 2048

DEFAULT_WARM_SYMBOLS = (
    "RELIANCE",
    "TCS",
    "HDFCBANK",
    "INFY",
    "ICICIBANK",
    "SBIN",
    "BHARTIARTL",
    "ITC",
    "KOTAKBANK",
    "LT",
)

_MISSING = object()


class LRUCache:
    """Capacity-bounded map evicting the least recently accessed entry.

    Both ``get`` and ``put`` refresh recency. A positive ``ttl_seconds``
    additionally expires entries on read.
    """

    def __init__(
        self,
        capacity: int,
        ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: OrderedDict[str, Tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            item = self._data.get(key, _MISSING)
            if item is _MISSING:
                return default
            stored_at, value = item
            if self.ttl_seconds > 0 and self._clock() - stored_at >= self.ttl_seconds:
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def put(self, key: str, value: Any) -> Optional[str]:
        """Store ``value``; returns the evicted key, if any."""
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (self._clock(), value)
            if len(self._data) > self.capacity:
                evicted, _ = self._data.popitem(last=False)
                return evicted
            return None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def symbol_id_key(symbol_id: str) -> str:
    return f"id:{symbol_id}"


def trading_symbol_key(trading_symbol: str, exchange: str | None = None) -> str:
    ts = trading_symbol.strip().upper()
    if exchange:
        return f"trading:{exchange.strip().upper()}:{ts}"
    return f"trading:{ts}"


def search_key(filters: BaseModel | dict[str, Any]) -> str:
    if isinstance(filters, BaseModel):
        params = filters.model_dump(mode="json", exclude_none=True)
    else:
        params = {k: v for k, v in filters.items() if v is not None}
    p_str = json.dumps(params, sort_keys=True, default=str)
    return f"search:{hashlib.md5(p_str.encode()).hexdigest()}"


class SymbolCache:
    """Entity cache plus search-result cache with shared hit/miss counters."""

    def __init__(
        self,
        symbol_capacity: int = 10000,
        search_capacity: int = 1000,
        symbol_ttl_seconds: float = 0,
        search_ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.symbols = LRUCache(symbol_capacity, ttl_seconds=symbol_ttl_seconds, clock=clock)
        self.searches = LRUCache(search_capacity, ttl_seconds=search_ttl_seconds, clock=clock)
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _record(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def get_symbol(self, key: str) -> Any:
        value = self.symbols.get(key)
        self._record(value is not None)
        return value

    def get_symbol_by_id(self, symbol_id: str) -> Any:
        return self.get_symbol(symbol_id_key(symbol_id))

    def get_symbol_by_trading_symbol(self, trading_symbol: str, exchange: str | None = None) -> Any:
        return self.get_symbol(trading_symbol_key(trading_symbol, exchange))

    def cache_symbol(self, symbol: Any, include_bare_alias: bool = True) -> None:
        """Store ``symbol`` under its id and exchange-qualified aliases.

        The exchange-less trading-symbol alias is shared by every exchange listing
        the same symbol, so callers that did not resolve it through an exchange-less
        lookup should pass ``include_bare_alias=False``.
        """
        keys = [
            symbol_id_key(symbol.id),
            trading_symbol_key(symbol.trading_symbol, symbol.exchange),
        ]
        if include_bare_alias:
            keys.append(trading_symbol_key(symbol.trading_symbol))
        for key in keys:
            evicted = self.symbols.put(key, symbol)
            if evicted:
                logger.debug("Symbol cache evicted %s", evicted)

    def get_search_results(self, filters: BaseModel | dict[str, Any]) -> Any:
        value = self.searches.get(search_key(filters))
        self._record(value is not None)
        return value

    def cache_search_results(self, filters: BaseModel | dict[str, Any], result: Any) -> None:
        self.searches.put(search_key(filters), result)

    def invalidate_symbol(
        self,
        symbol_id: str | None = None,
        trading_symbol: str | None = None,
        exchange: str | None = None,
    ) -> None:
        if symbol_id:
            self.symbols.delete(symbol_id_key(symbol_id))
        if trading_symbol:
            if exchange:
                self.symbols.delete(trading_symbol_key(trading_symbol, exchange))
            self.symbols.delete(trading_symbol_key(trading_symbol))
        self.clear_search_cache()

    def clear_search_cache(self) -> None:
        self.searches.clear()

    def invalidate_all(self) -> None:
        self.symbols.clear()
        self.searches.clear()
        logger.info("Symbol cache cleared")

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        hit_rate = round(hits / total * 100, 2) if total else 0.0
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": hit_rate,
            "symbol_cache_size": len(self.symbols),
            "search_cache_size": len(self.searches),
            "symbol_cache_capacity": self.symbols.capacity,
            "search_cache_capacity": self.searches.capacity,
        }

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._hits = 0
            self._misses = 0

    def get_memory_usage(self) -> dict[str, Any]:
        symbol_bytes = len(self.symbols) * SYMBOL_ENTRY_BYTES
        search_bytes = len(self.searches) * SEARCH_ENTRY_BYTES
        return {
            "estimated": symbol_bytes + search_bytes,
            "breakdown": {"symbol_cache": symbol_bytes, "search_cache": search_bytes},
        }

    def warm_cache(self, store: Any, trading_symbols: Iterable[str] = DEFAULT_WARM_SYMBOLS) -> int:
        """Pre-load popular symbols through ``store`` (which fills this cache)."""
        warmed = 0
        for ts in trading_symbols:
            if store.get_symbol_by_trading_symbol(ts, "NSE") is not None:
                warmed += 1
        logger.info("Symbol cache warmed with %s symbols", warmed)
        return warmed
