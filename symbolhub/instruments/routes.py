from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from symbolhub.api.deps import get_symbol_cache, get_symbol_store
from symbolhub.instruments.schemas import (
    Exchange,
    FuturesChain,
    InstrumentType,
    OptionChain,
    OptionType,
    ProcessingLogEntry,
    RejectedSymbolEntry,
    StandardizedSymbol,
    SymbolHistoryEntry,
    SymbolSearchFilters,
    SymbolSearchResult,
)
from symbolhub.instruments.store import SymbolStore
from symbolhub.shared.cache import SymbolCache

router = APIRouter(prefix="/symbols", tags=["symbols"])


class ActivationRequest(BaseModel):
    changed_by: Optional[str] = None


@router.get("/search", response_model=SymbolSearchResult)
async def search_symbols(
    q: Optional[str] = Query(None, description="Free text over name, trading symbol and company"),
    instrument_type: Optional[InstrumentType] = None,
    exchange: Optional[Exchange] = None,
    underlying: Optional[str] = None,
    strike_min: Optional[float] = None,
    strike_max: Optional[float] = None,
    option_type: Optional[OptionType] = None,
    expiry_start: Optional[str] = None,
    expiry_end: Optional[str] = None,
    is_active: Optional[bool] = True,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("relevance", pattern="^(relevance|name|symbol|expiry|strike)$"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    store: SymbolStore = Depends(get_symbol_store),
) -> SymbolSearchResult:
    filters = SymbolSearchFilters(
        query=q,
        instrument_type=instrument_type,
        exchange=exchange,
        underlying=underlying,
        strike_min=strike_min,
        strike_max=strike_max,
        option_type=option_type,
        expiry_start=expiry_start,
        expiry_end=expiry_end,
        is_active=is_active,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return store.search_symbols_with_filters(filters)


@router.get("/stats")
async def symbol_statistics(store: SymbolStore = Depends(get_symbol_store)) -> dict[str, Any]:
    return store.get_statistics()


@router.get("/by-trading-symbol/{trading_symbol}", response_model=StandardizedSymbol)
async def symbol_by_trading_symbol(
    trading_symbol: str,
    exchange: Optional[Exchange] = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> StandardizedSymbol:
    symbol = store.get_symbol_by_trading_symbol(trading_symbol, exchange.value if exchange else None)
    if symbol is None:
        raise HTTPException(status_code=404, detail=f"Symbol not found: {trading_symbol}")
    return symbol


@router.get("/underlying/{underlying}", response_model=list[StandardizedSymbol])
async def symbols_by_underlying(
    underlying: str,
    instrument_type: Optional[InstrumentType] = None,
    expiry: Optional[str] = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> list[StandardizedSymbol]:
    if instrument_type == InstrumentType.EQUITY:
        raise HTTPException(status_code=400, detail="Underlying lookups cover options and futures only")
    return store.get_symbols_by_underlying(underlying, instrument_type, expiry)


@router.get("/option-chain/{underlying}", response_model=OptionChain)
async def option_chain(
    underlying: str,
    expiry: Optional[str] = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> OptionChain:
    return store.get_option_chain(underlying, expiry)


@router.get("/futures-chain/{underlying}", response_model=FuturesChain)
async def futures_chain(underlying: str, store: SymbolStore = Depends(get_symbol_store)) -> FuturesChain:
    return store.get_futures_chain(underlying)


@router.get("/processing-logs", response_model=list[ProcessingLogEntry])
async def processing_logs(
    limit: int = Query(10, ge=1, le=200),
    store: SymbolStore = Depends(get_symbol_store),
) -> list[ProcessingLogEntry]:
    return store.get_recent_processing_logs(limit)


@router.get("/rejected", response_model=list[RejectedSymbolEntry])
async def rejected_symbols(
    limit: int = Query(100, ge=1, le=1000),
    source: Optional[str] = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> list[RejectedSymbolEntry]:
    return store.get_rejected_symbols(limit, source)


@router.get("/cache/stats")
async def cache_stats(cache: SymbolCache = Depends(get_symbol_cache)) -> dict[str, Any]:
    return {**cache.get_stats(), "memory": cache.get_memory_usage()}


@router.post("/cache/reset-stats")
async def reset_cache_stats(cache: SymbolCache = Depends(get_symbol_cache)) -> dict[str, Any]:
    cache.reset_stats()
    return cache.get_stats()


@router.get("/{symbol_id}", response_model=StandardizedSymbol)
async def symbol_by_id(symbol_id: str, store: SymbolStore = Depends(get_symbol_store)) -> StandardizedSymbol:
    symbol = store.get_symbol_by_id(symbol_id)
    if symbol is None:
        raise HTTPException(status_code=404, detail=f"Symbol not found: {symbol_id}")
    return symbol


@router.get("/{symbol_id}/history", response_model=list[SymbolHistoryEntry])
async def symbol_history(
    symbol_id: str,
    limit: int = Query(100, ge=1, le=1000),
    store: SymbolStore = Depends(get_symbol_store),
) -> list[SymbolHistoryEntry]:
    return store.get_symbol_history(symbol_id, limit)


@router.post("/{symbol_id}/deactivate", response_model=StandardizedSymbol)
async def deactivate_symbol(
    symbol_id: str,
    payload: ActivationRequest | None = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> StandardizedSymbol:
    symbol = store.deactivate_symbol(symbol_id, payload.changed_by if payload else None)
    if symbol is None:
        raise HTTPException(status_code=404, detail=f"Symbol not found: {symbol_id}")
    return symbol


@router.post("/{symbol_id}/reactivate", response_model=StandardizedSymbol)
async def reactivate_symbol(
    symbol_id: str,
    payload: ActivationRequest | None = None,
    store: SymbolStore = Depends(get_symbol_store),
) -> StandardizedSymbol:
    symbol = store.reactivate_symbol(symbol_id, payload.changed_by if payload else None)
    if symbol is None:
        raise HTTPException(status_code=404, detail=f"Symbol not found: {symbol_id}")
    return symbol
