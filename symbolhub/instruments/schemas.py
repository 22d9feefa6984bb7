from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InstrumentType(str, enum.Enum):
    EQUITY = "EQUITY"
    OPTION = "OPTION"
    FUTURE = "FUTURE"


class Exchange(str, enum.Enum):
    NSE = "NSE"
    BSE = "BSE"
    NFO = "NFO"
    BFO = "BFO"
    MCX = "MCX"


class OptionType(str, enum.Enum):
    CE = "CE"
    PE = "PE"


class ChangeType(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DEACTIVATED = "DEACTIVATED"
    REACTIVATED = "REACTIVATED"


class ProcessType(str, enum.Enum):
    DAILY_UPDATE = "DAILY_UPDATE"
    MANUAL_UPDATE = "MANUAL_UPDATE"
    VALIDATION = "VALIDATION"


class ProcessStatus(str, enum.Enum):
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SymbolCandidate(BaseModel):
    """A symbol as produced by ingestion, before validation.

    Fields are deliberately loose (plain strings, all optional) so that the
    validation rules, not the model, decide what is acceptable.
    """

    model_config = ConfigDict(extra="ignore")

    display_name: Optional[str] = None
    trading_symbol: Optional[str] = None
    instrument_type: Optional[str] = None
    exchange: Optional[str] = None
    segment: Optional[str] = None
    underlying: Optional[str] = None
    strike_price: Optional[float] = None
    option_type: Optional[str] = None
    expiry_date: Optional[str] = None
    lot_size: Optional[int] = None
    tick_size: Optional[float] = None
    source: Optional[str] = None
    isin: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None


class StandardizedSymbol(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: str
    trading_symbol: str
    instrument_type: str
    exchange: str
    segment: str
    underlying: Optional[str] = None
    strike_price: Optional[float] = None
    option_type: Optional[str] = None
    expiry_date: Optional[str] = None
    lot_size: int
    tick_size: float
    is_active: bool = True
    source: str
    content_hash: Optional[str] = None
    isin: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class SymbolSearchFilters(BaseModel):
    query: Optional[str] = None
    instrument_type: Optional[InstrumentType] = None
    exchange: Optional[Exchange] = None
    underlying: Optional[str] = None
    strike_min: Optional[float] = None
    strike_max: Optional[float] = None
    option_type: Optional[OptionType] = None
    expiry_start: Optional[str] = None
    expiry_end: Optional[str] = None
    is_active: Optional[bool] = True
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    sort_by: str = Field(default="relevance", pattern="^(relevance|name|symbol|expiry|strike)$")
    sort_order: str = Field(default="asc", pattern="^(asc|desc)$")


class SymbolSearchResult(BaseModel):
    symbols: List[StandardizedSymbol]
    total: int
    has_more: bool


class OptionChain(BaseModel):
    underlying: str
    calls: List[StandardizedSymbol]
    puts: List[StandardizedSymbol]
    expiries: List[str]


class FuturesChain(BaseModel):
    underlying: str
    futures: List[StandardizedSymbol]
    expiries: List[str]


class UpsertResult(BaseModel):
    total_processed: int = 0
    valid_symbols: int = 0
    invalid_symbols: int = 0
    new_symbols: int = 0
    updated_symbols: int = 0
    unchanged_symbols: int = 0
    errors: List[str] = Field(default_factory=list)


class SymbolHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    symbol_id: str
    change_type: str
    old_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    changed_by: Optional[str] = None
    timestamp: datetime


class ProcessingLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    process_type: str
    source: str
    status: str
    total_processed: int
    valid_symbols: int
    invalid_symbols: int
    new_symbols: int
    updated_symbols: int
    error_details: Optional[dict[str, Any]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class RejectedSymbolEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    reason: str
    raw: Optional[dict[str, Any]] = None
    created_at: datetime
