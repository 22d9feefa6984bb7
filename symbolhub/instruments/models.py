from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from symbolhub.shared.db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StandardizedSymbolORM(Base):
    __tablename__ = "standardized_symbols"
    __table_args__ = (
        Index("ix_symbols_exchange_type_active", "exchange", "instrument_type", "is_active"),
        Index(
            "ix_symbols_underlying_chain",
            "underlying",
            "expiry_date",
            "strike_price",
            "option_type",
            "is_active",
        ),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    identity_key: Mapped[str] = mapped_column(String(160), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(256), index=True)
    trading_symbol: Mapped[str] = mapped_column(String(64), index=True)
    instrument_type: Mapped[str] = mapped_column(String(16))
    exchange: Mapped[str] = mapped_column(String(8))
    segment: Mapped[str] = mapped_column(String(32))
    underlying: Mapped[str | None] = mapped_column(String(64), nullable=True)
    strike_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    option_type: Mapped[str | None] = mapped_column(String(2), nullable=True)
    expiry_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    lot_size: Mapped[int] = mapped_column(Integer)
    tick_size: Mapped[float] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    source: Mapped[str] = mapped_column(String(64))
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    isin: Mapped[str | None] = mapped_column(String(12), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    sector: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class SymbolHistoryORM(Base):
    __tablename__ = "symbol_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol_id: Mapped[str] = mapped_column(String(32), index=True)
    change_type: Mapped[str] = mapped_column(String(16), index=True)
    old_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)


class ProcessingLogORM(Base):
    __tablename__ = "symbol_processing_logs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    process_type: Mapped[str] = mapped_column(String(32), index=True)
    source: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), index=True)
    total_processed: Mapped[int] = mapped_column(Integer, default=0)
    valid_symbols: Mapped[int] = mapped_column(Integer, default=0)
    invalid_symbols: Mapped[int] = mapped_column(Integer, default=0)
    new_symbols: Mapped[int] = mapped_column(Integer, default=0)
    updated_symbols: Mapped[int] = mapped_column(Integer, default=0)
    error_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class RejectedSymbolORM(Base):
    __tablename__ = "rejected_symbols"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(64), index=True)
    reason: Mapped[str] = mapped_column(Text)
    raw: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
