from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Query

from symbolhub.instruments.models import StandardizedSymbolORM as Symbol
from symbolhub.instruments.schemas import SymbolSearchFilters

_SORT_COLUMNS = {
    "name": Symbol.display_name,
    "symbol": Symbol.trading_symbol,
    "expiry": Symbol.expiry_date,
    "strike": Symbol.strike_price,
}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def apply_filters(query: Query, filters: SymbolSearchFilters) -> Query:
    if filters.query and filters.query.strip():
        pattern = f"%{_escape_like(filters.query.strip())}%"
        query = query.filter(
            or_(
                Symbol.display_name.ilike(pattern, escape="\\"),
                Symbol.trading_symbol.ilike(pattern, escape="\\"),
                Symbol.company_name.ilike(pattern, escape="\\"),
            )
        )
    if filters.instrument_type is not None:
        query = query.filter(Symbol.instrument_type == _enum_value(filters.instrument_type))
    if filters.exchange is not None:
        query = query.filter(Symbol.exchange == _enum_value(filters.exchange))
    if filters.underlying:
        query = query.filter(Symbol.underlying == filters.underlying.strip().upper())
    if filters.strike_min is not None:
        query = query.filter(Symbol.strike_price >= filters.strike_min)
    if filters.strike_max is not None:
        query = query.filter(Symbol.strike_price <= filters.strike_max)
    if filters.option_type is not None:
        query = query.filter(Symbol.option_type == _enum_value(filters.option_type))
    # ISO dates compare correctly as strings.
    if filters.expiry_start:
        query = query.filter(Symbol.expiry_date >= filters.expiry_start)
    if filters.expiry_end:
        query = query.filter(Symbol.expiry_date <= filters.expiry_end)
    if filters.is_active is not None:
        query = query.filter(Symbol.is_active.is_(filters.is_active))
    return query


def order_clauses(filters: SymbolSearchFilters) -> list[Any]:
    """Sort clauses for a search; always ends with ``id`` so pages never overlap."""
    descending = filters.sort_order == "desc"
    clauses: list[Any] = []
    if filters.sort_by == "relevance":
        term = (filters.query or "").strip().upper()
        if term:
            # exact > prefix > substring
            rank = case(
                (func.upper(Symbol.trading_symbol) == term, 0),
                (func.upper(Symbol.trading_symbol).like(f"{_escape_like(term)}%", escape="\\"), 1),
                else_=2,
            )
            clauses.append(rank.asc())
        clauses.append(Symbol.trading_symbol.desc() if descending else Symbol.trading_symbol.asc())
    else:
        column = _SORT_COLUMNS[filters.sort_by]
        clauses.append(column.desc() if descending else column.asc())
    clauses.append(Symbol.id.asc())
    return clauses
