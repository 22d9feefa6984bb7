from __future__ import annotations

import logging
import threading
import zlib
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from symbolhub.data_quality.service import ValidationEngine
from symbolhub.instruments.keys import HASHED_FIELDS, content_hash, identity_key
from symbolhub.instruments.models import (
    ProcessingLogORM,
    RejectedSymbolORM,
    StandardizedSymbolORM,
    SymbolHistoryORM,
    utc_now,
)
from symbolhub.instruments.schemas import (
    ChangeType,
    FuturesChain,
    InstrumentType,
    OptionChain,
    OptionType,
    ProcessingLogEntry,
    ProcessStatus,
    ProcessType,
    RejectedSymbolEntry,
    StandardizedSymbol,
    SymbolCandidate,
    SymbolHistoryEntry,
    SymbolSearchFilters,
    SymbolSearchResult,
    UpsertResult,
)
from symbolhub.instruments.search import apply_filters, order_clauses
from symbolhub.shared.cache import SymbolCache

logger = logging.getLogger(__name__)

_UPPERCASE_FIELDS = {"trading_symbol", "instrument_type", "exchange", "underlying", "option_type", "isin"}
_LOG_COUNT_FIELDS = ("total_processed", "valid_symbols", "invalid_symbols", "new_symbols", "updated_symbols")
_CREATED = "created"
_UPDATED = "updated"
_UNCHANGED = "unchanged"


def normalize_candidate(candidate: SymbolCandidate) -> dict[str, Any]:
    """Persistable field values for a validated candidate."""
    raw = candidate.model_dump()
    data: dict[str, Any] = {}
    for name in HASHED_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            value = value.strip()
            if name in _UPPERCASE_FIELDS:
                value = value.upper()
            value = value or None
        data[name] = value
    return data


def _snapshot(row: StandardizedSymbolORM) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for column in StandardizedSymbolORM.__table__.columns:
        value = getattr(row, column.name)
        out[column.name] = value.isoformat() if isinstance(value, datetime) else value
    return out


class SymbolStore:
    """Persistence for standardized symbols, their history and run bookkeeping.

    Writes are serialized per identity key inside the process and backed by the
    unique ``identity_key`` column across processes. Reads go through the
    attached :class:`SymbolCache` when one is given.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        validator: ValidationEngine | None = None,
        cache: SymbolCache | None = None,
        clock: Callable[[], datetime] = utc_now,
        lock_stripes: int = 64,
    ) -> None:
        self._session_factory = session_factory
        self.validator = validator or ValidationEngine()
        self.cache = cache
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(lock_stripes)]

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    def _invalidate(self, symbol: StandardizedSymbol) -> None:
        if self.cache is not None:
            self.cache.invalidate_symbol(symbol.id, symbol.trading_symbol, symbol.exchange)

    def _remember(
        self, symbol: StandardizedSymbol | None, bare_alias: bool = False
    ) -> StandardizedSymbol | None:
        if symbol is not None and self.cache is not None:
            self.cache.cache_symbol(symbol, include_bare_alias=bare_alias)
        return symbol

    # upsert

    def upsert_symbols(
        self,
        candidates: Iterable[SymbolCandidate | dict[str, Any]],
        changed_by: str | None = None,
    ) -> UpsertResult:
        report = self.validator.validate(candidates)
        total = len(report.valid_symbols) + len(report.invalid_symbols)
        result = UpsertResult(
            total_processed=total,
            valid_symbols=len(report.valid_symbols),
            invalid_symbols=len(report.invalid_symbols),
        )
        for issue in report.errors():
            label = issue.field or issue.rule
            result.errors.append(f"{issue.rule}: {issue.message} ({label}={issue.value!r})")

        for candidate in report.valid_symbols:
            outcome, _ = self._upsert_one(candidate, changed_by)
            if outcome == _CREATED:
                result.new_symbols += 1
            else:
                result.updated_symbols += 1
                if outcome == _UNCHANGED:
                    result.unchanged_symbols += 1

        logger.info(
            "Upserted %s symbols: %s new, %s updated (%s unchanged), %s invalid",
            total,
            result.new_symbols,
            result.updated_symbols,
            result.unchanged_symbols,
            result.invalid_symbols,
        )
        return result

    def _find_by_identity(self, db: Session, key: str) -> StandardizedSymbolORM | None:
        return db.query(StandardizedSymbolORM).filter(StandardizedSymbolORM.identity_key == key).one_or_none()

    def _upsert_one(self, candidate: SymbolCandidate, changed_by: str | None) -> tuple[str, StandardizedSymbol]:
        data = normalize_candidate(candidate)
        key = identity_key(data)
        digest = content_hash(data)
        with self._lock_for(key):
            try:
                outcome, symbol = self._write(key, digest, data, changed_by)
            except IntegrityError:
                # Another writer inserted the same identity key first.
                logger.debug("Identity key %s inserted concurrently, retrying as update", key)
                outcome, symbol = self._write(key, digest, data, changed_by)
        if outcome != _UNCHANGED:
            self._invalidate(symbol)
        return outcome, symbol

    def _write(
        self, key: str, digest: str, data: dict[str, Any], changed_by: str | None
    ) -> tuple[str, StandardizedSymbol]:
        with self._session_factory() as db:
            row = self._find_by_identity(db, key)
            now = self._clock()
            if row is None:
                row = StandardizedSymbolORM(
                    id=uuid4().hex,
                    identity_key=key,
                    content_hash=digest,
                    is_active=True,
                    created_at=now,
                    last_updated=now,
                    **data,
                )
                db.add(row)
                db.flush()
                db.add(
                    SymbolHistoryORM(
                        symbol_id=row.id,
                        change_type=ChangeType.CREATED.value,
                        old_data=None,
                        new_data=_snapshot(row),
                        changed_by=changed_by,
                        timestamp=now,
                    )
                )
                db.commit()
                return _CREATED, StandardizedSymbol.model_validate(row)

            if row.content_hash == digest:
                return _UNCHANGED, StandardizedSymbol.model_validate(row)

            old = _snapshot(row)
            for name, value in data.items():
                setattr(row, name, value)
            row.content_hash = digest
            row.last_updated = now
            db.add(
                SymbolHistoryORM(
                    symbol_id=row.id,
                    change_type=ChangeType.UPDATED.value,
                    old_data=old,
                    new_data=_snapshot(row),
                    changed_by=changed_by,
                    timestamp=now,
                )
            )
            db.commit()
            return _UPDATED, StandardizedSymbol.model_validate(row)

    # lookups

    def get_symbol_by_id(self, symbol_id: str) -> Optional[StandardizedSymbol]:
        if self.cache is not None:
            cached = self.cache.get_symbol_by_id(symbol_id)
            if cached is not None:
                return cached
        with self._session_factory() as db:
            row = db.get(StandardizedSymbolORM, symbol_id)
            symbol = StandardizedSymbol.model_validate(row) if row else None
        return self._remember(symbol)

    def get_symbol_by_trading_symbol(
        self, trading_symbol: str, exchange: str | None = None
    ) -> Optional[StandardizedSymbol]:
        if self.cache is not None:
            cached = self.cache.get_symbol_by_trading_symbol(trading_symbol, exchange)
            if cached is not None:
                return cached
        with self._session_factory() as db:
            query = db.query(StandardizedSymbolORM).filter(
                StandardizedSymbolORM.trading_symbol == trading_symbol.strip().upper()
            )
            if exchange:
                query = query.filter(StandardizedSymbolORM.exchange == exchange.strip().upper())
            row = query.order_by(
                StandardizedSymbolORM.is_active.desc(),
                StandardizedSymbolORM.created_at.asc(),
                StandardizedSymbolORM.id.asc(),
            ).first()
            symbol = StandardizedSymbol.model_validate(row) if row else None
        return self._remember(symbol, bare_alias=not exchange)

    def get_symbols_by_underlying(
        self,
        underlying: str,
        instrument_type: InstrumentType | str | None = None,
        expiry: str | None = None,
    ) -> list[StandardizedSymbol]:
        kinds = [InstrumentType.OPTION.value, InstrumentType.FUTURE.value]
        if instrument_type is not None:
            kinds = [getattr(instrument_type, "value", instrument_type)]
        with self._session_factory() as db:
            query = db.query(StandardizedSymbolORM).filter(
                StandardizedSymbolORM.underlying == underlying.strip().upper(),
                StandardizedSymbolORM.instrument_type.in_(kinds),
                StandardizedSymbolORM.is_active.is_(True),
            )
            if expiry:
                query = query.filter(StandardizedSymbolORM.expiry_date == expiry)
            rows = query.order_by(
                StandardizedSymbolORM.expiry_date.asc(),
                StandardizedSymbolORM.strike_price.asc(),
                StandardizedSymbolORM.option_type.asc(),
                StandardizedSymbolORM.id.asc(),
            ).all()
            return [StandardizedSymbol.model_validate(r) for r in rows]

    def get_option_chain(self, underlying: str, expiry: str | None = None) -> OptionChain:
        options = self.get_symbols_by_underlying(underlying, InstrumentType.OPTION)
        expiries = sorted({s.expiry_date for s in options if s.expiry_date})
        if expiry:
            options = [s for s in options if s.expiry_date == expiry]
        return OptionChain(
            underlying=underlying.strip().upper(),
            calls=[s for s in options if s.option_type == OptionType.CE.value],
            puts=[s for s in options if s.option_type == OptionType.PE.value],
            expiries=expiries,
        )

    def get_futures_chain(self, underlying: str) -> FuturesChain:
        futures = self.get_symbols_by_underlying(underlying, InstrumentType.FUTURE)
        return FuturesChain(
            underlying=underlying.strip().upper(),
            futures=futures,
            expiries=sorted({s.expiry_date for s in futures if s.expiry_date}),
        )

    def search_symbols_with_filters(self, filters: SymbolSearchFilters | dict[str, Any]) -> SymbolSearchResult:
        if not isinstance(filters, SymbolSearchFilters):
            filters = SymbolSearchFilters.model_validate(filters)
        if self.cache is not None:
            cached = self.cache.get_search_results(filters)
            if cached is not None:
                return cached
        with self._session_factory() as db:
            query = apply_filters(db.query(StandardizedSymbolORM), filters)
            total = query.count()
            rows = query.order_by(*order_clauses(filters)).offset(filters.offset).limit(filters.limit).all()
            result = SymbolSearchResult(
                symbols=[StandardizedSymbol.model_validate(r) for r in rows],
                total=total,
                has_more=filters.offset + filters.limit < total,
            )
        if self.cache is not None:
            self.cache.cache_search_results(filters, result)
        return result

    # activation

    def deactivate_symbol(self, symbol_id: str, changed_by: str | None = None) -> Optional[StandardizedSymbol]:
        return self._set_active(symbol_id, False, changed_by)

    def reactivate_symbol(self, symbol_id: str, changed_by: str | None = None) -> Optional[StandardizedSymbol]:
        return self._set_active(symbol_id, True, changed_by)

    def _set_active(self, symbol_id: str, active: bool, changed_by: str | None) -> Optional[StandardizedSymbol]:
        with self._session_factory() as db:
            key = (
                db.query(StandardizedSymbolORM.identity_key)
                .filter(StandardizedSymbolORM.id == symbol_id)
                .scalar()
            )
        if key is None:
            return None
        with self._lock_for(key), self._session_factory() as db:
            row = db.get(StandardizedSymbolORM, symbol_id)
            if row is None:
                return None
            if bool(row.is_active) == active:
                return StandardizedSymbol.model_validate(row)
            old = _snapshot(row)
            now = self._clock()
            row.is_active = active
            row.last_updated = now
            db.add(
                SymbolHistoryORM(
                    symbol_id=row.id,
                    change_type=(ChangeType.REACTIVATED if active else ChangeType.DEACTIVATED).value,
                    old_data=old,
                    new_data=_snapshot(row),
                    changed_by=changed_by,
                    timestamp=now,
                )
            )
            db.commit()
            symbol = StandardizedSymbol.model_validate(row)
        self._invalidate(symbol)
        logger.info("Symbol %s %s", symbol_id, "reactivated" if active else "deactivated")
        return symbol

    def get_symbol_history(self, symbol_id: str, limit: int = 100) -> list[SymbolHistoryEntry]:
        with self._session_factory() as db:
            rows = (
                db.query(SymbolHistoryORM)
                .filter(SymbolHistoryORM.symbol_id == symbol_id)
                .order_by(SymbolHistoryORM.timestamp.desc(), SymbolHistoryORM.id.desc())
                .limit(limit)
                .all()
            )
            return [SymbolHistoryEntry.model_validate(r) for r in rows]

    # processing logs

    def create_processing_log(
        self, process_type: ProcessType | str, source: str
    ) -> ProcessingLogEntry:
        with self._session_factory() as db:
            row = ProcessingLogORM(
                id=uuid4().hex,
                process_type=getattr(process_type, "value", process_type),
                source=source,
                status=ProcessStatus.STARTED.value,
                started_at=self._clock(),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return ProcessingLogEntry.model_validate(row)

    def update_processing_log(
        self,
        log_id: str,
        status: ProcessStatus | str | None = None,
        error_details: dict[str, Any] | None = None,
        **counts: int,
    ) -> ProcessingLogEntry:
        unknown = set(counts) - set(_LOG_COUNT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown processing log fields: {sorted(unknown)}")
        with self._session_factory() as db:
            row = db.get(ProcessingLogORM, log_id)
            if row is None:
                raise KeyError(f"Processing log not found: {log_id}")
            for name, value in counts.items():
                setattr(row, name, int(value))
            if error_details is not None:
                row.error_details = error_details
            if status is not None:
                row.status = getattr(status, "value", status)
                if row.status in {ProcessStatus.COMPLETED.value, ProcessStatus.FAILED.value}:
                    row.completed_at = self._clock()
            db.commit()
            db.refresh(row)
            return ProcessingLogEntry.model_validate(row)

    def get_recent_processing_logs(self, limit: int = 10) -> list[ProcessingLogEntry]:
        with self._session_factory() as db:
            rows = (
                db.query(ProcessingLogORM)
                .order_by(ProcessingLogORM.started_at.desc(), ProcessingLogORM.id.desc())
                .limit(limit)
                .all()
            )
            return [ProcessingLogEntry.model_validate(r) for r in rows]

    # rejects

    def record_rejected_symbols(self, source: str, rejects: Iterable[tuple[str, dict[str, Any]]]) -> int:
        now = self._clock()
        rows = [RejectedSymbolORM(source=source, reason=reason, raw=raw, created_at=now) for reason, raw in rejects]
        if not rows:
            return 0
        with self._session_factory() as db:
            db.add_all(rows)
            db.commit()
        return len(rows)

    def get_rejected_symbols(self, limit: int = 100, source: str | None = None) -> list[RejectedSymbolEntry]:
        with self._session_factory() as db:
            query = db.query(RejectedSymbolORM)
            if source:
                query = query.filter(RejectedSymbolORM.source == source)
            rows = query.order_by(RejectedSymbolORM.created_at.desc(), RejectedSymbolORM.id.desc()).limit(limit).all()
            return [RejectedSymbolEntry.model_validate(r) for r in rows]

    def get_statistics(self) -> dict[str, Any]:
        with self._session_factory() as db:
            total = db.query(func.count(StandardizedSymbolORM.id)).scalar() or 0
            active = (
                db.query(func.count(StandardizedSymbolORM.id))
                .filter(StandardizedSymbolORM.is_active.is_(True))
                .scalar()
                or 0
            )
            by_type = dict(
                db.query(StandardizedSymbolORM.instrument_type, func.count(StandardizedSymbolORM.id))
                .group_by(StandardizedSymbolORM.instrument_type)
                .all()
            )
            by_exchange = dict(
                db.query(StandardizedSymbolORM.exchange, func.count(StandardizedSymbolORM.id))
                .group_by(StandardizedSymbolORM.exchange)
                .all()
            )
            expired = (
                db.query(func.count(StandardizedSymbolORM.id))
                .filter(
                    StandardizedSymbolORM.expiry_date.is_not(None),
                    StandardizedSymbolORM.expiry_date < date.today().isoformat(),
                )
                .scalar()
                or 0
            )
        return {
            "total_symbols": int(total),
            "active_symbols": int(active),
            "inactive_symbols": int(total) - int(active),
            "expired_symbols": int(expired),
            "by_instrument_type": by_type,
            "by_exchange": by_exchange,
        }
