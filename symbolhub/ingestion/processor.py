from __future__ import annotations

import csv
import gzip
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import islice
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from symbolhub.data_quality.rules import Severity
from symbolhub.data_quality.service import ValidationEngine, quality_score
from symbolhub.ingestion.mappings import (
    OPTION_TYPE_CODES,
    UnsupportedInstrument,
    map_exchange,
    map_instrument_type,
)
from symbolhub.instruments.schemas import InstrumentType, ProcessStatus, ProcessType, SymbolCandidate
from symbolhub.instruments.store import SymbolStore

logger = logging.getLogger(__name__)

IST = timezone(timedelta(hours=5, minutes=30))
MAX_LOGGED_ERRORS = 100

_ALIASES = {
    "trading_symbol": ("trading_symbol", "tradingsymbol"),
    "strike_price": ("strike_price", "strike"),
    "underlying": ("underlying_symbol", "underlying"),
}


class IngestionSourceError(RuntimeError):
    """The raw source could not be read at all; the whole run fails."""


class RowRejected(ValueError):
    pass


@dataclass
class RejectedRow:
    reason: str
    raw: dict[str, Any]


@dataclass
class IngestionResult:
    total_processed: int = 0
    valid_symbols: int = 0
    invalid_symbols: int = 0
    symbols: list[SymbolCandidate] = field(default_factory=list)
    invalid: list[SymbolCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped_unsupported: int = 0
    rejected: list[RejectedRow] = field(default_factory=list)


@dataclass
class IngestionSummary:
    log_id: str
    source: str
    total_processed: int = 0
    valid_symbols: int = 0
    invalid_symbols: int = 0
    new_symbols: int = 0
    updated_symbols: int = 0
    unchanged_symbols: int = 0
    skipped_unsupported: int = 0
    rejected_rows: int = 0
    quality_score: float = 100.0
    errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _field(row: dict[str, Any], name: str) -> Any:
    for alias in _ALIASES.get(name, (name,)):
        value = row.get(alias)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_int(value: Any, name: str) -> int:
    if value is None or str(value).strip() == "":
        raise RowRejected(f"Missing {name}")
    try:
        number = float(str(value).strip())
    except ValueError as exc:
        raise RowRejected(f"Invalid {name}: {value!r}") from exc
    if not number.is_integer():
        raise RowRejected(f"Invalid {name}: {value!r}")
    return int(number)


def _parse_float(value: Any, name: str) -> float:
    if value is None or str(value).strip() == "":
        raise RowRejected(f"Missing {name}")
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise RowRejected(f"Invalid {name}: {value!r}") from exc


def parse_expiry(value: Any) -> str:
    """Normalize a feed expiry (ISO, epoch seconds/millis or DD-MMM-YYYY) to ISO."""
    if value is None or str(value).strip() == "":
        raise RowRejected("Missing expiry")
    text = str(value).strip()
    if text.isdigit() and len(text) == 8:
        try:
            return datetime.strptime(text, "%Y%m%d").date().isoformat()
        except ValueError as exc:
            raise RowRejected(f"Invalid expiry: {value!r}") from exc
    if text.replace(".", "", 1).isdigit():
        stamp = float(text)
        if stamp > 1e11:
            stamp /= 1000.0
        try:
            return datetime.fromtimestamp(stamp, tz=IST).date().isoformat()
        except (ValueError, OverflowError, OSError) as exc:
            raise RowRejected(f"Invalid expiry: {value!r}") from exc
    for fmt in ("%Y-%m-%d", "%d-%b-%Y", "%d%b%Y", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text[:19] if "T" in text else text, fmt).date().isoformat()
        except ValueError:
            continue
    raise RowRejected(f"Invalid expiry: {value!r}")


class IngestionProcessor:
    """Turns raw instrument-master rows into validated symbol candidates.

    ``process`` works on rows already in memory; ``run`` reads a source in
    chunks, upserts through the store and keeps a processing log for the run.
    """

    def __init__(
        self,
        store: SymbolStore,
        validator: ValidationEngine | None = None,
        chunk_size: int = 1000,
        source: str = "upstox",
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.store = store
        self.validator = validator or store.validator
        self.chunk_size = chunk_size
        self.source = source
        self._run_lock = threading.Lock()

    # reading

    def iter_source(self, path: str | Path) -> Iterator[dict[str, Any]]:
        source = Path(path)
        if not source.exists():
            raise IngestionSourceError(f"Ingestion source not found: {source}")
        count = 0
        for row in self._iter_rows(source):
            count += 1
            yield row
        if count == 0:
            raise IngestionSourceError(f"Ingestion source is empty: {source}")
        logger.info("Read %s rows from %s", count, source)

    def read_source(self, path: str | Path) -> list[dict[str, Any]]:
        return list(self.iter_source(path))

    def _iter_rows(self, source: Path) -> Iterator[dict[str, Any]]:
        suffixes = [s.lower() for s in source.suffixes]
        opener = gzip.open if suffixes and suffixes[-1] == ".gz" else open
        try:
            with opener(source, "rt", encoding="utf-8", newline="") as handle:
                if ".json" in suffixes:
                    payload = json.load(handle)
                    if isinstance(payload, dict):
                        payload = payload.get("data") or []
                    if not isinstance(payload, list):
                        raise IngestionSourceError(f"Ingestion source is not a JSON array: {source}")
                    for item in payload:
                        if isinstance(item, dict):
                            yield item
                    return
                yield from csv.DictReader(handle)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, csv.Error) as exc:
            raise IngestionSourceError(f"Ingestion source unreadable: {source}: {exc}") from exc

    # transformation

    def transform_row(self, row: dict[str, Any]) -> SymbolCandidate:
        """Map one raw row; raises RowRejected or UnsupportedInstrument."""
        trading_symbol = _text(_field(row, "trading_symbol"))
        if not trading_symbol:
            raise RowRejected("Missing trading symbol")
        code = _text(row.get("instrument_type"))
        if not code:
            raise RowRejected("Missing instrument_type")
        kind = map_instrument_type(code)

        segment = _text(row.get("segment"))
        exchange_hint = _text(row.get("exchange"))
        instrument_key = _text(row.get("instrument_key"))
        if not (segment or exchange_hint or instrument_key):
            raise RowRejected("Missing exchange and segment")
        exchange = map_exchange(kind, segment, exchange_hint, instrument_key)

        name = _text(row.get("name"))
        candidate: dict[str, Any] = {
            "display_name": name or trading_symbol.upper(),
            "trading_symbol": trading_symbol.upper(),
            "instrument_type": kind.value,
            "exchange": exchange.value,
            "segment": segment or (instrument_key or "").split("|", 1)[0] or exchange.value,
            "lot_size": _parse_int(row.get("lot_size"), "lot_size"),
            "tick_size": _parse_float(row.get("tick_size"), "tick_size"),
            "source": self.source,
        }
        if kind == InstrumentType.EQUITY:
            candidate["company_name"] = name
            isin = _text(row.get("isin"))
            candidate["isin"] = isin.upper() if isin else None
        else:
            underlying = _text(_field(row, "underlying"))
            candidate["underlying"] = underlying.upper() if underlying else None
            candidate["expiry_date"] = parse_expiry(row.get("expiry"))
            if kind == InstrumentType.OPTION:
                candidate["strike_price"] = _parse_float(_field(row, "strike_price"), "strike_price")
                candidate["option_type"] = OPTION_TYPE_CODES[code.upper()].value
        return SymbolCandidate(**candidate)

    def transform_rows(
        self, rows: Iterable[dict[str, Any]]
    ) -> tuple[list[SymbolCandidate], int, list[RejectedRow]]:
        candidates: list[SymbolCandidate] = []
        skipped = 0
        rejected: list[RejectedRow] = []
        for row in rows:
            try:
                candidates.append(self.transform_row(row))
            except UnsupportedInstrument as exc:
                skipped += 1
                logger.debug("Skipping row: %s", exc)
            except RowRejected as exc:
                logger.warning("Rejected raw row: %s", exc)
                rejected.append(RejectedRow(reason=str(exc), raw=dict(row)))
        return candidates, skipped, rejected

    def process(self, raw_rows: Iterable[dict[str, Any]]) -> IngestionResult:
        """Transform and validate rows; ``total_processed`` counts every raw row seen."""
        rows = list(raw_rows)
        candidates, skipped, rejected = self.transform_rows(rows)
        report = self.validator.validate(candidates)
        errors = [
            f"{issue.rule}: {issue.message}"
            for issue in report.all_issues
            if issue.severity == Severity.ERROR
        ]
        return IngestionResult(
            total_processed=len(rows),
            valid_symbols=len(report.valid_symbols),
            invalid_symbols=len(report.invalid_symbols),
            symbols=report.valid_symbols,
            invalid=report.invalid_symbols,
            errors=errors,
            skipped_unsupported=skipped,
            rejected=rejected,
        )

    # runs

    def run(
        self,
        source: str | Path | Iterable[dict[str, Any]],
        process_type: ProcessType = ProcessType.DAILY_UPDATE,
        changed_by: str | None = None,
    ) -> IngestionSummary:
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("Ingestion is already running")
        try:
            return self._run(source, process_type, changed_by)
        finally:
            self._run_lock.release()

    def _run(
        self,
        source: str | Path | Iterable[dict[str, Any]],
        process_type: ProcessType,
        changed_by: str | None,
    ) -> IngestionSummary:
        started = time.perf_counter()
        log = self.store.create_processing_log(process_type, self.source)
        summary = IngestionSummary(log_id=log.id, source=self.source)
        logger.info("Ingestion run %s started (%s, %s)", log.id, process_type.value, self.source)
        try:
            rows = self.iter_source(source) if isinstance(source, (str, Path)) else iter(source)
            while True:
                chunk = list(islice(rows, self.chunk_size))
                if not chunk:
                    break
                self._ingest_chunk(chunk, summary, changed_by)
        except Exception as exc:
            summary.elapsed_seconds = round(time.perf_counter() - started, 3)
            self.store.update_processing_log(
                log.id,
                status=ProcessStatus.FAILED,
                error_details={"error": str(exc), "errors": summary.errors[:MAX_LOGGED_ERRORS]},
                **self._log_counts(summary),
            )
            logger.error("Ingestion run %s failed: %s", log.id, exc)
            raise

        summary.quality_score = quality_score(
            summary.valid_symbols, summary.valid_symbols + summary.invalid_symbols
        )
        summary.elapsed_seconds = round(time.perf_counter() - started, 3)
        details = None
        if summary.errors or summary.rejected_rows or summary.skipped_unsupported:
            details = {
                "errors": summary.errors[:MAX_LOGGED_ERRORS],
                "rejected_rows": summary.rejected_rows,
                "skipped_unsupported": summary.skipped_unsupported,
            }
        self.store.update_processing_log(
            log.id,
            status=ProcessStatus.COMPLETED,
            error_details=details,
            **self._log_counts(summary),
        )
        logger.info(
            "Ingestion run %s completed: %s processed, %s new, %s updated, %s invalid, %s skipped, %s rejected",
            log.id,
            summary.total_processed,
            summary.new_symbols,
            summary.updated_symbols,
            summary.invalid_symbols,
            summary.skipped_unsupported,
            summary.rejected_rows,
        )
        return summary

    def _ingest_chunk(self, chunk: list[dict[str, Any]], summary: IngestionSummary, changed_by: str | None) -> None:
        result = self.process(chunk)
        if result.rejected:
            self.store.record_rejected_symbols(self.source, [(r.reason, r.raw) for r in result.rejected])
        upserted = self.store.upsert_symbols(result.symbols, changed_by=changed_by)
        summary.total_processed += result.total_processed
        summary.valid_symbols += upserted.valid_symbols
        summary.invalid_symbols += result.invalid_symbols + upserted.invalid_symbols
        summary.new_symbols += upserted.new_symbols
        summary.updated_symbols += upserted.updated_symbols
        summary.unchanged_symbols += upserted.unchanged_symbols
        summary.skipped_unsupported += result.skipped_unsupported
        summary.rejected_rows += len(result.rejected)
        summary.errors.extend(result.errors + upserted.errors)

    @staticmethod
    def _log_counts(summary: IngestionSummary) -> dict[str, int]:
        return {
            "total_processed": summary.total_processed,
            "valid_symbols": summary.valid_symbols,
            "invalid_symbols": summary.invalid_symbols,
            "new_symbols": summary.new_symbols,
            "updated_symbols": summary.updated_symbols,
        }
