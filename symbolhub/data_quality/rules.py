"""Validation rules for standardized symbol candidates.

Each rule is a plain value: a name, a severity and a pure ``check`` function
taking ``(candidate, today)`` and returning the issues it found. Rules are
held in an ordered list by the engine and can be added or removed at runtime.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Optional

from symbolhub.instruments.schemas import Exchange, InstrumentType, OptionType, SymbolCandidate

TRADING_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9\-_]+$")
ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$")
MAX_EXPIRED_AGE = timedelta(days=365)
MAX_REASONABLE_STRIKE = 100000
MAX_REASONABLE_LOT = 10000

EQUITY_EXCHANGES = {Exchange.NSE.value, Exchange.BSE.value}
DERIVATIVE_EXCHANGES = {Exchange.NFO.value, Exchange.BFO.value, Exchange.MCX.value}


class Severity(str, enum.Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass(frozen=True)
class ValidationIssue:
    message: str
    field: Optional[str] = None
    value: Any = None
    suggestion: Optional[str] = None
    rule: str = ""
    severity: Severity = Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "message": self.message,
            "field": self.field,
            "value": self.value,
            "suggestion": self.suggestion,
        }


CheckFn = Callable[[SymbolCandidate, date], list[ValidationIssue]]


@dataclass(frozen=True)
class ValidationRule:
    name: str
    description: str
    severity: Severity
    check: CheckFn


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _type(candidate: SymbolCandidate) -> str:
    return (candidate.instrument_type or "").strip().upper()


def parse_iso_date(value: str) -> date | None:
    text = value.strip()
    if len(text) != 10:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def _required(field: str, label: str) -> CheckFn:
    def check(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
        value = getattr(candidate, field)
        if _blank(value):
            return [ValidationIssue(f"{label} is required", field=field, value=value)]
        return []

    return check


def _positive(field: str, label: str) -> CheckFn:
    def check(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
        value = getattr(candidate, field)
        if value is None or value <= 0:
            return [
                ValidationIssue(
                    f"{label} must be greater than 0",
                    field=field,
                    value=value,
                    suggestion=f"Check the {label.lower()} in the source feed",
                )
            ]
        return []

    return check


def _forbidden(instrument_type: InstrumentType, fields: tuple[str, ...]) -> CheckFn:
    def check(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
        if _type(candidate) != instrument_type.value:
            return []
        issues = []
        for field in fields:
            value = getattr(candidate, field)
            if not _blank(value):
                issues.append(
                    ValidationIssue(
                        f"{field} must not be set for {instrument_type.value} symbols",
                        field=field,
                        value=value,
                    )
                )
        return issues

    return check


def _derivative_required(instrument_type: InstrumentType, field: str, label: str) -> CheckFn:
    def check(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
        if _type(candidate) != instrument_type.value:
            return []
        value = getattr(candidate, field)
        if _blank(value):
            return [
                ValidationIssue(
                    f"{label} is required for {instrument_type.value} symbols",
                    field=field,
                    value=value,
                )
            ]
        return []

    return check


def _trading_symbol_format(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.trading_symbol
    if _blank(value) or TRADING_SYMBOL_PATTERN.match(value):
        return []
    return [
        ValidationIssue(
            "Trading symbol must contain only uppercase letters, digits, '-' or '_'",
            field="trading_symbol",
            value=value,
            suggestion=value.strip().upper(),
        )
    ]


def _known_instrument_type(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.instrument_type
    if _blank(value):
        return [ValidationIssue("Instrument type is required", field="instrument_type", value=value)]
    if _type(candidate) not in {t.value for t in InstrumentType}:
        return [ValidationIssue(f"Invalid instrument type: {value}", field="instrument_type", value=value)]
    return []


def _known_exchange(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.exchange
    if _blank(value):
        return [ValidationIssue("Exchange is required", field="exchange", value=value)]
    if value.strip().upper() not in {e.value for e in Exchange}:
        return [ValidationIssue(f"Invalid exchange: {value}", field="exchange", value=value)]
    return []


def _isin_format(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.isin
    if _blank(value) or ISIN_PATTERN.match(value):
        return []
    return [
        ValidationIssue(
            "ISIN format is invalid",
            field="isin",
            value=value,
            suggestion="ISIN should be 12 characters: 2 letters, 9 alphanumerics, 1 check digit",
        )
    ]


def _option_strike(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    if _type(candidate) != InstrumentType.OPTION.value:
        return []
    value = candidate.strike_price
    if value is None or value <= 0:
        return [
            ValidationIssue(
                "Strike price is required and must be greater than 0 for options",
                field="strike_price",
                value=value,
            )
        ]
    return []


def _option_type(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    if _type(candidate) != InstrumentType.OPTION.value:
        return []
    value = candidate.option_type
    if _blank(value) or value.strip().upper() not in {o.value for o in OptionType}:
        return [
            ValidationIssue(
                "Option type (CE/PE) is required for options",
                field="option_type",
                value=value,
            )
        ]
    return []


def _expiry_date(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.expiry_date
    if _blank(value):
        return []
    parsed = parse_iso_date(value)
    if parsed is None:
        return [
            ValidationIssue(
                "Invalid expiry date format",
                field="expiry_date",
                value=value,
                suggestion="Use ISO format YYYY-MM-DD",
            )
        ]
    if today - parsed > MAX_EXPIRED_AGE:
        return [
            ValidationIssue(
                "Expiry date is more than one year in the past",
                field="expiry_date",
                value=value,
            )
        ]
    return []


def _expiry_in_past(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.expiry_date
    if _blank(value):
        return []
    parsed = parse_iso_date(value)
    if parsed is None or parsed >= today or today - parsed > MAX_EXPIRED_AGE:
        return []
    return [ValidationIssue("Expiry date is in the past", field="expiry_date", value=value)]


def _exchange_consistency(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    kind = _type(candidate)
    exchange = (candidate.exchange or "").strip().upper()
    if not exchange:
        return []
    if kind == InstrumentType.EQUITY.value and exchange not in EQUITY_EXCHANGES:
        return [
            ValidationIssue(
                f"Equity symbols are normally listed on NSE or BSE, not {exchange}",
                field="exchange",
                value=exchange,
            )
        ]
    if kind in {InstrumentType.OPTION.value, InstrumentType.FUTURE.value} and exchange not in DERIVATIVE_EXCHANGES:
        return [
            ValidationIssue(
                f"Derivatives are normally listed on NFO, BFO or MCX, not {exchange}",
                field="exchange",
                value=exchange,
            )
        ]
    return []


def _reasonable_strike(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.strike_price
    if _type(candidate) != InstrumentType.OPTION.value or value is None or value <= 0:
        return []
    if value > MAX_REASONABLE_STRIKE or value < 1:
        return [ValidationIssue(f"Strike price {value} looks unusual", field="strike_price", value=value)]
    return []


def _reasonable_lot(candidate: SymbolCandidate, today: date) -> list[ValidationIssue]:
    value = candidate.lot_size
    if value is not None and value > MAX_REASONABLE_LOT:
        return [ValidationIssue(f"Lot size {value} looks unusual", field="lot_size", value=value)]
    return []


def _rule(name: str, description: str, severity: Severity, check: CheckFn) -> ValidationRule:
    return ValidationRule(name=name, description=description, severity=severity, check=check)


def default_rules(require_equity_company_name: bool = True) -> list[ValidationRule]:
    rules = [
        _rule("required_display_name", "Display name must be present", Severity.ERROR,
              _required("display_name", "Display name")),
        _rule("required_trading_symbol", "Trading symbol must be present", Severity.ERROR,
              _required("trading_symbol", "Trading symbol")),
        _rule("trading_symbol_format", "Trading symbol must be uppercase [A-Z0-9-_]", Severity.ERROR,
              _trading_symbol_format),
        _rule("required_instrument_type", "Instrument type must be EQUITY, OPTION or FUTURE", Severity.ERROR,
              _known_instrument_type),
        _rule("required_exchange", "Exchange must be a supported exchange", Severity.ERROR, _known_exchange),
        _rule("required_segment", "Segment must be present", Severity.ERROR, _required("segment", "Segment")),
        _rule("required_source", "Source must be present", Severity.ERROR, _required("source", "Source")),
        _rule("positive_lot_size", "Lot size must be positive", Severity.ERROR, _positive("lot_size", "Lot size")),
        _rule("positive_tick_size", "Tick size must be positive", Severity.ERROR,
              _positive("tick_size", "Tick size")),
        _rule("valid_isin_format", "ISIN must match the ISO 6166 layout", Severity.WARNING, _isin_format),
    ]
    if require_equity_company_name:
        rules.append(
            _rule("equity_company_name_required", "Equities must carry a company name", Severity.ERROR,
                  _derivative_required(InstrumentType.EQUITY, "company_name", "Company name"))
        )
    rules.extend(
        [
            _rule("equity_derivative_fields_forbidden", "Equities must not carry derivative fields",
                  Severity.ERROR,
                  _forbidden(InstrumentType.EQUITY, ("underlying", "strike_price", "option_type", "expiry_date"))),
            _rule("option_underlying_required", "Options must carry an underlying", Severity.ERROR,
                  _derivative_required(InstrumentType.OPTION, "underlying", "Underlying symbol")),
            _rule("option_strike_price_required", "Options must carry a positive strike", Severity.ERROR,
                  _option_strike),
            _rule("option_type_required", "Options must carry CE or PE", Severity.ERROR, _option_type),
            _rule("option_expiry_required", "Options must carry an expiry date", Severity.ERROR,
                  _derivative_required(InstrumentType.OPTION, "expiry_date", "Expiry date")),
            _rule("option_equity_fields_forbidden", "Options must not carry equity fields", Severity.ERROR,
                  _forbidden(InstrumentType.OPTION, ("company_name", "sector"))),
            _rule("future_underlying_required", "Futures must carry an underlying", Severity.ERROR,
                  _derivative_required(InstrumentType.FUTURE, "underlying", "Underlying symbol")),
            _rule("future_expiry_required", "Futures must carry an expiry date", Severity.ERROR,
                  _derivative_required(InstrumentType.FUTURE, "expiry_date", "Expiry date")),
            _rule("future_forbidden_fields", "Futures must not carry option or equity fields", Severity.ERROR,
                  _forbidden(InstrumentType.FUTURE, ("strike_price", "option_type", "company_name", "sector"))),
            _rule("valid_expiry_date", "Expiry must be an ISO date no older than one year", Severity.ERROR,
                  _expiry_date),
            _rule("expiry_in_past", "Expiry date has already passed", Severity.WARNING, _expiry_in_past),
            _rule("exchange_instrument_consistency", "Exchange should match the instrument type",
                  Severity.WARNING, _exchange_consistency),
            _rule("reasonable_strike_price", "Strike price should be within a plausible range",
                  Severity.WARNING, _reasonable_strike),
            _rule("reasonable_lot_size", "Lot size should be within a plausible range", Severity.WARNING,
                  _reasonable_lot),
        ]
    )
    return rules
