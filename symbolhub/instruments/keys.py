from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

HASHED_FIELDS = (
    "display_name",
    "trading_symbol",
    "instrument_type",
    "exchange",
    "segment",
    "underlying",
    "strike_price",
    "option_type",
    "expiry_date",
    "lot_size",
    "tick_size",
    "source",
    "isin",
    "company_name",
    "sector",
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def _strike(value: Any) -> str:
    if value is None or value == "":
        return ""
    return repr(float(value))


def identity_key(data: Mapping[str, Any]) -> str:
    """Key that decides whether two records describe the same instrument."""
    trading_symbol = _text(data.get("trading_symbol"))
    exchange = _text(data.get("exchange"))
    instrument_type = _text(data.get("instrument_type"))
    if instrument_type == "EQUITY":
        return "|".join([trading_symbol, exchange, instrument_type])
    return "|".join(
        [
            trading_symbol,
            exchange,
            str(data.get("expiry_date") or ""),
            _strike(data.get("strike_price")),
            _text(data.get("option_type")),
        ]
    )


def content_hash(data: Mapping[str, Any]) -> str:
    payload = {name: data.get(name) for name in HASHED_FIELDS}
    if payload["strike_price"] is not None:
        payload["strike_price"] = float(payload["strike_price"])
    if payload["tick_size"] is not None:
        payload["tick_size"] = float(payload["tick_size"])
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
