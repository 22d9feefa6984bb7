from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from symbolhub.brokers.converters import BrokerSymbolFormat
from symbolhub.brokers.registry import ConverterRegistry, get_converter_registry
from symbolhub.data_quality.rules import parse_iso_date
from symbolhub.instruments.schemas import StandardizedSymbol
from symbolhub.instruments.store import SymbolStore

logger = logging.getLogger(__name__)

CANONICAL_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
MARKET = "MARKET"


@dataclass
class OrderValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class SymbolResolution:
    is_valid: bool
    symbol: Optional[StandardizedSymbol] = None
    error: Optional[str] = None
    is_legacy: bool = False
    verified: bool = False
    warning: Optional[str] = None


@dataclass
class OrderPreparation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    resolution: Optional[SymbolResolution] = None
    broker: Optional[str] = None
    broker_symbol: Optional[BrokerSymbolFormat] = None

    def to_dict(self) -> dict[str, Any]:
        res = self.resolution
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "broker": self.broker,
            "broker_symbol": self.broker_symbol.to_dict() if self.broker_symbol else None,
            "symbol": res.symbol.model_dump(mode="json") if res and res.symbol else None,
            "is_legacy": bool(res and res.is_legacy),
            "verified": bool(res and res.verified),
            "warning": res.warning if res else None,
        }


def _decimals(step: float) -> int:
    exponent = Decimal(str(step)).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def is_tick_multiple(price: float, tick_size: float) -> bool:
    """Whether ``price`` sits on the tick grid, tolerant of binary float error."""
    decimals = _decimals(tick_size)
    nearest = round(round(price / tick_size) * tick_size, decimals)
    return nearest == round(price, 9)


def validate_order_parameters(
    symbol: StandardizedSymbol,
    quantity: Any,
    price: float | None = None,
    order_type: str = MARKET,
    today: date | None = None,
) -> OrderValidationResult:
    errors: list[str] = []

    qty = quantity
    if isinstance(qty, float) and qty.is_integer():
        qty = int(qty)
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        errors.append("Quantity must be a positive whole number")
    elif qty % symbol.lot_size != 0:
        errors.append(f"Quantity must be in multiples of lot size {symbol.lot_size}")

    if order_type.strip().upper() != MARKET and price is not None:
        if price <= 0:
            errors.append("Price must be greater than 0")
        elif not is_tick_multiple(price, symbol.tick_size):
            errors.append(f"Price must be in multiples of tick size {symbol.tick_size}")

    if symbol.expiry_date:
        expiry = parse_iso_date(symbol.expiry_date)
        if expiry is not None and expiry < (today or date.today()):
            errors.append(f"Symbol has expired on {symbol.expiry_date}")

    return OrderValidationResult(is_valid=not errors, errors=errors)


class OrderSymbolService:
    """Order-time symbol checks: resolve, validate, then convert for a broker."""

    def __init__(
        self,
        store: SymbolStore,
        registry: ConverterRegistry | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.registry = registry or get_converter_registry()
        self._today = today

    def validate_and_resolve_symbol(self, symbol_input: str, exchange: str | None = None) -> SymbolResolution:
        text = (symbol_input or "").strip()
        if not text:
            return SymbolResolution(is_valid=False, error="Symbol is required")

        if CANONICAL_ID_PATTERN.match(text):
            symbol = self.store.get_symbol_by_id(text)
            if symbol is None:
                return SymbolResolution(is_valid=False, error=f"Symbol not found: {text}")
            is_legacy = False
        else:
            symbol = self.store.get_symbol_by_trading_symbol(text, exchange)
            if symbol is None:
                logger.info("Legacy symbol %s not found, passing through unverified", text)
                return SymbolResolution(
                    is_valid=True,
                    is_legacy=True,
                    verified=False,
                    warning=f"Symbol {text} not found in database. Using symbol as provided.",
                )
            is_legacy = True

        if not symbol.is_active:
            return SymbolResolution(
                is_valid=False,
                symbol=symbol,
                error=f"Symbol {symbol.trading_symbol} is not active",
                is_legacy=is_legacy,
                verified=True,
            )
        return SymbolResolution(is_valid=True, symbol=symbol, is_legacy=is_legacy, verified=True)

    def validate_order_parameters(
        self,
        symbol: StandardizedSymbol,
        quantity: Any,
        price: float | None = None,
        order_type: str = MARKET,
    ) -> OrderValidationResult:
        return validate_order_parameters(symbol, quantity, price, order_type, today=self._today())

    def prepare_order(
        self,
        symbol_input: str,
        broker: str,
        quantity: Any,
        price: float | None = None,
        order_type: str = MARKET,
        exchange: str | None = None,
    ) -> OrderPreparation:
        resolution = self.validate_and_resolve_symbol(symbol_input, exchange)
        if not resolution.is_valid:
            return OrderPreparation(is_valid=False, errors=[resolution.error or "Invalid symbol"], resolution=resolution, broker=broker)
        if resolution.symbol is None:
            # Unverified legacy symbol: nothing to check against or convert.
            return OrderPreparation(is_valid=True, resolution=resolution, broker=broker)

        check = self.validate_order_parameters(resolution.symbol, quantity, price, order_type)
        if not check.is_valid:
            return OrderPreparation(is_valid=False, errors=check.errors, resolution=resolution, broker=broker)

        broker_symbol = self.registry.convert_symbol(resolution.symbol, broker)
        return OrderPreparation(is_valid=True, resolution=resolution, broker=broker, broker_symbol=broker_symbol)
