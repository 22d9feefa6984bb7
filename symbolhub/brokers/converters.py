from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from symbolhub.instruments.schemas import Exchange, InstrumentType, OptionType, StandardizedSymbol


class SymbolConversionError(ValueError):
    """Raised when a broker cannot express a symbol in its own format."""


@dataclass(frozen=True)
class BrokerSymbolFormat:
    trading_symbol: str
    exchange: str
    segment: str

    def to_dict(self) -> dict[str, Any]:
        return {"trading_symbol": self.trading_symbol, "exchange": self.exchange, "segment": self.segment}


class BrokerSymbolConverter(ABC):
    supported_exchanges: frozenset[str] = frozenset()

    @abstractmethod
    def get_broker_name(self) -> str:
        raise NotImplementedError

    def can_convert(self, symbol: StandardizedSymbol) -> bool:
        return symbol.exchange.upper() in self.supported_exchanges

    def convert_to_broker_format(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        kind = symbol.instrument_type.upper()
        if kind == InstrumentType.EQUITY.value:
            return self._convert_equity(symbol)
        if kind == InstrumentType.OPTION.value:
            self._require_option_fields(symbol)
            return self._convert_option(symbol)
        if kind == InstrumentType.FUTURE.value:
            self._require_future_fields(symbol)
            return self._convert_future(symbol)
        raise SymbolConversionError(f"Unsupported instrument type: {symbol.instrument_type}")

    @abstractmethod
    def _convert_equity(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        raise NotImplementedError

    @abstractmethod
    def _convert_option(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        raise NotImplementedError

    @abstractmethod
    def _convert_future(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        raise NotImplementedError

    def _require_option_fields(self, symbol: StandardizedSymbol) -> None:
        if not symbol.underlying:
            raise SymbolConversionError("Underlying symbol is required for option conversion")
        if symbol.strike_price is None or symbol.strike_price <= 0:
            raise SymbolConversionError("Valid strike price is required for option conversion")
        if symbol.option_type not in {OptionType.CE.value, OptionType.PE.value}:
            raise SymbolConversionError("Valid option type (CE/PE) is required for option conversion")
        if not symbol.expiry_date:
            raise SymbolConversionError("Expiry date is required for option conversion")

    def _require_future_fields(self, symbol: StandardizedSymbol) -> None:
        if not symbol.underlying:
            raise SymbolConversionError("Underlying symbol is required for future conversion")
        if not symbol.expiry_date:
            raise SymbolConversionError("Expiry date is required for future conversion")


class FyersSymbolConverter(BrokerSymbolConverter):
    """``EXCHANGE:SYMBOL-EQ`` for equities, ``EXCHANGE:SYMBOL`` for derivatives."""

    supported_exchanges = frozenset({Exchange.NSE.value, Exchange.BSE.value, Exchange.NFO.value, Exchange.MCX.value})

    def get_broker_name(self) -> str:
        return "fyers"

    def _convert_equity(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        if not symbol.trading_symbol:
            raise SymbolConversionError("Trading symbol is required for equity conversion")
        return BrokerSymbolFormat(
            trading_symbol=f"{symbol.exchange}:{symbol.trading_symbol}-EQ",
            exchange=symbol.exchange,
            segment=symbol.segment,
        )

    def _convert_option(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return self._derivative(symbol)

    def _convert_future(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return self._derivative(symbol)

    def _derivative(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return BrokerSymbolFormat(
            trading_symbol=f"{symbol.exchange}:{symbol.trading_symbol}",
            exchange=symbol.exchange,
            segment=symbol.segment,
        )


class ShoonyaSymbolConverter(BrokerSymbolConverter):
    """Passes trading symbols through; derivatives move to the F&O exchange."""

    supported_exchanges = frozenset(e.value for e in Exchange)
    derivative_exchanges = {
        Exchange.NSE.value: Exchange.NFO.value,
        Exchange.BSE.value: Exchange.BFO.value,
    }

    def get_broker_name(self) -> str:
        return "shoonya"

    def _convert_equity(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        if not symbol.trading_symbol:
            raise SymbolConversionError("Trading symbol is required for equity conversion")
        if symbol.exchange not in {Exchange.NSE.value, Exchange.BSE.value}:
            raise SymbolConversionError(f"Invalid exchange for equity: {symbol.exchange}. Expected NSE or BSE")
        return BrokerSymbolFormat(
            trading_symbol=symbol.trading_symbol,
            exchange=symbol.exchange,
            segment=symbol.segment,
        )

    def _convert_option(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return self._derivative(symbol)

    def _convert_future(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return self._derivative(symbol)

    def _derivative(self, symbol: StandardizedSymbol) -> BrokerSymbolFormat:
        return BrokerSymbolFormat(
            trading_symbol=symbol.trading_symbol,
            exchange=self.derivative_exchanges.get(symbol.exchange, symbol.exchange),
            segment=symbol.segment,
        )
