from __future__ import annotations

import pytest

from symbolhub.brokers.converters import (
    BrokerSymbolConverter,
    BrokerSymbolFormat,
    FyersSymbolConverter,
    SymbolConversionError,
)
from symbolhub.brokers.registry import ConverterNotFoundError, ConverterRegistry
from symbolhub.instruments.schemas import StandardizedSymbol


def _symbol(**overrides) -> StandardizedSymbol:
    payload = {
        "id": "b" * 32,
        "display_name": "Reliance Industries Limited",
        "trading_symbol": "RELIANCE",
        "instrument_type": "EQUITY",
        "exchange": "NSE",
        "segment": "NSE_EQ",
        "lot_size": 1,
        "tick_size": 0.05,
        "source": "upstox",
    }
    payload.update(overrides)
    return StandardizedSymbol(**payload)


def _option(**overrides) -> StandardizedSymbol:
    payload = {
        "trading_symbol": "NIFTY25JAN22000CE",
        "instrument_type": "OPTION",
        "exchange": "NFO",
        "segment": "NSE_FO",
        "underlying": "NIFTY",
        "strike_price": 22000.0,
        "option_type": "CE",
        "expiry_date": "2025-01-30",
        "lot_size": 50,
    }
    payload.update(overrides)
    return _symbol(**payload)


class _PaperConverter(BrokerSymbolConverter):
    supported_exchanges = frozenset({"NSE"})

    def __init__(self, name: str = "paper") -> None:
        self.name = name

    def get_broker_name(self) -> str:
        return self.name

    def _convert_equity(self, symbol):
        return BrokerSymbolFormat(f"PAPER:{symbol.trading_symbol}", symbol.exchange, symbol.segment)

    _convert_option = _convert_equity
    _convert_future = _convert_equity


def test_default_broker_formats() -> None:
    registry = ConverterRegistry()

    assert registry.convert_symbol(_symbol(), "fyers").trading_symbol == "NSE:RELIANCE-EQ"
    assert registry.convert_symbol(_option(), "FYERS").trading_symbol == "NFO:NIFTY25JAN22000CE"
    assert registry.convert_symbol(_symbol(), "shoonya").to_dict() == {
        "trading_symbol": "RELIANCE",
        "exchange": "NSE",
        "segment": "NSE_EQ",
    }
    # Shoonya routes derivatives to the F&O exchange.
    assert registry.convert_symbol(_option(exchange="BSE", segment="BSE_FO"), "shoonya").exchange == "BFO"


def test_unsupported_exchange_is_rejected() -> None:
    registry = ConverterRegistry()
    symbol = _option(exchange="BFO", segment="BSE_FO", trading_symbol="SENSEX25JAN80000CE", underlying="SENSEX")

    with pytest.raises(SymbolConversionError, match="Broker fyers does not support exchange BFO"):
        registry.convert_symbol(symbol, "fyers")

    assert registry.get_compatible_brokers(symbol) == ["shoonya"]
    assert registry.can_convert_symbol(symbol, "shoonya")
    assert not registry.can_convert_symbol(symbol, "fyers")
    assert not registry.can_convert_symbol(symbol, "nobody")


def test_incomplete_derivatives_fail_conversion() -> None:
    converter = FyersSymbolConverter()

    with pytest.raises(SymbolConversionError, match="Valid strike price is required"):
        converter.convert_to_broker_format(_option(strike_price=None))
    with pytest.raises(SymbolConversionError, match="Expiry date is required for future conversion"):
        converter.convert_to_broker_format(_option(instrument_type="FUTURE", strike_price=None, option_type=None, expiry_date=None))
    with pytest.raises(SymbolConversionError, match="Unsupported instrument type: BOND"):
        converter.convert_to_broker_format(_symbol(instrument_type="BOND"))


def test_batch_conversion_fails_fast() -> None:
    registry = ConverterRegistry()
    bad = _option(id="c" * 32, exchange="BFO", trading_symbol="SENSEX25JANFUT")

    assert len(registry.convert_symbols([_symbol(), _option()], "fyers")) == 2
    with pytest.raises(SymbolConversionError) as exc:
        registry.convert_symbols([_symbol(), bad, _option()], "fyers")
    assert "c" * 32 in str(exc.value)
    assert "SENSEX25JANFUT" in str(exc.value)


def test_unknown_broker() -> None:
    registry = ConverterRegistry()

    with pytest.raises(ConverterNotFoundError, match="No converter found for broker: zerodha"):
        registry.convert_symbol(_symbol(), "zerodha")
    assert not registry.has_converter("zerodha")


def test_explicit_registration_survives_lazy_defaults() -> None:
    registry = ConverterRegistry()
    custom = _PaperConverter(name="fyers")

    registry.register_converter(custom)

    assert registry.get_converter("fyers") is custom
    assert registry.get_registered_brokers() == ["fyers", "shoonya"]


def test_register_unregister_and_clear() -> None:
    registry = ConverterRegistry()
    registry.register_converter(_PaperConverter())

    assert registry.has_converter("Paper")
    assert registry.unregister_converter("paper")
    assert not registry.unregister_converter("paper")

    registry.clear_converters()

    assert registry.get_registered_brokers() == []


def test_converter_stats() -> None:
    registry = ConverterRegistry()

    stats = registry.get_converter_stats()

    assert stats["total_converters"] == 2
    assert stats["brokers"] == ["fyers", "shoonya"]
    assert stats["supported_exchanges"]["fyers"] == ["NSE", "BSE", "NFO", "MCX"]
    assert stats["supported_exchanges"]["shoonya"] == ["NSE", "BSE", "NFO", "BFO", "MCX"]
