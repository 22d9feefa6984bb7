from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

from symbolhub.brokers.converters import (
    BrokerSymbolConverter,
    BrokerSymbolFormat,
    FyersSymbolConverter,
    ShoonyaSymbolConverter,
    SymbolConversionError,
)
from symbolhub.instruments.schemas import Exchange, InstrumentType, StandardizedSymbol

logger = logging.getLogger(__name__)


class ConverterNotFoundError(LookupError):
    pass


def _probe_symbol(exchange: str) -> StandardizedSymbol:
    return StandardizedSymbol(
        id="probe",
        display_name="probe",
        trading_symbol="PROBE",
        instrument_type=InstrumentType.EQUITY.value,
        exchange=exchange,
        segment="probe",
        lot_size=1,
        tick_size=0.05,
        source="probe",
    )


class ConverterRegistry:
    """Broker converters keyed by case-insensitive broker name.

    The default converters are registered on first access; a converter
    registered explicitly before that is never replaced by a default.
    """

    def __init__(self, defaults: Iterable[Callable[[], BrokerSymbolConverter]] | None = None) -> None:
        self._defaults = list(defaults) if defaults is not None else [FyersSymbolConverter, ShoonyaSymbolConverter]
        self._converters: dict[str, BrokerSymbolConverter] = {}
        self._initialized = False
        self._lock = threading.RLock()

    @staticmethod
    def _key(broker_name: str) -> str:
        return broker_name.strip().lower()

    def _ensure_defaults(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            for factory in self._defaults:
                converter = factory()
                key = self._key(converter.get_broker_name())
                if key not in self._converters:
                    self._converters[key] = converter
                    logger.debug("Registered default converter %s", key)
            self._initialized = True

    def register_converter(self, converter: BrokerSymbolConverter) -> None:
        key = self._key(converter.get_broker_name())
        with self._lock:
            if key in self._converters:
                logger.info("Replacing converter for broker %s", key)
            self._converters[key] = converter

    def unregister_converter(self, broker_name: str) -> bool:
        self._ensure_defaults()
        with self._lock:
            return self._converters.pop(self._key(broker_name), None) is not None

    def get_converter(self, broker_name: str) -> BrokerSymbolConverter:
        self._ensure_defaults()
        converter = self._converters.get(self._key(broker_name))
        if converter is None:
            raise ConverterNotFoundError(f"No converter found for broker: {broker_name}")
        return converter

    def has_converter(self, broker_name: str) -> bool:
        self._ensure_defaults()
        return self._key(broker_name) in self._converters

    def get_registered_brokers(self) -> list[str]:
        self._ensure_defaults()
        return sorted(self._converters)

    def convert_symbol(self, symbol: StandardizedSymbol, broker_name: str) -> BrokerSymbolFormat:
        converter = self.get_converter(broker_name)
        if not converter.can_convert(symbol):
            raise SymbolConversionError(
                f"Broker {broker_name} does not support exchange {symbol.exchange}"
            )
        return converter.convert_to_broker_format(symbol)

    def convert_symbols(self, symbols: Iterable[StandardizedSymbol], broker_name: str) -> list[BrokerSymbolFormat]:
        """Convert every symbol or none: the first unsupported one aborts the batch."""
        converter = self.get_converter(broker_name)
        out: list[BrokerSymbolFormat] = []
        for symbol in symbols:
            if not converter.can_convert(symbol):
                raise SymbolConversionError(
                    f"Broker {broker_name} does not support exchange {symbol.exchange} "
                    f"for symbol {symbol.id} ({symbol.trading_symbol})"
                )
            out.append(converter.convert_to_broker_format(symbol))
        return out

    def get_compatible_brokers(self, symbol: StandardizedSymbol) -> list[str]:
        self._ensure_defaults()
        return sorted(name for name, converter in self._converters.items() if converter.can_convert(symbol))

    def can_convert_symbol(self, symbol: StandardizedSymbol, broker_name: str) -> bool:
        try:
            return self.get_converter(broker_name).can_convert(symbol)
        except ConverterNotFoundError:
            return False

    def get_converter_stats(self) -> dict[str, Any]:
        self._ensure_defaults()
        supported: dict[str, list[str]] = {}
        for name, converter in sorted(self._converters.items()):
            supported[name] = [e.value for e in Exchange if converter.can_convert(_probe_symbol(e.value))]
        return {
            "total_converters": len(self._converters),
            "brokers": sorted(self._converters),
            "supported_exchanges": supported,
        }

    def clear_converters(self) -> None:
        """Drop every converter; defaults are not re-registered afterwards."""
        with self._lock:
            self._converters.clear()
            self._initialized = True


_registry = ConverterRegistry()


def get_converter_registry() -> ConverterRegistry:
    return _registry
