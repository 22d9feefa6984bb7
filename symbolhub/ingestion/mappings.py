"""Feed code tables for the Upstox-style instrument master."""
from __future__ import annotations

from typing import Optional

from symbolhub.instruments.schemas import Exchange, InstrumentType, OptionType

INSTRUMENT_TYPE_CODES: dict[str, InstrumentType] = {
    "EQ": InstrumentType.EQUITY,
    "EQUITY": InstrumentType.EQUITY,
    "FUT": InstrumentType.FUTURE,
    "FUTURE": InstrumentType.FUTURE,
    "FUTIDX": InstrumentType.FUTURE,
    "FUTSTK": InstrumentType.FUTURE,
    "FUTCOM": InstrumentType.FUTURE,
    "CE": InstrumentType.OPTION,
    "PE": InstrumentType.OPTION,
}

OPTION_TYPE_CODES = {"CE": OptionType.CE, "PE": OptionType.PE}

SEGMENT_EXCHANGES: dict[str, Exchange] = {
    "NSE_EQ": Exchange.NSE,
    "NSE_FO": Exchange.NFO,
    "BSE_EQ": Exchange.BSE,
    "BSE_FO": Exchange.BFO,
    "MCX_FO": Exchange.MCX,
}

# Currency and index segments carry nothing tradable here.
UNSUPPORTED_SEGMENTS = {"NCD_FO", "BCD_FO", "CDS", "NSE_INDEX", "BSE_INDEX", "MCX_INDEX", "NSE_COM"}

DERIVATIVE_EXCHANGES = {
    Exchange.NSE.value: Exchange.NFO,
    Exchange.BSE.value: Exchange.BFO,
    Exchange.NFO.value: Exchange.NFO,
    Exchange.BFO.value: Exchange.BFO,
    Exchange.MCX.value: Exchange.MCX,
}

CASH_EXCHANGES = {
    Exchange.NSE.value: Exchange.NSE,
    Exchange.BSE.value: Exchange.BSE,
}


class UnsupportedInstrument(Exception):
    """Row describes an instrument this system does not carry."""


def map_instrument_type(code: str) -> InstrumentType:
    kind = INSTRUMENT_TYPE_CODES.get(code.strip().upper())
    if kind is None:
        raise UnsupportedInstrument(f"Unsupported instrument type code: {code}")
    return kind


def map_exchange(
    instrument_type: InstrumentType,
    segment: Optional[str],
    exchange: Optional[str],
    instrument_key: Optional[str] = None,
) -> Exchange:
    """Resolve the canonical exchange from the segment, exchange and key hints.

    Explicit feed segments such as ``NSE_FO`` win; otherwise a bare exchange
    name is promoted to its F&O exchange for derivatives.
    """
    key_prefix = (instrument_key or "").split("|", 1)[0]
    for hint in (segment, key_prefix):
        code = (hint or "").strip().upper()
        if code in UNSUPPORTED_SEGMENTS:
            raise UnsupportedInstrument(f"Unsupported segment: {code}")
        if code in SEGMENT_EXCHANGES:
            return SEGMENT_EXCHANGES[code]

    table = CASH_EXCHANGES if instrument_type == InstrumentType.EQUITY else DERIVATIVE_EXCHANGES
    for hint in (exchange, segment):
        code = (hint or "").strip().upper()
        if code in table:
            return table[code]
    raise UnsupportedInstrument(f"Unsupported exchange: {exchange or segment or key_prefix or 'unknown'}")
