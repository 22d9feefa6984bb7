from __future__ import annotations

import os
import sys
from datetime import date
from pathlib import Path
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


# Ensure `import symbolhub...` works even when pytest is launched from `symbolhub/`.
REPO_ROOT = Path(__file__).resolve().parents[2]
repo_root_str = str(REPO_ROOT)
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)

os.environ.setdefault("SYMBOLHUB_SQLITE_URL", "sqlite://")

TODAY = date(2025, 1, 2)


@pytest.fixture
def session_factory():
    from symbolhub.instruments import models  # noqa: F401
    from symbolhub.shared.db import Base

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def validator():
    from symbolhub.data_quality.service import ValidationEngine

    return ValidationEngine(today=lambda: TODAY)


@pytest.fixture
def symbol_cache():
    from symbolhub.shared.cache import SymbolCache

    return SymbolCache(symbol_capacity=100, search_capacity=20)


@pytest.fixture
def store(session_factory, validator, symbol_cache):
    from symbolhub.instruments.store import SymbolStore

    return SymbolStore(session_factory, validator=validator, cache=symbol_cache)


@pytest.fixture
def make_equity() -> Callable[..., dict[str, Any]]:
    def _make(**overrides: Any) -> dict[str, Any]:
        payload = {
            "display_name": "Reliance Industries Limited",
            "trading_symbol": "RELIANCE",
            "instrument_type": "EQUITY",
            "exchange": "NSE",
            "segment": "NSE_EQ",
            "lot_size": 1,
            "tick_size": 0.05,
            "source": "upstox",
            "isin": "INE002A01018",
            "company_name": "Reliance Industries Limited",
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_option() -> Callable[..., dict[str, Any]]:
    def _make(**overrides: Any) -> dict[str, Any]:
        payload = {
            "display_name": "NIFTY 22000 CE 30 JAN 25",
            "trading_symbol": "NIFTY25JAN22000CE",
            "instrument_type": "OPTION",
            "exchange": "NFO",
            "segment": "NSE_FO",
            "underlying": "NIFTY",
            "strike_price": 22000,
            "option_type": "CE",
            "expiry_date": "2025-01-30",
            "lot_size": 50,
            "tick_size": 0.05,
            "source": "upstox",
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_future() -> Callable[..., dict[str, Any]]:
    def _make(**overrides: Any) -> dict[str, Any]:
        payload = {
            "display_name": "NIFTY FUT 30 JAN 25",
            "trading_symbol": "NIFTY25JANFUT",
            "instrument_type": "FUTURE",
            "exchange": "NFO",
            "segment": "NSE_FO",
            "underlying": "NIFTY",
            "expiry_date": "2025-01-30",
            "lot_size": 50,
            "tick_size": 0.05,
            "source": "upstox",
        }
        payload.update(overrides)
        return payload

    return _make
