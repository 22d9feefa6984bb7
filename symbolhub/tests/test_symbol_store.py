from __future__ import annotations

import pytest

from symbolhub.instruments.schemas import ProcessStatus, ProcessType, SymbolSearchFilters


def test_upsert_is_idempotent(store, make_equity) -> None:
    first = store.upsert_symbols([make_equity()])
    second = store.upsert_symbols([make_equity(display_name="Reliance Industries Ltd")])

    assert (first.new_symbols, first.updated_symbols) == (1, 0)
    assert (second.new_symbols, second.updated_symbols) == (0, 1)
    stored = store.get_symbol_by_trading_symbol("RELIANCE", "NSE")
    assert stored.display_name == "Reliance Industries Ltd"


def test_unchanged_payload_skips_the_write(store, make_equity) -> None:
    store.upsert_symbols([make_equity()])
    symbol = store.get_symbol_by_trading_symbol("RELIANCE", "NSE")

    again = store.upsert_symbols([make_equity()])

    assert again.updated_symbols == 1
    assert again.unchanged_symbols == 1
    history = store.get_symbol_history(symbol.id)
    assert [h.change_type for h in history] == ["CREATED"]


def test_history_records_old_and_new(store, make_equity) -> None:
    store.upsert_symbols([make_equity()], changed_by="loader")
    store.upsert_symbols([make_equity(sector="Energy")], changed_by="loader")
    symbol = store.get_symbol_by_trading_symbol("RELIANCE", "NSE")

    history = store.get_symbol_history(symbol.id)

    assert [h.change_type for h in history] == ["UPDATED", "CREATED"]
    assert history[0].old_data["sector"] is None
    assert history[0].new_data["sector"] == "Energy"
    assert history[0].changed_by == "loader"
    assert history[1].old_data is None


def test_invalid_candidates_are_counted_not_raised(store, make_equity, make_option) -> None:
    result = store.upsert_symbols([make_equity(), make_option(strike_price=None)])

    assert result.total_processed == 2
    assert result.valid_symbols == 1
    assert result.invalid_symbols == 1
    assert result.new_symbols == 1
    assert any("option_strike_price_required" in e for e in result.errors)


def test_unparseable_fields_do_not_abort_the_batch(store, make_equity) -> None:
    result = store.upsert_symbols([make_equity(), make_equity(trading_symbol="TCS", lot_size="abc")])

    assert result.total_processed == 2
    assert (result.valid_symbols, result.invalid_symbols) == (1, 1)
    assert result.new_symbols == 1
    assert any(e.startswith("candidate_schema:") and "lot_size" in e for e in result.errors)
    assert store.get_symbol_by_trading_symbol("TCS") is None


def test_lookups_return_none_when_absent(store) -> None:
    assert store.get_symbol_by_id("f" * 32) is None
    assert store.get_symbol_by_trading_symbol("NOPE") is None


def test_identity_key_separates_derivative_contracts(store, make_option) -> None:
    result = store.upsert_symbols(
        [
            make_option(),
            make_option(strike_price=22100, trading_symbol="NIFTY25JAN22100CE"),
            make_option(option_type="PE", trading_symbol="NIFTY25JAN22000PE"),
        ]
    )

    assert result.new_symbols == 3


def test_symbols_by_underlying_and_chains(store, make_equity, make_option, make_future) -> None:
    store.upsert_symbols(
        [
            make_equity(),
            make_option(),
            make_option(option_type="PE", trading_symbol="NIFTY25JAN22000PE"),
            make_option(expiry_date="2025-02-27", trading_symbol="NIFTY25FEB22000CE"),
            make_future(),
            make_future(expiry_date="2025-02-27", trading_symbol="NIFTY25FEBFUT"),
        ]
    )

    derivatives = store.get_symbols_by_underlying("nifty")
    assert len(derivatives) == 5
    assert {s.instrument_type for s in derivatives} == {"OPTION", "FUTURE"}
    assert len(store.get_symbols_by_underlying("NIFTY", "FUTURE")) == 2

    chain = store.get_option_chain("NIFTY", "2025-01-30")
    assert [s.trading_symbol for s in chain.calls] == ["NIFTY25JAN22000CE"]
    assert [s.trading_symbol for s in chain.puts] == ["NIFTY25JAN22000PE"]
    assert chain.expiries == ["2025-01-30", "2025-02-27"]

    futures = store.get_futures_chain("NIFTY")
    assert [s.trading_symbol for s in futures.futures] == ["NIFTY25JANFUT", "NIFTY25FEBFUT"]


def test_search_filters(store, make_equity, make_option) -> None:
    store.upsert_symbols(
        [
            make_equity(),
            make_equity(trading_symbol="TCS", display_name="Tata Consultancy", company_name="Tata Consultancy Services", isin=None),
            make_option(),
            make_option(strike_price=23000, trading_symbol="NIFTY25JAN23000CE"),
        ]
    )

    equities = store.search_symbols_with_filters({"instrument_type": "EQUITY"})
    assert equities.total == 2
    assert {s.trading_symbol for s in equities.symbols} == {"RELIANCE", "TCS"}

    by_company = store.search_symbols_with_filters({"query": "consultancy services"})
    assert [s.trading_symbol for s in by_company.symbols] == ["TCS"]

    strikes = store.search_symbols_with_filters({"strike_min": 22500, "option_type": "CE"})
    assert [s.trading_symbol for s in strikes.symbols] == ["NIFTY25JAN23000CE"]

    expiring = store.search_symbols_with_filters({"expiry_start": "2025-01-01", "expiry_end": "2025-01-31"})
    assert expiring.total == 2


def test_search_relevance_ranks_exact_then_prefix(store, make_equity) -> None:
    store.upsert_symbols(
        [
            make_equity(trading_symbol="BSBI", display_name="B SBI", company_name="B SBI", isin=None),
            make_equity(trading_symbol="SBIN1", display_name="SBI One", company_name="SBI One", isin=None),
            make_equity(trading_symbol="SBIN", display_name="State Bank", company_name="State Bank of India", isin=None),
        ]
    )

    result = store.search_symbols_with_filters(SymbolSearchFilters(query="SBIN"))

    assert [s.trading_symbol for s in result.symbols] == ["SBIN", "SBIN1"]


def test_search_pagination_is_stable_and_complete(store, make_equity) -> None:
    store.upsert_symbols(
        [make_equity(trading_symbol=f"SYM{i:02d}", display_name="Same Name", isin=None) for i in range(23)]
    )

    seen: list[str] = []
    offset = 0
    while True:
        page = store.search_symbols_with_filters(
            SymbolSearchFilters(instrument_type="EQUITY", sort_by="name", limit=5, offset=offset)
        )
        seen.extend(s.id for s in page.symbols)
        assert page.total == 23
        assert page.has_more == (offset + 5 < 23)
        if not page.has_more:
            break
        offset += 5

    assert len(seen) == 23
    assert len(set(seen)) == 23


def test_search_results_are_cached_and_cleared_on_write(store, symbol_cache, make_equity) -> None:
    store.upsert_symbols([make_equity()])
    filters = {"instrument_type": "EQUITY"}
    assert store.search_symbols_with_filters(filters).total == 1
    assert symbol_cache.get_search_results(SymbolSearchFilters(**filters)) is not None

    store.upsert_symbols([make_equity(trading_symbol="TCS", isin=None)])

    assert store.search_symbols_with_filters(filters).total == 2


def test_entity_cache_invalidated_on_update(store, symbol_cache, make_equity) -> None:
    store.upsert_symbols([make_equity()])
    cached = store.get_symbol_by_trading_symbol("RELIANCE", "NSE")
    assert symbol_cache.get_symbol_by_id(cached.id) is not None

    store.upsert_symbols([make_equity(sector="Energy")])

    assert symbol_cache.get_symbol_by_id(cached.id) is None
    assert store.get_symbol_by_id(cached.id).sector == "Energy"


def test_exchange_lookup_does_not_shadow_bare_lookup(store, symbol_cache, make_equity) -> None:
    store.upsert_symbols([make_equity()])
    store.upsert_symbols([make_equity(exchange="BSE")])

    assert store.get_symbol_by_trading_symbol("RELIANCE", "BSE").exchange == "BSE"
    assert symbol_cache.get_symbol_by_trading_symbol("RELIANCE") is None

    assert store.get_symbol_by_trading_symbol("RELIANCE").exchange == "NSE"
    assert symbol_cache.get_symbol_by_trading_symbol("RELIANCE").exchange == "NSE"
    assert store.get_symbol_by_trading_symbol("RELIANCE", "BSE").exchange == "BSE"
    assert store.get_symbol_by_trading_symbol("RELIANCE").exchange == "NSE"


def test_deactivate_and_reactivate(store, make_equity) -> None:
    store.upsert_symbols([make_equity()])
    symbol = store.get_symbol_by_trading_symbol("RELIANCE", "NSE")

    inactive = store.deactivate_symbol(symbol.id, changed_by="ops")
    assert inactive.is_active is False
    assert store.search_symbols_with_filters({"instrument_type": "EQUITY"}).total == 0
    assert store.search_symbols_with_filters({"instrument_type": "EQUITY", "is_active": False}).total == 1

    # Re-ingestion leaves activation alone.
    store.upsert_symbols([make_equity(sector="Energy")])
    assert store.get_symbol_by_id(symbol.id).is_active is False

    active = store.reactivate_symbol(symbol.id)
    assert active.is_active is True
    changes = [h.change_type for h in store.get_symbol_history(symbol.id)]
    assert changes[:3] == ["REACTIVATED", "UPDATED", "DEACTIVATED"]
    assert store.deactivate_symbol("0" * 32) is None


def test_processing_log_lifecycle(store) -> None:
    log = store.create_processing_log(ProcessType.MANUAL_UPDATE, "upstox")
    assert log.status == "STARTED"
    assert log.completed_at is None

    done = store.update_processing_log(log.id, status=ProcessStatus.COMPLETED, total_processed=10, new_symbols=4)

    assert done.status == "COMPLETED"
    assert done.total_processed == 10
    assert done.new_symbols == 4
    assert done.completed_at is not None
    assert [entry.id for entry in store.get_recent_processing_logs()] == [log.id]

    with pytest.raises(KeyError):
        store.update_processing_log("missing", status=ProcessStatus.FAILED)
    with pytest.raises(ValueError):
        store.update_processing_log(log.id, bogus=1)


def test_rejected_symbols_and_statistics(store, make_equity, make_option) -> None:
    assert store.record_rejected_symbols("upstox", [("Missing lot_size", {"tradingsymbol": "X"})]) == 1
    rejects = store.get_rejected_symbols()
    assert rejects[0].reason == "Missing lot_size"
    assert rejects[0].raw == {"tradingsymbol": "X"}

    store.upsert_symbols([make_equity(), make_option()])
    stats = store.get_statistics()
    assert stats["total_symbols"] == 2
    assert stats["active_symbols"] == 2
    assert stats["by_instrument_type"] == {"EQUITY": 1, "OPTION": 1}
    assert stats["by_exchange"] == {"NSE": 1, "NFO": 1}
