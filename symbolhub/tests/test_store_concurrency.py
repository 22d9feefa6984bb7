from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from symbolhub.instruments import models
from symbolhub.instruments.store import SymbolStore
from symbolhub.shared.db import Base


def test_concurrent_upserts_of_one_key_create_one_row(tmp_path, validator, make_equity) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'symbols.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    store = SymbolStore(factory, validator=validator)

    payloads = [make_equity(sector=f"Sector {i % 3}") for i in range(12)]
    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda p: store.upsert_symbols([p]), payloads))

    assert sum(r.new_symbols for r in results) == 1
    assert sum(r.updated_symbols for r in results) == 11
    with factory() as db:
        assert db.query(models.StandardizedSymbolORM).count() == 1
        created = (
            db.query(models.SymbolHistoryORM)
            .filter(models.SymbolHistoryORM.change_type == "CREATED")
            .count()
        )
    assert created == 1
    engine.dispose()


class _StaleLookupStore(SymbolStore):
    """Misses the existing row on the first lookup, like a writer racing another process."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.lookups = 0

    def _find_by_identity(self, db, key):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return super()._find_by_identity(db, key)


def test_unique_violation_is_retried_as_update(session_factory, validator, make_equity) -> None:
    SymbolStore(session_factory, validator=validator).upsert_symbols([make_equity()])
    racing = _StaleLookupStore(session_factory, validator=validator)

    result = racing.upsert_symbols([make_equity(sector="Energy")])

    assert racing.lookups == 2
    assert (result.new_symbols, result.updated_symbols) == (0, 1)
    with session_factory() as db:
        rows = db.query(models.StandardizedSymbolORM).all()
        assert len(rows) == 1
        assert rows[0].sector == "Energy"


def test_concurrent_deactivation_records_one_change(tmp_path, validator, make_equity) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'symbols.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    store = SymbolStore(factory, validator=validator)
    store.upsert_symbols([make_equity()])
    symbol_id = store.get_symbol_by_trading_symbol("RELIANCE", "NSE").id

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda _: store.deactivate_symbol(symbol_id), range(12)))

    assert all(r.is_active is False for r in results)
    changes = [h.change_type for h in store.get_symbol_history(symbol_id)]
    assert sorted(changes) == ["CREATED", "DEACTIVATED"]
    engine.dispose()


class _TracingLock:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    def __enter__(self):
        self.events.append("lock")
        return self

    def __exit__(self, *exc) -> None:
        self.events.append("unlock")


def test_activation_takes_the_key_lock_before_the_write_session(session_factory, validator, make_equity) -> None:
    events: list[str] = []

    def _factory():
        events.append("session")
        return session_factory()

    class _TracingStore(SymbolStore):
        def _lock_for(self, key):
            return _TracingLock(events)

    store = _TracingStore(_factory, validator=validator)
    store.upsert_symbols([make_equity()])
    symbol_id = store.get_symbol_by_trading_symbol("RELIANCE", "NSE").id
    events.clear()

    store.deactivate_symbol(symbol_id)

    assert events == ["session", "lock", "session", "unlock"]
