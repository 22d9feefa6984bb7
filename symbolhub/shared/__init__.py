from __future__ import annotations

from symbolhub.shared.cache import LRUCache, SymbolCache
from symbolhub.shared.db import Base, SessionLocal, engine, init_db

__all__ = [
    "LRUCache",
    "SymbolCache",
    "Base",
    "engine",
    "SessionLocal",
    "init_db",
]
