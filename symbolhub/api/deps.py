from __future__ import annotations

import logging
import threading

from symbolhub.brokers.registry import ConverterRegistry, get_converter_registry
from symbolhub.config.settings import get_settings
from symbolhub.data_quality.service import ValidationEngine
from symbolhub.ingestion.processor import IngestionProcessor
from symbolhub.instruments.store import SymbolStore
from symbolhub.oms.service import OrderSymbolService
from symbolhub.shared.cache import SymbolCache
from symbolhub.shared.db import SessionLocal

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_cache: SymbolCache | None = None
_validator: ValidationEngine | None = None
_store: SymbolStore | None = None
_processor: IngestionProcessor | None = None


def get_symbol_cache() -> SymbolCache:
    global _cache
    if _cache is None:
        with _lock:
            if _cache is None:
                settings = get_settings()
                _cache = SymbolCache(
                    symbol_capacity=settings.symbol_cache_size,
                    search_capacity=settings.search_cache_size,
                    symbol_ttl_seconds=settings.symbol_cache_ttl_seconds,
                    search_ttl_seconds=settings.search_cache_ttl_seconds,
                )
    return _cache


def get_validation_engine() -> ValidationEngine:
    global _validator
    if _validator is None:
        with _lock:
            if _validator is None:
                settings = get_settings()
                _validator = ValidationEngine(require_equity_company_name=settings.require_equity_company_name)
                if not settings.require_equity_company_name:
                    logger.warning("Equity company name requirement disabled by configuration")
    return _validator


def get_symbol_store() -> SymbolStore:
    global _store
    if _store is None:
        validator = get_validation_engine()
        cache = get_symbol_cache()
        with _lock:
            if _store is None:
                _store = SymbolStore(SessionLocal, validator=validator, cache=cache)
    return _store


def get_registry() -> ConverterRegistry:
    return get_converter_registry()


def get_order_service() -> OrderSymbolService:
    return OrderSymbolService(get_symbol_store(), get_converter_registry())


def get_ingestion_processor() -> IngestionProcessor:
    global _processor
    if _processor is None:
        store = get_symbol_store()
        with _lock:
            if _processor is None:
                settings = get_settings()
                _processor = IngestionProcessor(
                    store,
                    chunk_size=settings.ingestion_chunk_size,
                    source=settings.ingestion_source_name,
                )
    return _processor


def reset_services() -> None:
    global _cache, _validator, _store, _processor
    with _lock:
        _cache = None
        _validator = None
        _store = None
        _processor = None
