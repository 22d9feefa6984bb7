from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel


class AppSettings(BaseModel):
    app_name: str = "SymbolHub API"
    app_version: str = "0.1.0"
    sqlite_url: str = "sqlite:///./symbolhub/symbolhub.db"
    log_level: str = "INFO"
    symbol_cache_size: int = 10000
    search_cache_size: int = 1000
    symbol_cache_ttl_seconds: int = 1800
    search_cache_ttl_seconds: int = 300
    ingestion_chunk_size: int = 1000
    ingestion_source_path: str | None = None
    ingestion_source_name: str = "upstox"
    ingestion_interval_seconds: int = 24 * 60 * 60
    # Two equity rule sets exist upstream; the stricter one is the default.
    require_equity_company_name: bool = True


def _env(name: str) -> str | None:
    return os.getenv(f"SYMBOLHUB_{name}")


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    base = Path(__file__).resolve().parents[2]
    settings_path = base / "config" / "settings.yaml"
    payload: dict[str, Any] = {}
    if settings_path.exists():
        payload = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
    if not isinstance(payload, dict):
        payload = {}
    app_cfg = payload.get("app", {}) or {}
    cache_cfg = payload.get("cache", {}) or {}
    ingest_cfg = payload.get("ingestion", {}) or {}
    validation_cfg = payload.get("validation", {}) or {}
    return AppSettings(
        app_name=_env("APP_NAME") or app_cfg.get("name", "SymbolHub API"),
        app_version=_env("APP_VERSION") or app_cfg.get("version", "0.1.0"),
        sqlite_url=_env("SQLITE_URL") or payload.get("sqlite_url", "sqlite:///./symbolhub/symbolhub.db"),
        log_level=(_env("LOG_LEVEL") or app_cfg.get("log_level", "INFO")).upper(),
        symbol_cache_size=int(_env("SYMBOL_CACHE_SIZE") or cache_cfg.get("symbol_size", 10000)),
        search_cache_size=int(_env("SEARCH_CACHE_SIZE") or cache_cfg.get("search_size", 1000)),
        symbol_cache_ttl_seconds=int(
            _env("SYMBOL_CACHE_TTL_SECONDS") or cache_cfg.get("symbol_ttl_seconds", 1800)
        ),
        search_cache_ttl_seconds=int(
            _env("SEARCH_CACHE_TTL_SECONDS") or cache_cfg.get("search_ttl_seconds", 300)
        ),
        ingestion_chunk_size=int(_env("INGESTION_CHUNK_SIZE") or ingest_cfg.get("chunk_size", 1000)),
        ingestion_source_path=_env("INGESTION_SOURCE_PATH") or ingest_cfg.get("source_path"),
        ingestion_source_name=_env("INGESTION_SOURCE_NAME") or ingest_cfg.get("source_name", "upstox"),
        ingestion_interval_seconds=int(
            _env("INGESTION_INTERVAL_SECONDS") or ingest_cfg.get("interval_seconds", 24 * 60 * 60)
        ),
        require_equity_company_name=_env_bool(
            "REQUIRE_EQUITY_COMPANY_NAME",
            bool(validation_cfg.get("require_equity_company_name", True)),
        ),
    )
