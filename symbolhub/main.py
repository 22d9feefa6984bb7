from __future__ import annotations

import logging

from fastapi import FastAPI

from symbolhub.api import register_api_routers
from symbolhub.api.deps import get_ingestion_processor, get_symbol_cache, get_symbol_store
from symbolhub.config.settings import get_settings
from symbolhub.ingestion.loader import SymbolIngestionLoader
from symbolhub.shared.db import init_db

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)
register_api_routers(app)

_ingestion_loader: SymbolIngestionLoader | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _ingestion_loader
    init_db()
    if settings.ingestion_source_path:
        _ingestion_loader = SymbolIngestionLoader(
            get_ingestion_processor(),
            settings.ingestion_source_path,
            refresh_interval_seconds=settings.ingestion_interval_seconds,
        )
        await _ingestion_loader.start()
    else:
        get_symbol_cache().warm_cache(get_symbol_store())


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _ingestion_loader
    if _ingestion_loader:
        await _ingestion_loader.stop()
        _ingestion_loader = None


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}
