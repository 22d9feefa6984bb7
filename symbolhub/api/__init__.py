from __future__ import annotations

from fastapi import FastAPI


def register_api_routers(app: FastAPI) -> None:
    from symbolhub.data_quality.routes import router as data_quality_router
    from symbolhub.instruments.routes import router as symbols_router
    from symbolhub.oms.routes import router as oms_router

    app.include_router(symbols_router, prefix="/api")
    app.include_router(data_quality_router, prefix="/api")
    app.include_router(oms_router, prefix="/api")


__all__ = ["register_api_routers"]
