from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from symbolhub.api.deps import get_order_service, get_registry
from symbolhub.brokers.converters import SymbolConversionError
from symbolhub.brokers.registry import ConverterNotFoundError, ConverterRegistry
from symbolhub.oms.service import OrderSymbolService

router = APIRouter()


class OrderValidationRequest(BaseModel):
    symbol: str
    quantity: float
    price: float | None = None
    order_type: str = Field(default="MARKET", pattern="(?i)^(market|limit|sl|sl-m)$")
    exchange: str | None = None
    broker: str | None = None


@router.post("/oms/validate-order")
async def validate_order(
    payload: OrderValidationRequest,
    service: OrderSymbolService = Depends(get_order_service),
) -> dict[str, Any]:
    if payload.broker:
        try:
            prepared = service.prepare_order(
                payload.symbol,
                payload.broker,
                payload.quantity,
                price=payload.price,
                order_type=payload.order_type,
                exchange=payload.exchange,
            )
        except ConverterNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except SymbolConversionError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return prepared.to_dict()

    resolution = service.validate_and_resolve_symbol(payload.symbol, payload.exchange)
    if not resolution.is_valid:
        return {"is_valid": False, "errors": [resolution.error], "is_legacy": resolution.is_legacy}
    if resolution.symbol is None:
        return {"is_valid": True, "errors": [], "is_legacy": True, "verified": False, "warning": resolution.warning}
    result = service.validate_order_parameters(
        resolution.symbol, payload.quantity, payload.price, payload.order_type
    )
    return {
        "is_valid": result.is_valid,
        "errors": result.errors,
        "is_legacy": resolution.is_legacy,
        "verified": resolution.verified,
        "symbol": resolution.symbol.model_dump(mode="json"),
    }


@router.get("/oms/brokers")
async def list_brokers(registry: ConverterRegistry = Depends(get_registry)) -> dict[str, Any]:
    return registry.get_converter_stats()
