from fastapi import APIRouter, Depends

from symbolhub.api.deps import get_validation_engine
from symbolhub.data_quality.schemas import (
    RuleInfo,
    RulesResponse,
    ValidateSymbolsRequest,
    ValidateSymbolsResponse,
)
from symbolhub.data_quality.service import ValidationEngine, generate_quality_report

router = APIRouter(prefix="/data-quality", tags=["data_quality"])


@router.post("/validate", response_model=ValidateSymbolsResponse)
async def validate_symbols(
    request: ValidateSymbolsRequest,
    engine: ValidationEngine = Depends(get_validation_engine),
):
    report = engine.validate(request.symbols)
    markdown = generate_quality_report(report) if request.include_report else None
    return ValidateSymbolsResponse(report=report.to_dict(), markdown=markdown)


@router.get("/rules", response_model=RulesResponse)
async def list_rules(engine: ValidationEngine = Depends(get_validation_engine)):
    rules = [
        RuleInfo(name=r.name, description=r.description, severity=r.severity.value)
        for r in engine.get_rules()
    ]
    return RulesResponse(rules=rules, **engine.get_stats())
