from typing import List, Optional
from pydantic import BaseModel, Field

from symbolhub.instruments.schemas import SymbolCandidate


class ValidateSymbolsRequest(BaseModel):
    symbols: List[SymbolCandidate] = Field(default_factory=list)
    include_report: bool = False


class RuleInfo(BaseModel):
    name: str
    description: str
    severity: str


class RulesResponse(BaseModel):
    rules: List[RuleInfo]
    total_rules: int
    error_rules: int
    warning_rules: int
    info_rules: int


class ValidateSymbolsResponse(BaseModel):
    report: dict
    markdown: Optional[str] = None
