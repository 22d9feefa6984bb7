from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from symbolhub.data_quality.rules import Severity, ValidationIssue, ValidationRule, default_rules
from symbolhub.instruments.keys import identity_key
from symbolhub.instruments.schemas import SymbolCandidate

logger = logging.getLogger(__name__)

SCHEMA_RULE = "candidate_schema"


@dataclass
class DuplicateGroup:
    key: str
    symbols: list[SymbolCandidate]
    count: int


@dataclass
class QualityMetrics:
    total_symbols: int = 0
    valid_symbols: int = 0
    invalid_symbols: int = 0
    warning_symbols: int = 0
    duplicate_symbols: int = 0
    quality_score: float = 100.0
    issues_by_rule: dict[str, int] = field(default_factory=dict)
    issues_by_severity: dict[str, int] = field(default_factory=dict)
    instrument_type_distribution: dict[str, int] = field(default_factory=dict)
    exchange_distribution: dict[str, int] = field(default_factory=dict)


@dataclass
class ValidationReport:
    is_valid: bool
    valid_symbols: list[SymbolCandidate] = field(default_factory=list)
    invalid_symbols: list[SymbolCandidate] = field(default_factory=list)
    warning_symbols: list[SymbolCandidate] = field(default_factory=list)
    all_issues: list[ValidationIssue] = field(default_factory=list)
    symbol_issues: dict[int, list[ValidationIssue]] = field(default_factory=dict)
    duplicates: list[DuplicateGroup] = field(default_factory=list)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)
    processing_time_ms: float = 0.0

    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.all_issues if i.severity == Severity.ERROR]

    def to_dict(self) -> dict[str, Any]:
        m = self.quality_metrics
        return {
            "is_valid": self.is_valid,
            "valid_symbols": [s.model_dump() for s in self.valid_symbols],
            "invalid_symbols": [s.model_dump() for s in self.invalid_symbols],
            "warning_symbols": [s.model_dump() for s in self.warning_symbols],
            "all_issues": [i.to_dict() for i in self.all_issues],
            "symbol_issues": {str(k): [i.to_dict() for i in v] for k, v in self.symbol_issues.items()},
            "duplicates": [
                {"key": d.key, "count": d.count, "symbols": [s.model_dump() for s in d.symbols]}
                for d in self.duplicates
            ],
            "quality_metrics": {
                "total_symbols": m.total_symbols,
                "valid_symbols": m.valid_symbols,
                "invalid_symbols": m.invalid_symbols,
                "warning_symbols": m.warning_symbols,
                "duplicate_symbols": m.duplicate_symbols,
                "quality_score": m.quality_score,
                "issues_by_rule": m.issues_by_rule,
                "issues_by_severity": m.issues_by_severity,
                "instrument_type_distribution": m.instrument_type_distribution,
                "exchange_distribution": m.exchange_distribution,
            },
            "processing_time_ms": self.processing_time_ms,
        }


def quality_score(valid: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return round(valid / total * 100, 2)


def _coerce(raw: Any) -> tuple[SymbolCandidate, list[ValidationIssue]]:
    """Parse one input into a candidate; unparseable fields become issues and are dropped."""
    if isinstance(raw, SymbolCandidate):
        return raw, []
    try:
        return SymbolCandidate.model_validate(raw), []
    except ValidationError as exc:
        issues: list[ValidationIssue] = []
        bad_fields: set[str] = set()
        for err in exc.errors():
            name = str(err["loc"][0]) if err.get("loc") else None
            if name:
                bad_fields.add(name)
            issues.append(
                ValidationIssue(
                    f"Invalid value: {err.get('msg', 'unparseable')}",
                    field=name,
                    value=err.get("input"),
                    rule=SCHEMA_RULE,
                    severity=Severity.ERROR,
                )
            )
    if not isinstance(raw, Mapping):
        return SymbolCandidate(), issues
    kept = {k: v for k, v in raw.items() if k not in bad_fields}
    try:
        return SymbolCandidate.model_validate(kept), issues
    except ValidationError:
        return SymbolCandidate(), issues


class ValidationEngine:
    def __init__(
        self,
        rules: list[ValidationRule] | None = None,
        today: Callable[[], date] = date.today,
        require_equity_company_name: bool = True,
    ) -> None:
        self._rules: list[ValidationRule] = (
            list(rules) if rules is not None else default_rules(require_equity_company_name)
        )
        self._today = today

    def add_rule(self, rule: ValidationRule) -> None:
        """Append ``rule``, replacing any existing rule with the same name in place."""
        for idx, existing in enumerate(self._rules):
            if existing.name == rule.name:
                self._rules[idx] = rule
                return
        self._rules.append(rule)

    def remove_rule(self, name: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.name != name]
        return len(self._rules) != before

    def get_rules(self) -> list[ValidationRule]:
        return list(self._rules)

    def get_stats(self) -> dict[str, int]:
        counts = Counter(r.severity for r in self._rules)
        return {
            "total_rules": len(self._rules),
            "error_rules": counts.get(Severity.ERROR, 0),
            "warning_rules": counts.get(Severity.WARNING, 0),
            "info_rules": counts.get(Severity.INFO, 0),
        }

    def validate_symbol(self, candidate: SymbolCandidate, today: date | None = None) -> list[ValidationIssue]:
        today = today or self._today()
        issues: list[ValidationIssue] = []
        for rule in self._rules:
            try:
                found = rule.check(candidate, today)
            except Exception as exc:
                logger.warning("Validation rule %s raised: %s", rule.name, exc)
                issues.append(
                    ValidationIssue(
                        f"Validation rule failed: {exc}",
                        rule=rule.name,
                        severity=Severity.ERROR,
                    )
                )
                continue
            for issue in found:
                issues.append(replace(issue, rule=rule.name, severity=rule.severity))
        return issues

    def validate(self, candidates: Iterable[SymbolCandidate | dict[str, Any]]) -> ValidationReport:
        started = time.perf_counter()
        today = self._today()
        parsed = [_coerce(c) for c in candidates]
        items = [candidate for candidate, _ in parsed]
        report = ValidationReport(is_valid=True)

        for idx, (candidate, schema_issues) in enumerate(parsed):
            issues = schema_issues + self.validate_symbol(candidate, today)
            if issues:
                report.symbol_issues[idx] = issues
                report.all_issues.extend(issues)
            if any(i.severity == Severity.ERROR for i in issues):
                report.invalid_symbols.append(candidate)
                continue
            report.valid_symbols.append(candidate)
            if any(i.severity == Severity.WARNING for i in issues):
                report.warning_symbols.append(candidate)

        report.duplicates = find_duplicates(items)
        report.is_valid = not report.invalid_symbols
        report.quality_metrics = self._metrics(items, report)
        report.processing_time_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.debug(
            "Validated %s symbols: %s valid, %s invalid, %s duplicate groups",
            len(items),
            len(report.valid_symbols),
            len(report.invalid_symbols),
            len(report.duplicates),
        )
        return report

    def _metrics(self, items: list[SymbolCandidate], report: ValidationReport) -> QualityMetrics:
        total = len(items)
        valid = len(report.valid_symbols)
        return QualityMetrics(
            total_symbols=total,
            valid_symbols=valid,
            invalid_symbols=len(report.invalid_symbols),
            warning_symbols=len(report.warning_symbols),
            duplicate_symbols=sum(d.count - 1 for d in report.duplicates),
            quality_score=quality_score(valid, total),
            issues_by_rule=dict(Counter(i.rule for i in report.all_issues)),
            issues_by_severity=dict(Counter(i.severity.value for i in report.all_issues)),
            instrument_type_distribution=dict(Counter((c.instrument_type or "UNKNOWN").upper() for c in items)),
            exchange_distribution=dict(Counter((c.exchange or "UNKNOWN").upper() for c in items)),
        )


def find_duplicates(items: list[SymbolCandidate]) -> list[DuplicateGroup]:
    groups: dict[str, list[SymbolCandidate]] = {}
    for candidate in items:
        groups.setdefault(identity_key(candidate.model_dump()), []).append(candidate)
    return [
        DuplicateGroup(key=key, symbols=members, count=len(members))
        for key, members in groups.items()
        if len(members) > 1
    ]


def generate_quality_report(report: ValidationReport) -> str:
    m = report.quality_metrics
    lines = [
        "# Symbol Data Quality Report",
        "",
        "## Summary",
        f"- Total symbols: {m.total_symbols}",
        f"- Valid symbols: {m.valid_symbols}",
        f"- Invalid symbols: {m.invalid_symbols}",
        f"- Symbols with warnings: {m.warning_symbols}",
        f"- Duplicate symbols: {m.duplicate_symbols}",
        f"- Quality score: {m.quality_score:.2f}%",
        f"- Processing time: {report.processing_time_ms:.1f} ms",
        "",
        "## Issues by severity",
    ]
    for severity, count in sorted(m.issues_by_severity.items()):
        lines.append(f"- {severity}: {count}")
    lines.extend(["", "## Issues by rule"])
    for rule, count in sorted(m.issues_by_rule.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"- {rule}: {count}")
    lines.extend(["", "## Instrument types"])
    for kind, count in sorted(m.instrument_type_distribution.items()):
        lines.append(f"- {kind}: {count}")
    lines.extend(["", "## Exchanges"])
    for exchange, count in sorted(m.exchange_distribution.items()):
        lines.append(f"- {exchange}: {count}")
    if report.duplicates:
        lines.extend(["", "## Duplicates"])
        for group in report.duplicates:
            lines.append(f"- {group.key} ({group.count} records)")
    return "\n".join(lines) + "\n"
