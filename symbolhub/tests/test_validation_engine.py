from __future__ import annotations

from datetime import date

from symbolhub.data_quality.rules import Severity, ValidationIssue, ValidationRule
from symbolhub.data_quality.service import ValidationEngine, generate_quality_report


def _rules_hit(report, severity=Severity.ERROR) -> set[str]:
    return {i.rule for i in report.all_issues if i.severity == severity}


def test_well_formed_symbols_have_no_errors(validator, make_equity, make_option, make_future) -> None:
    report = validator.validate([make_equity(), make_option(), make_option(option_type="PE", trading_symbol="NIFTY25JAN22000PE"), make_future()])

    assert report.is_valid
    assert len(report.valid_symbols) == 4
    assert not report.errors()
    assert report.quality_metrics.quality_score == 100.0


def test_equity_without_company_name_is_flagged(validator, make_equity) -> None:
    report = validator.validate([make_equity(company_name=None)])

    assert not report.is_valid
    issues = [i for i in report.all_issues if i.field == "company_name"]
    assert issues and issues[0].rule == "equity_company_name_required"


def test_company_name_rule_can_be_disabled(make_equity) -> None:
    engine = ValidationEngine(today=lambda: date(2025, 1, 2), require_equity_company_name=False)

    report = engine.validate([make_equity(company_name=None)])

    assert report.is_valid
    assert "equity_company_name_required" not in {r.name for r in engine.get_rules()}


def test_option_missing_fields_each_get_their_own_issue(validator, make_option) -> None:
    candidate = make_option(underlying=None, strike_price=None, option_type=None, expiry_date=None)

    report = validator.validate([candidate])

    assert _rules_hit(report) >= {
        "option_underlying_required",
        "option_strike_price_required",
        "option_type_required",
        "option_expiry_required",
    }
    assert {i.field for i in report.errors()} >= {"underlying", "strike_price", "option_type", "expiry_date"}


def test_instrument_specific_forbidden_fields(validator, make_equity, make_option, make_future) -> None:
    report = validator.validate(
        [
            make_equity(underlying="NIFTY"),
            make_option(company_name="Nifty"),
            make_future(strike_price=22000, option_type="CE"),
        ]
    )

    assert len(report.invalid_symbols) == 3
    assert _rules_hit(report) == {
        "equity_derivative_fields_forbidden",
        "option_equity_fields_forbidden",
        "future_forbidden_fields",
    }


def test_expiry_rules(validator, make_option) -> None:
    report = validator.validate(
        [
            make_option(expiry_date="30-01-2025"),
            make_option(expiry_date="2023-06-29", trading_symbol="NIFTY23JUN22000CE"),
            make_option(expiry_date="2024-12-26", trading_symbol="NIFTY24DEC22000CE"),
        ]
    )

    assert [i.message for i in report.symbol_issues[0]] == ["Invalid expiry date format"]
    assert report.symbol_issues[1][0].message == "Expiry date is more than one year in the past"
    # Recently expired is a warning only.
    assert report.symbol_issues[2][0].severity == Severity.WARNING
    assert len(report.valid_symbols) == 1
    assert report.warning_symbols == report.valid_symbols


def test_required_fields_and_formats(validator, make_equity) -> None:
    report = validator.validate(
        [make_equity(display_name=" ", trading_symbol="reliance", segment=None, source=None, lot_size=0, tick_size=-1, isin="BAD")]
    )

    rules = {i.rule for i in report.all_issues}
    assert {
        "required_display_name",
        "trading_symbol_format",
        "required_segment",
        "required_source",
        "positive_lot_size",
        "positive_tick_size",
        "valid_isin_format",
    } <= rules
    isin_issue = next(i for i in report.all_issues if i.rule == "valid_isin_format")
    assert isin_issue.severity == Severity.WARNING


def test_unparseable_input_becomes_an_issue(validator, make_equity) -> None:
    report = validator.validate([make_equity(), make_equity(trading_symbol="TCS", tick_size="fast"), "RELIANCE"])

    assert len(report.valid_symbols) == 1
    assert len(report.invalid_symbols) == 2
    schema_issues = report.symbol_issues[1]
    assert schema_issues[0].rule == "candidate_schema"
    assert schema_issues[0].field == "tick_size"
    assert schema_issues[0].value == "fast"
    # Fields that did parse are kept on the invalid candidate.
    assert report.invalid_symbols[0].trading_symbol == "TCS"
    assert report.symbol_issues[2][0].rule == "candidate_schema"


def test_unknown_type_and_exchange(validator, make_equity) -> None:
    report = validator.validate([make_equity(instrument_type="BOND", exchange="NYSE")])

    messages = {i.message for i in report.errors()}
    assert "Invalid instrument type: BOND" in messages
    assert "Invalid exchange: NYSE" in messages


def test_duplicates_reported_without_invalidating(validator, make_equity) -> None:
    report = validator.validate([make_equity(), make_equity(display_name="Reliance"), make_equity(exchange="BSE")])

    assert report.is_valid
    assert len(report.duplicates) == 1
    assert report.duplicates[0].count == 2
    assert report.duplicates[0].key == "RELIANCE|NSE|EQUITY"
    assert report.quality_metrics.duplicate_symbols == 1


def test_quality_metrics(validator, make_equity, make_option) -> None:
    report = validator.validate([make_equity(), make_option(), make_option(lot_size=0, trading_symbol="X1")])

    metrics = report.quality_metrics
    assert metrics.total_symbols == 3
    assert metrics.valid_symbols == 2
    assert metrics.invalid_symbols == 1
    assert metrics.quality_score == 66.67
    assert metrics.instrument_type_distribution == {"EQUITY": 1, "OPTION": 2}
    assert metrics.issues_by_rule["positive_lot_size"] == 1


def test_empty_batch(validator) -> None:
    report = validator.validate([])

    assert report.is_valid
    assert report.quality_metrics.quality_score == 100.0


def test_rules_are_tunable_at_runtime(validator, make_equity) -> None:
    def _no_sbin(candidate, today):
        if candidate.trading_symbol == "SBIN":
            return [ValidationIssue("SBIN is blocked", field="trading_symbol")]
        return []

    before = len(validator.get_rules())
    validator.add_rule(ValidationRule("no_sbin", "Blocks SBIN", Severity.ERROR, _no_sbin))
    assert len(validator.get_rules()) == before + 1
    assert not validator.validate([make_equity(trading_symbol="SBIN")]).is_valid

    assert validator.remove_rule("no_sbin")
    assert not validator.remove_rule("no_sbin")
    assert validator.validate([make_equity(trading_symbol="SBIN")]).is_valid


def test_rule_that_raises_becomes_error_issue(validator, make_equity) -> None:
    def _boom(candidate, today):
        raise RuntimeError("boom")

    validator.add_rule(ValidationRule("exploding", "Always raises", Severity.WARNING, _boom))

    report = validator.validate([make_equity()])

    issue = next(i for i in report.all_issues if i.rule == "exploding")
    assert issue.severity == Severity.ERROR
    assert issue.message == "Validation rule failed: boom"
    assert not report.is_valid


def test_quality_report_markdown(validator, make_equity) -> None:
    report = validator.validate([make_equity(), make_equity(lot_size=0)])

    text = generate_quality_report(report)

    assert text.startswith("# Symbol Data Quality Report")
    assert "- Quality score: 50.00%" in text
    assert "- positive_lot_size: 1" in text
    assert validator.get_stats()["total_rules"] == len(validator.get_rules())
