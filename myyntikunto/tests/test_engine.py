import pytest
from pydantic import ValidationError

from myyntikunto.models.financials import FinancialStatement, NormalizationAdjustment
from myyntikunto.models.valuations import MultiplierRange, MultiplierSet, ValuationInput, ScenarioSet, FutureScenario
from myyntikunto.valuation.engine import run_valuation, resolve_confidence, DEFAULT_CONFIDENCE_SCORE
from myyntikunto.valuation.scenarios import build_scenario_projections
from myyntikunto.valuation.aggregator import FULL_DCF


@pytest.fixture
def loss_making_statement():
    return FinancialStatement(
        revenue=1_000_000,
        personnel_costs=400_000,
        operating_profit=-50_000,
        fixed_assets=200_000,
        current_assets=300_000,
        short_term_liabilities=150_000,
        long_term_liabilities=250_000,
    )


@pytest.fixture
def multipliers():
    return MultiplierSet(
        revenue=MultiplierRange(min=0.5, avg=0.8, max=1.2),
        ev_ebit=MultiplierRange(min=4.0, avg=6.0, max=8.0),
    )


def test_loss_making_company(loss_making_statement, multipliers):
    output = run_valuation(ValuationInput(
        statement=loss_making_statement, multipliers=multipliers, net_debt=100_000,
    ))

    methods = {r.method: r for r in output.method_results}
    assert not methods["ev_ebit"].available
    assert methods["ev_ebit"].equity_value == 0

    revenue = methods["revenue"]
    assert revenue.available
    assert revenue.equity_values.as_list() == pytest.approx([400_000, 700_000, 1_100_000])

    assert output.substance_value == 100_000
    assert not output.is_substance_negative
    assert output.valuation_range.low == 0
    assert output.valuation_range.high == pytest.approx(1_100_000)
    assert output.valuation_range.base == pytest.approx(700_000)
    assert output.probability_weighted is None


def test_normalization_turns_ebit_positive(loss_making_statement, multipliers):
    adjustment = NormalizationAdjustment(
        category="owner_salary", original_value=400_000, normalized_value=300_000,
    )
    output = run_valuation(ValuationInput(
        statement=loss_making_statement, adjustments=[adjustment], multipliers=multipliers,
    ))
    assert output.normalized_statement.operating_profit == 50_000
    ebit = next(r for r in output.method_results if r.method == "ev_ebit")
    assert ebit.available
    assert ebit.equity_value == 300_000


def test_camel_case_input(loss_making_statement):
    payload = {
        "statement": loss_making_statement.model_dump(),
        "adjustments": [],
        "multipliers": {
            "revenue": {"min": 0.5, "avg": 0.8, "max": 1.2},
            "evEbit": {"min": 4, "avg": 6, "max": 8},
        },
        "netDebt": 100_000,
    }
    output = run_valuation(ValuationInput.model_validate(payload))
    assert output.valuation_range.high == pytest.approx(1_100_000)


def test_malformed_statement_rejected(multipliers):
    with pytest.raises(ValidationError):
        ValuationInput.model_validate({
            "statement": {"revenue": 1_000_000, "fixed_assets": 10},
            "multipliers": multipliers.model_dump(),
        })


def test_liability_overhang(multipliers):
    statement = FinancialStatement(
        revenue=0, operating_profit=-20_000,
        fixed_assets=10_000, current_assets=20_000,
        short_term_liabilities=80_000, long_term_liabilities=50_000,
    )
    output = run_valuation(ValuationInput(statement=statement, multipliers=multipliers))
    assert output.is_substance_negative
    assert all(not r.available for r in output.method_results)
    assert output.valuation_range.low == -100_000
    assert output.valuation_range.high == 0


def test_scenario_dcf_included(loss_making_statement, multipliers):
    statement = loss_making_statement.model_copy(update={"operating_profit": 120_000, "depreciation": 30_000})
    scenarios = build_scenario_projections(1_000_000, 0.15, 0.05, 0.12, FULL_DCF)
    output = run_valuation(ValuationInput(
        statement=statement, multipliers=multipliers, scenarios=scenarios, historical_years=5,
    ))

    assert output.confidence_score == 10
    assert output.dcf_variant == FULL_DCF
    assert output.dcf is not None
    assert output.probability_weighted is not None
    dcf = next(r for r in output.method_results if r.method == "dcf")
    assert dcf.available
    assert output.valuation_range.high >= dcf.equity_values.max


def test_deterministic(loss_making_statement, multipliers):
    valuation_input = ValuationInput(statement=loss_making_statement, multipliers=multipliers, net_debt=5)
    assert run_valuation(valuation_input).model_dump() == run_valuation(valuation_input).model_dump()


def test_resolve_confidence():
    assert resolve_confidence(3, 10) == 3
    assert resolve_confidence(None, 2) == 4
    assert resolve_confidence(None, None) == DEFAULT_CONFIDENCE_SCORE


def test_future_scenario_recomputes_ebit(loss_making_statement, multipliers):
    statement = loss_making_statement.model_copy(update={"depreciation": 20_000})
    output = run_valuation(ValuationInput(
        statement=statement, multipliers=multipliers, net_debt=100_000,
        future_scenario=FutureScenario(revenue_growth=0.2, target_ebit_margin=0.05),
    ))

    normalized = output.normalized_statement
    assert normalized.revenue == pytest.approx(1_200_000)
    assert normalized.operating_profit == pytest.approx(60_000)
    assert normalized.effective_ebitda == pytest.approx(80_000)
    ebit = next(r for r in output.method_results if r.method == "ev_ebit")
    assert ebit.available
    assert ebit.equity_value == pytest.approx(60_000 * 6 - 100_000)
    assert output.warnings == []


def test_future_scenario_needs_revenue(loss_making_statement, multipliers):
    statement = loss_making_statement.model_copy(update={"revenue": None})
    output = run_valuation(ValuationInput(
        statement=statement, multipliers=multipliers,
        future_scenario=FutureScenario(revenue_growth=0.2, target_ebit_margin=0.05),
    ))
    assert output.normalized_statement.operating_profit == -50_000
    assert output.warnings == ["Future scenario skipped: revenue is not available"]


def test_deselected_method_leaves_range(loss_making_statement, multipliers):
    output = run_valuation(ValuationInput(
        statement=loss_making_statement, multipliers=multipliers, net_debt=100_000,
        selected_methods=["ev_ebit"],
    ))

    revenue = next(r for r in output.method_results if r.method == "revenue")
    assert not revenue.available
    assert revenue.unavailable_reason == "Method not selected"
    ebit = next(r for r in output.method_results if r.method == "ev_ebit")
    assert ebit.unavailable_reason != "Method not selected"
    # Only the substance value is left
    assert output.valuation_range.high == 100_000
    assert output.valuation_range.base == 100_000


def test_unknown_selected_method_rejected(loss_making_statement, multipliers):
    with pytest.raises(ValidationError):
        ValuationInput(statement=loss_making_statement, multipliers=multipliers, selected_methods=["ev_sales"])


def test_output_serializes_camel_case_keys(loss_making_statement, multipliers):
    output = run_valuation(ValuationInput(statement=loss_making_statement, multipliers=multipliers))
    by_alias = output.model_dump(by_alias=True)
    assert {"valuationRange", "methodResults", "probabilityWeighted"} <= set(by_alias)
    assert "valuation_range" in output.model_dump()
