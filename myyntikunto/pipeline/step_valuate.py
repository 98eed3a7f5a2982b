import logging
from myyntikunto.models.request import ValuationRequest
from myyntikunto.models.financials import FinancialStatement, NormalizationAdjustment
from myyntikunto.models.valuations import MultiplierSet, ValuationInput, ValuationOutput, ScenarioSet
from myyntikunto.valuation.engine import run_valuation, resolve_confidence
from myyntikunto.valuation.aggregator import select_dcf_variant
from myyntikunto.valuation.normalizer import normalize
from myyntikunto.valuation.scenarios import build_scenario_projections

logger = logging.getLogger(__name__)


def _generated_scenarios(request: ValuationRequest, statement: FinancialStatement) -> ScenarioSet | None:
    """Scenario projections derived from the normalized statement and an expected growth rate."""
    if request.growth_rate is None:
        return None
    if not statement.revenue or statement.revenue <= 0:
        logger.warning("Growth rate given but revenue is unavailable; scenario DCF skipped")
        return None
    ebitda = statement.effective_ebitda
    if ebitda is None:
        logger.warning("Growth rate given but EBITDA is unavailable; scenario DCF skipped")
        return None

    confidence = resolve_confidence(request.confidence_score, request.historical_years)
    variant = select_dcf_variant(confidence)
    return build_scenario_projections(
        base_revenue=statement.revenue,
        ebitda_margin=ebitda / statement.revenue,
        growth_rate=request.growth_rate,
        wacc=request.wacc,
        variant=variant,
    )


def build_valuation_input(
    request: ValuationRequest,
    statement: FinancialStatement,
    adjustments: list[NormalizationAdjustment],
    multipliers: MultiplierSet,
) -> ValuationInput:
    scenarios = request.scenarios
    if scenarios is None:
        scenarios = _generated_scenarios(request, normalize(statement, adjustments))

    return ValuationInput(
        statement=statement,
        adjustments=adjustments,
        multipliers=multipliers,
        net_debt=request.net_debt,
        liquidation_discounts=request.liquidation_discounts,
        scenarios=scenarios,
        confidence_score=request.confidence_score,
        historical_years=request.historical_years,
    )


def run_valuations(valuation_input: ValuationInput) -> ValuationOutput:
    """Step 4: Run the engine and log every method's outcome."""
    output = run_valuation(valuation_input)
    for result in output.method_results:
        if result.available:
            logger.info(
                f"{result.method}: base={result.base_value:,.0f}, "
                f"multiple={result.multiplier_used:.2f}, equity={result.equity_value:,.0f}"
            )
        else:
            logger.info(f"{result.method}: unavailable ({result.unavailable_reason})")
    return output
