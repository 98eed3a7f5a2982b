import logging
from myyntikunto.models.valuations import ValuationInput, ValuationOutput, ValuationMethodResult
from myyntikunto.valuation.normalizer import normalize
from myyntikunto.valuation.multiples import valuate_statement
from myyntikunto.valuation.dcf import compute_scenario_dcf
from myyntikunto.valuation.scenarios import apply_future_scenario
from myyntikunto.valuation.aggregator import (
    aggregate, compute_substance_value, confidence_from_history, select_dcf_variant,
)

logger = logging.getLogger(__name__)

# Used when scenarios are supplied without any confidence information
DEFAULT_CONFIDENCE_SCORE = 5


def resolve_confidence(confidence_score: int | None, historical_years: int | None) -> int:
    if confidence_score is not None:
        return confidence_score
    if historical_years is not None:
        return confidence_from_history(historical_years)
    return DEFAULT_CONFIDENCE_SCORE


def run_valuation(valuation_input: ValuationInput) -> ValuationOutput:
    """Normalize, value by multiples (and scenario DCF), then aggregate.

    Pure and synchronous: identical input gives identical output.
    """
    normalized = normalize(valuation_input.statement, valuation_input.adjustments)
    warnings: list[str] = []
    if valuation_input.future_scenario is not None:
        if normalized.revenue is None:
            warnings.append("Future scenario skipped: revenue is not available")
        normalized = apply_future_scenario(normalized, valuation_input.future_scenario)

    substance_value = compute_substance_value(normalized, valuation_input.liquidation_discounts)
    method_results = valuate_statement(normalized, valuation_input.multipliers, valuation_input.net_debt)

    dcf = None
    variant = None
    confidence = None
    if valuation_input.scenarios is not None:
        confidence = resolve_confidence(valuation_input.confidence_score, valuation_input.historical_years)
        variant = select_dcf_variant(confidence)
        dcf = compute_scenario_dcf(valuation_input.scenarios, valuation_input.net_debt, variant)
        method_results.append(dcf.method_result)

    if valuation_input.selected_methods is not None:
        method_results = [
            r if r.method in valuation_input.selected_methods or not r.available else _deselected(r)
            for r in method_results
        ]

    valuation_range = aggregate(substance_value, method_results)

    logger.info(
        f"Valuation computed: substance={substance_value:,.0f}, "
        f"range={valuation_range.low:,.0f}..{valuation_range.high:,.0f}, "
        f"available={[r.method for r in method_results if r.available]}"
    )

    return ValuationOutput(
        normalized_statement=normalized,
        substance_value=substance_value,
        is_substance_negative=substance_value < 0,
        valuation_range=valuation_range,
        method_results=method_results,
        probability_weighted=dcf.probability_weighted if dcf else None,
        dcf=dcf,
        dcf_variant=variant,
        confidence_score=confidence,
        warnings=warnings,
    )


def _deselected(result: ValuationMethodResult) -> ValuationMethodResult:
    return result.model_copy(update={"available": False, "unavailable_reason": "Method not selected"})
