import statistics
from myyntikunto.models.financials import FinancialStatement, LiquidationDiscounts
from myyntikunto.models.valuations import (
    ValuationMethodResult, ValuationRange, ProbabilityWeightedValuation, ScenarioValues,
)

# Fixed scenario weighting, not user-configurable
SCENARIO_WEIGHTS: dict[str, float] = {
    "pessimistic": 0.2,
    "base": 0.6,
    "optimistic": 0.2,
}

FULL_DCF = "full_dcf"
SIMPLIFIED_DCF = "simplified_dcf"
FORWARD_LOOKING_DCF = "forward_looking_dcf"


def compute_substance_value(
    statement: FinancialStatement,
    discounts: LiquidationDiscounts | None = None,
) -> float:
    """Net asset value: (discounted) assets minus all liabilities."""
    discounts = discounts or LiquidationDiscounts()
    assets = (
        statement.fixed_assets * discounts.fixed_assets
        + statement.current_assets * discounts.current_assets
    )
    return assets - statement.total_liabilities


def probability_weighted(pessimistic: float, base: float, optimistic: float) -> ProbabilityWeightedValuation:
    weighted = (
        SCENARIO_WEIGHTS["pessimistic"] * pessimistic
        + SCENARIO_WEIGHTS["base"] * base
        + SCENARIO_WEIGHTS["optimistic"] * optimistic
    )
    return ProbabilityWeightedValuation(
        weighted_equity_value=weighted,
        scenario_values=ScenarioValues(pessimistic=pessimistic, base=base, optimistic=optimistic),
        weights=dict(SCENARIO_WEIGHTS),
    )


def aggregate(substance_value: float, method_results: list[ValuationMethodResult]) -> ValuationRange:
    """Combine the substance value and every available method into one range.

    The floor is never above zero and drops below it when liabilities exceed
    assets. With no usable method the substance value alone bounds the range.
    """
    available = [r for r in method_results if r.available]

    low = min(substance_value, 0.0)

    candidates = [v for r in available for v in r.equity_values.as_list()]
    candidates.append(substance_value)
    positive = [v for v in candidates if v > 0]
    high = max(positive) if positive else 0.0

    central = [r.equity_value for r in available if r.equity_value > 0]
    base = statistics.median(central) if central else max(substance_value, 0.0)
    base = min(max(base, low), high)

    return ValuationRange(low=low, base=base, high=high)


def confidence_from_history(reliable_years: int) -> int:
    """Score 0-10 from the number of years of reliable historical data."""
    return max(0, min(10, 2 * reliable_years))


def select_dcf_variant(confidence_score: int) -> str:
    if confidence_score >= 8:
        return FULL_DCF
    if confidence_score >= 5:
        return SIMPLIFIED_DCF
    return FORWARD_LOOKING_DCF
