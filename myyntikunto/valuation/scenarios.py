from myyntikunto.models.financials import NormalizedStatement
from myyntikunto.models.valuations import ScenarioProjection, ScenarioSet, FutureScenario
from myyntikunto.valuation.aggregator import FULL_DCF, SIMPLIFIED_DCF, FORWARD_LOOKING_DCF

SCENARIOS = ("pessimistic", "base", "optimistic")

_GROWTH_MULTIPLIERS = {
    FULL_DCF: {"pessimistic": 0.8, "base": 1.0, "optimistic": 1.2},
    SIMPLIFIED_DCF: {"pessimistic": 0.7, "base": 1.0, "optimistic": 1.3},
}
_FORWARD_GROWTH_SHIFT = {"pessimistic": -0.05, "base": 0.0, "optimistic": 0.05}
_MARGIN_SHIFT = {"pessimistic": -0.02, "base": 0.0, "optimistic": 0.02}
_TERMINAL_GROWTH = {"pessimistic": 0.015, "base": 0.02, "optimistic": 0.025}

FORWARD_INITIAL_GROWTH = 0.25
FORWARD_GROWTH_DECAY = 0.85
SIMPLIFIED_GROWTH_DECAY = 0.9


def projection_years(variant: str) -> int:
    return 7 if variant == FORWARD_LOOKING_DCF else 5


def _growth_rate(variant: str, growth_rate: float, year_index: int, scenario: str) -> float:
    if variant == FORWARD_LOOKING_DCF:
        rate = FORWARD_INITIAL_GROWTH * FORWARD_GROWTH_DECAY ** year_index + _FORWARD_GROWTH_SHIFT[scenario]
    elif variant == SIMPLIFIED_DCF:
        rate = growth_rate * SIMPLIFIED_GROWTH_DECAY ** year_index * _GROWTH_MULTIPLIERS[SIMPLIFIED_DCF][scenario]
    else:
        rate = growth_rate * _GROWTH_MULTIPLIERS[FULL_DCF][scenario]
    return max(-0.5, min(rate, 1.0))


def build_scenario_projections(
    base_revenue: float,
    ebitda_margin: float,
    growth_rate: float,
    wacc: float,
    variant: str,
    tax_rate: float = 0.20,
) -> ScenarioSet:
    """Derive pessimistic / base / optimistic projections from current figures."""
    years = projection_years(variant)
    projections: dict[str, ScenarioProjection] = {}

    for scenario in SCENARIOS:
        revenues: list[float] = []
        revenue = base_revenue
        for i in range(years):
            revenue = revenue * (1 + _growth_rate(variant, growth_rate, i, scenario))
            revenues.append(revenue)

        margin = min(max(ebitda_margin + _MARGIN_SHIFT[scenario], -0.20), 0.50)
        terminal_growth = min(_TERMINAL_GROWTH[scenario], wacc - 0.02)

        projections[scenario] = ScenarioProjection(
            revenue_projections=revenues,
            ebitda_margins=[margin] * years,
            tax_rate=tax_rate,
            wacc=wacc,
            terminal_growth_rate=terminal_growth,
            capex_percent=0.05 if variant == FORWARD_LOOKING_DCF else 0.03,
        )

    return ScenarioSet(**projections)


def apply_future_scenario(statement: NormalizedStatement, scenario: FutureScenario) -> NormalizedStatement:
    """Grow revenue and set EBIT from the target margin; EBITDA follows as EBIT + depreciation.

    Needs revenue. Without it the statement is returned unchanged.
    """
    if statement.revenue is None:
        return statement
    revenue = statement.revenue * (1 + scenario.revenue_growth)
    operating_profit = revenue * scenario.target_ebit_margin
    return statement.model_copy(update={
        "revenue": revenue,
        "operating_profit": operating_profit,
        # None lets effective_ebitda derive it from the new EBIT
        "ebitda": None,
    })
