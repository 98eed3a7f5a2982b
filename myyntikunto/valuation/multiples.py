from myyntikunto.models.financials import FinancialStatement
from myyntikunto.models.valuations import (
    MultiplierRange, MultiplierSet, ValuationMethodResult, ValuePoints,
)

REVENUE = "revenue"
EV_EBIT = "ev_ebit"
EV_EBITDA = "ev_ebitda"
PROFIT_BASED_METHODS = {EV_EBIT, EV_EBITDA}

# Revenue multiples above the threshold are halved and capped
REVENUE_DAMPING_THRESHOLD = 3.0
REVENUE_DAMPING_FACTOR = 0.5

DEFAULT_MULTIPLIERS = MultiplierSet(
    revenue=MultiplierRange(
        min=0.5, avg=1.0, max=1.5,
        justification="Default multipliers: no industry-specific multipliers were found.",
        source="Default multipliers",
    ),
    ev_ebit=MultiplierRange(
        min=4.0, avg=6.0, max=8.0,
        justification="Default multipliers: no industry-specific multipliers were found.",
        source="Default multipliers",
    ),
)

_BASE_FIGURE_LABELS = {
    REVENUE: "Revenue",
    EV_EBIT: "EBIT",
    EV_EBITDA: "EBITDA",
}


def damp_revenue_multiplier(multiplier: float) -> float:
    if multiplier > REVENUE_DAMPING_THRESHOLD:
        return min(REVENUE_DAMPING_THRESHOLD, multiplier * REVENUE_DAMPING_FACTOR)
    return multiplier


def effective_multipliers(method: str, multiplier_range: MultiplierRange) -> ValuePoints:
    points = ValuePoints(min=multiplier_range.min, avg=multiplier_range.avg, max=multiplier_range.max)
    if method != REVENUE:
        return points
    return ValuePoints(
        min=damp_revenue_multiplier(points.min),
        avg=damp_revenue_multiplier(points.avg),
        max=damp_revenue_multiplier(points.max),
    )


def base_value_for(method: str, statement: FinancialStatement) -> float | None:
    if method == REVENUE:
        return statement.revenue
    if method == EV_EBIT:
        return statement.operating_profit
    if method == EV_EBITDA:
        return statement.effective_ebitda
    return None


def valuate(
    method: str,
    base_value: float | None,
    multiplier_range: MultiplierRange | None,
    net_debt: float,
) -> ValuationMethodResult:
    """Apply a multiplier range to a financial figure. Never raises."""
    label = _BASE_FIGURE_LABELS.get(method, method)

    if method not in _BASE_FIGURE_LABELS:
        return _unavailable(method, base_value, f"Unknown valuation method '{method}'")
    if multiplier_range is None:
        return _unavailable(method, base_value, f"No {label} multipliers supplied")
    if base_value is None:
        return _unavailable(method, base_value, f"{label} is not available in the statement")
    if base_value <= 0:
        if method in PROFIT_BASED_METHODS:
            reason = f"{label} ({base_value:,.0f}) is zero or negative, multiple not applicable"
        else:
            reason = f"{label} ({base_value:,.0f}) must be positive"
        return _unavailable(method, base_value, reason)

    multipliers = effective_multipliers(method, multiplier_range)
    warnings: list[str] = []
    if method == REVENUE and multipliers.max != multiplier_range.max:
        warnings.append(
            f"Revenue multiple above {REVENUE_DAMPING_THRESHOLD:.1f}x damped "
            f"(max {multiplier_range.max:.2f}x -> {multipliers.max:.2f}x)"
        )

    enterprise_values = ValuePoints(
        min=base_value * multipliers.min,
        avg=base_value * multipliers.avg,
        max=base_value * multipliers.max,
    )
    equity_values = ValuePoints(
        min=enterprise_values.min - net_debt,
        avg=enterprise_values.avg - net_debt,
        max=enterprise_values.max - net_debt,
    )

    return ValuationMethodResult(
        method=method,
        base_value=base_value,
        multiplier_used=multipliers.avg,
        effective_multipliers=multipliers,
        enterprise_value=enterprise_values.avg,
        equity_value=equity_values.avg,
        enterprise_values=enterprise_values,
        equity_values=equity_values,
        available=True,
        warnings=warnings,
    )


def valuate_statement(
    statement: FinancialStatement,
    multipliers: MultiplierSet,
    net_debt: float,
) -> list[ValuationMethodResult]:
    """Run every multiple-based method the multiplier set covers."""
    ranges = {
        REVENUE: multipliers.revenue,
        EV_EBIT: multipliers.ev_ebit,
        EV_EBITDA: multipliers.ev_ebitda,
    }
    return [
        valuate(method, base_value_for(method, statement), multiplier_range, net_debt)
        for method, multiplier_range in ranges.items()
        # EBITDA is only valued when a multiplier for it was supplied
        if multiplier_range is not None or method != EV_EBITDA
    ]


def _unavailable(method: str, base_value: float | None, reason: str) -> ValuationMethodResult:
    return ValuationMethodResult(
        method=method,
        base_value=base_value,
        available=False,
        unavailable_reason=reason,
    )
