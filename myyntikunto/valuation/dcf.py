from myyntikunto.models.valuations import (
    ScenarioProjection, ScenarioSet, DCFResult, SensitivityCell, ScenarioDCFResult,
    ValuationMethodResult, ValuePoints,
)
from myyntikunto.valuation.aggregator import probability_weighted, FORWARD_LOOKING_DCF

# Discount for lack of marketability: SME shares are not liquid investments
DLOM_DEFAULT = 0.20
DLOM_FORWARD_LOOKING = 0.30


def dlom_for_variant(variant: str) -> float:
    return DLOM_FORWARD_LOOKING if variant == FORWARD_LOOKING_DCF else DLOM_DEFAULT


def _compute_ev(
    revenue_projections: list[float],
    ebitda_margins: list[float],
    capex_percent: float,
    nwc_change_percent: float,
    tax_rate: float,
    depreciation_percent: float,
    wacc: float,
    tgr: float,
) -> tuple[float, list[float], float]:
    """Core DCF computation. Returns (enterprise_value, fcfs, terminal_value)."""
    n_years = len(revenue_projections)
    fcfs: list[float] = []

    for i in range(n_years):
        revenue = revenue_projections[i]
        margin = ebitda_margins[i] if i < len(ebitda_margins) else ebitda_margins[-1]
        ebitda = revenue * margin
        ebit = ebitda - revenue * depreciation_percent
        tax = max(0.0, ebit * tax_rate)
        capex = revenue * capex_percent
        nwc_change = revenue * nwc_change_percent
        fcfs.append(ebitda - tax - capex - nwc_change)

    pv_fcfs = sum(fcf / (1 + wacc) ** (i + 1) for i, fcf in enumerate(fcfs))

    terminal_value = fcfs[-1] * (1 + tgr) / (wacc - tgr)
    pv_terminal = terminal_value / (1 + wacc) ** n_years

    return pv_fcfs + pv_terminal, fcfs, terminal_value


def _compute_sensitivity_table(projection: ScenarioProjection) -> list[SensitivityCell]:
    """5x5 grid: WACC +/-2% x TGR +/-1%, skip where WACC <= TGR."""
    wacc_steps = [projection.wacc + delta for delta in [-0.02, -0.01, 0.0, 0.01, 0.02]]
    tgr_steps = [projection.terminal_growth_rate + delta for delta in [-0.01, -0.005, 0.0, 0.005, 0.01]]

    cells: list[SensitivityCell] = []
    for w in wacc_steps:
        for t in tgr_steps:
            if w <= t or w <= 0:
                continue
            ev, _, _ = _compute_ev(
                projection.revenue_projections, projection.ebitda_margins,
                projection.capex_percent, projection.nwc_change_percent,
                projection.tax_rate, projection.depreciation_percent, w, t,
            )
            cells.append(SensitivityCell(
                wacc=round(w, 4),
                terminal_growth_rate=round(t, 4),
                enterprise_value=round(ev, 2),
            ))
    return cells


def compute_dcf_valuation(
    projection: ScenarioProjection,
    net_debt: float = 0.0,
    dlom: float = DLOM_DEFAULT,
    scenario: str = "base",
    with_sensitivity: bool = False,
) -> DCFResult:
    """Discount one scenario's projected free cash flows into an equity value."""
    wacc = projection.wacc
    tgr = projection.terminal_growth_rate

    def _empty(warning: str) -> DCFResult:
        return DCFResult(
            scenario=scenario,
            enterprise_value=0.0,
            projected_fcfs=[],
            terminal_value=0.0,
            discount_rate=wacc,
            terminal_growth_rate=tgr,
            warnings=[warning],
        )

    if wacc <= tgr:
        return _empty(f"WACC ({wacc}) must be greater than terminal growth rate ({tgr})")
    if not projection.revenue_projections:
        return _empty("No revenue projections provided")
    if not projection.ebitda_margins:
        return _empty("No EBITDA margins provided")

    enterprise_value, fcfs, terminal_value = _compute_ev(
        projection.revenue_projections,
        projection.ebitda_margins,
        projection.capex_percent,
        projection.nwc_change_percent,
        projection.tax_rate,
        projection.depreciation_percent,
        wacc,
        tgr,
    )

    warnings: list[str] = []
    if terminal_value < 0:
        warnings.append("Negative terminal value: final-year free cash flow is negative")

    adjusted = enterprise_value * (1 - dlom)
    return DCFResult(
        scenario=scenario,
        enterprise_value=enterprise_value,
        adjusted_enterprise_value=adjusted,
        equity_value=adjusted - net_debt,
        projected_fcfs=fcfs,
        terminal_value=terminal_value,
        discount_rate=wacc,
        terminal_growth_rate=tgr,
        warnings=warnings,
        sensitivity_table=_compute_sensitivity_table(projection) if with_sensitivity else [],
    )


def compute_scenario_dcf(scenarios: ScenarioSet, net_debt: float, variant: str) -> ScenarioDCFResult:
    """Value the pessimistic, base and optimistic projections and weight them."""
    dlom = dlom_for_variant(variant)
    results = {
        name: compute_dcf_valuation(
            getattr(scenarios, name), net_debt, dlom,
            scenario=name, with_sensitivity=(name == "base"),
        )
        for name in ("pessimistic", "base", "optimistic")
    }

    weighted = probability_weighted(
        results["pessimistic"].equity_value,
        results["base"].equity_value,
        results["optimistic"].equity_value,
    )

    base = results["base"]
    warnings = [f"{name}: {w}" for name, r in results.items() for w in r.warnings]
    if base.equity_value > 0:
        method_result = ValuationMethodResult(
            method="dcf",
            base_value=base.projected_fcfs[0] if base.projected_fcfs else None,
            enterprise_value=base.adjusted_enterprise_value,
            equity_value=base.equity_value,
            enterprise_values=ValuePoints(
                min=results["pessimistic"].adjusted_enterprise_value,
                avg=base.adjusted_enterprise_value,
                max=results["optimistic"].adjusted_enterprise_value,
            ),
            equity_values=ValuePoints(
                min=results["pessimistic"].equity_value,
                avg=base.equity_value,
                max=results["optimistic"].equity_value,
            ),
            available=True,
            warnings=warnings,
        )
    else:
        method_result = ValuationMethodResult(
            method="dcf",
            available=False,
            unavailable_reason="Base scenario DCF produced no positive equity value",
            warnings=warnings,
        )

    return ScenarioDCFResult(
        variant=variant,
        dlom=dlom,
        scenarios=results,
        probability_weighted=weighted,
        method_result=method_result,
    )
