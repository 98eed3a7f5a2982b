from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Literal, Optional

from myyntikunto.models.financials import (
    FinancialStatement, NormalizationAdjustment, NormalizedStatement, LiquidationDiscounts,
)


class MultiplierRange(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    min: float = Field(..., ge=0.0)
    avg: float = Field(..., ge=0.0)
    max: float = Field(..., ge=0.0)
    justification: str = ""
    source: str = ""

    @model_validator(mode="after")
    def _check_ordering(self):
        if not (self.min <= self.avg <= self.max):
            raise ValueError(
                f"Multiplier range must satisfy min <= avg <= max, got "
                f"{self.min} / {self.avg} / {self.max}"
            )
        return self


class MultiplierSet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    revenue: MultiplierRange
    ev_ebit: MultiplierRange = Field(..., alias="evEbit")
    ev_ebitda: Optional[MultiplierRange] = Field(None, alias="evEbitda")


class ValuePoints(BaseModel):
    """Values at the min / avg / max multiplier (or scenario) points."""
    min: float = 0.0
    avg: float = 0.0
    max: float = 0.0

    def as_list(self) -> list[float]:
        return [self.min, self.avg, self.max]


class ValuationMethodResult(BaseModel):
    method: str
    base_value: Optional[float] = Field(None, description="Financial figure the multiple was applied to")
    multiplier_used: float = Field(0.0, description="Effective avg multiplier")
    effective_multipliers: ValuePoints = Field(default_factory=ValuePoints)
    enterprise_value: float = 0.0
    equity_value: float = 0.0
    enterprise_values: ValuePoints = Field(default_factory=ValuePoints)
    equity_values: ValuePoints = Field(default_factory=ValuePoints)
    available: bool = True
    unavailable_reason: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class ValuationRange(BaseModel):
    low: float
    base: float
    high: float


class ScenarioValues(BaseModel):
    pessimistic: float
    base: float
    optimistic: float


class ProbabilityWeightedValuation(BaseModel):
    weighted_equity_value: float
    scenario_values: ScenarioValues
    weights: dict[str, float] = Field(default_factory=dict)


class ScenarioProjection(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    revenue_projections: list[float] = Field(..., description="Projected revenues for each year")
    ebitda_margins: list[float] = Field(..., description="EBITDA margin for each year (0.0-1.0)")
    capex_percent: float = Field(0.03, ge=0.0, le=1.0, description="CapEx as percent of revenue")
    nwc_change_percent: float = Field(
        0.02, ge=-1.0, le=1.0, description="Net working capital change as percent of revenue"
    )
    tax_rate: float = Field(0.20, ge=0.0, le=1.0, description="Corporate tax rate (Finland 20%)")
    wacc: float = Field(0.12, gt=0.0, lt=1.0, description="Weighted average cost of capital")
    terminal_growth_rate: float = Field(
        0.02, gt=-1.0, lt=1.0, description="Long-term growth rate for terminal value"
    )
    depreciation_percent: float = Field(0.02, ge=0.0, le=1.0, description="D&A as percent of revenue")


class ScenarioSet(BaseModel):
    pessimistic: ScenarioProjection
    base: ScenarioProjection
    optimistic: ScenarioProjection


class SensitivityCell(BaseModel):
    wacc: float
    terminal_growth_rate: float
    enterprise_value: float


class DCFResult(BaseModel):
    method: str = "dcf"
    scenario: str = "base"
    enterprise_value: float
    adjusted_enterprise_value: float = Field(0.0, description="Enterprise value after DLOM")
    equity_value: float = 0.0
    projected_fcfs: list[float]
    terminal_value: float
    discount_rate: float
    terminal_growth_rate: float
    warnings: list[str] = Field(default_factory=list)
    sensitivity_table: list[SensitivityCell] = Field(default_factory=list)


class ScenarioDCFResult(BaseModel):
    variant: str
    dlom: float
    scenarios: dict[str, DCFResult]
    probability_weighted: ProbabilityWeightedValuation
    method_result: ValuationMethodResult


ValuationMethod = Literal["revenue", "ev_ebit", "ev_ebitda", "dcf"]


class FutureScenario(BaseModel):
    """What-if figures: grown revenue at a target EBIT margin."""

    model_config = ConfigDict(allow_inf_nan=False, populate_by_name=True)

    revenue_growth: float = Field(..., gt=-1.0, alias="revenueGrowth", description="Revenue change, 0.10 = +10%")
    target_ebit_margin: float = Field(..., ge=-1.0, le=1.0, alias="targetEbitMargin")


class ValuationInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    statement: FinancialStatement
    adjustments: list[NormalizationAdjustment] = Field(default_factory=list)
    multipliers: MultiplierSet
    net_debt: float = Field(0.0, alias="netDebt", allow_inf_nan=False)
    liquidation_discounts: Optional[LiquidationDiscounts] = Field(None, alias="liquidationDiscounts")
    scenarios: Optional[ScenarioSet] = None
    confidence_score: Optional[int] = Field(None, alias="confidenceScore", ge=0, le=10)
    historical_years: Optional[int] = Field(None, alias="historicalYears", ge=0)
    selected_methods: Optional[list[ValuationMethod]] = Field(
        None, alias="selectedMethods", description="Methods to include in the range; all when absent"
    )
    future_scenario: Optional[FutureScenario] = Field(None, alias="futureScenario")


class ValuationOutput(BaseModel):
    # API responses use the aliases; stored reports keep the field names
    model_config = ConfigDict(populate_by_name=True)

    normalized_statement: NormalizedStatement
    substance_value: float
    is_substance_negative: bool
    valuation_range: ValuationRange = Field(..., alias="valuationRange")
    method_results: list[ValuationMethodResult] = Field(..., alias="methodResults")
    probability_weighted: Optional[ProbabilityWeightedValuation] = Field(None, alias="probabilityWeighted")
    dcf: Optional[ScenarioDCFResult] = None
    dcf_variant: Optional[str] = None
    confidence_score: Optional[int] = None
    warnings: list[str] = Field(default_factory=list)
