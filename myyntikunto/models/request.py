from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from myyntikunto.models.financials import FinancialStatement, NormalizationAdjustment, LiquidationDiscounts
from myyntikunto.models.valuations import MultiplierSet, ScenarioSet, FutureScenario, ValuationMethod
from myyntikunto.models.enriched import QuestionAnswer


class ValuationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    company_name: str = Field(..., description="Name of the company being valued")
    business_id: Optional[str] = Field(None, description="Finnish business ID (Y-tunnus)")
    industry: Optional[str] = Field(None, description="Industry (toimiala)")
    description: Optional[str] = Field(None, description="Brief description of the company")
    statement: Optional[FinancialStatement] = Field(None, description="Latest financial statement")
    document_text: Optional[str] = Field(None, description="Financial statement text for LLM extraction")
    adjustments: list[NormalizationAdjustment] = Field(default_factory=list)
    multipliers: Optional[MultiplierSet] = Field(None, description="Override multipliers; looked up when absent")
    net_debt: float = Field(0.0, alias="netDebt", description="Interest-bearing debt minus cash")
    liquidation_discounts: Optional[LiquidationDiscounts] = None
    scenarios: Optional[ScenarioSet] = Field(None, description="Pessimistic / base / optimistic projections")
    growth_rate: Optional[float] = Field(
        None, gt=-1.0, le=1.0, description="Expected annual revenue growth for generated scenarios"
    )
    wacc: float = Field(0.12, gt=0.0, lt=1.0, description="Discount rate for generated scenarios")
    historical_years: Optional[int] = Field(None, ge=0, description="Years of reliable historical data")
    confidence_score: Optional[int] = Field(None, ge=0, le=10, description="Data confidence 0-10")


class QuestionsRequest(BaseModel):
    company_name: str
    statement: FinancialStatement


class AnswersRequest(BaseModel):
    answers: list[QuestionAnswer]


class RevalueRequest(BaseModel):
    """What-if recalculation of a stored valuation. Omitted fields keep their stored values."""

    model_config = ConfigDict(populate_by_name=True)

    multipliers: Optional[MultiplierSet] = None
    selected_methods: Optional[list[ValuationMethod]] = Field(None, alias="selectedMethods")
    future_scenario: Optional[FutureScenario] = Field(None, alias="futureScenario")
