from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

# Income statement lines that normalization adjustments may target
COST_LINE_ITEMS = ("materials", "personnel_costs", "depreciation", "other_expenses")
INCOME_LINE_ITEMS = ("other_operating_income",)
ADJUSTABLE_LINE_ITEMS = COST_LINE_ITEMS + INCOME_LINE_ITEMS


class FinancialStatement(BaseModel):
    """One fiscal period of extracted financial statement data (EUR, whole units).

    Income statement figures are optional: None marks the figure as unavailable,
    and valuation methods that depend on it degrade instead of assuming zero.
    Balance sheet figures are required since the substance value is always computed.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    fiscal_year: Optional[int] = Field(None, description="Fiscal year the statement covers")

    # Tuloslaskelma
    revenue: Optional[float] = Field(None, description="Liikevaihto")
    other_operating_income: Optional[float] = Field(None, description="Liiketoiminnan muut tuotot")
    materials: Optional[float] = Field(None, description="Materiaalit ja palvelut")
    personnel_costs: Optional[float] = Field(None, description="Henkilöstökulut")
    depreciation: Optional[float] = Field(None, description="Poistot ja arvonalentumiset")
    other_expenses: Optional[float] = Field(None, description="Liiketoiminnan muut kulut")
    operating_profit: Optional[float] = Field(None, description="Liikevoitto (EBIT)")
    ebitda: Optional[float] = Field(None, description="Käyttökate (EBITDA), if reported")

    # Tase
    fixed_assets: float = Field(..., description="Pysyvät vastaavat")
    current_assets: float = Field(..., description="Vaihtuvat vastaavat")
    short_term_liabilities: float = Field(..., description="Lyhytaikainen vieras pääoma")
    long_term_liabilities: float = Field(..., description="Pitkäaikainen vieras pääoma")

    def is_available(self, field_name: str) -> bool:
        return getattr(self, field_name, None) is not None

    @property
    def effective_ebitda(self) -> Optional[float]:
        """Reported EBITDA, or EBIT + depreciation when both are known."""
        if self.ebitda is not None:
            return self.ebitda
        if self.operating_profit is not None and self.depreciation is not None:
            return self.operating_profit + self.depreciation
        return None

    @property
    def total_assets(self) -> float:
        return self.fixed_assets + self.current_assets

    @property
    def total_liabilities(self) -> float:
        return self.short_term_liabilities + self.long_term_liabilities

    def statement_fields(self) -> dict:
        return self.model_dump(include=set(FinancialStatement.model_fields))


class NormalizationAdjustment(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    # Plain str so unknown categories reach the normalizer and get recorded as ignored
    category: str = Field(..., description="owner_salary, premises_costs or other")
    original_value: Optional[float] = Field(
        None, description="Booked amount of the item being normalized; None when it is not known"
    )
    normalized_value: float = Field(..., description="Market-level value agreed with the reviewer")
    explanation: str = Field("", description="Reviewer's answer or reasoning")
    line_item: Optional[str] = Field(
        None, description="Income statement line to adjust; defaults by category"
    )


class AdjustmentAuditEntry(BaseModel):
    category: str
    line_item: Optional[str] = None
    original_value: Optional[float] = None
    normalized_value: float
    delta: float = 0.0
    ebit_effect: float = 0.0
    status: str  # applied, ignored
    reason: Optional[str] = None
    explanation: str = ""


class NormalizedStatement(FinancialStatement):
    audit_trail: list[AdjustmentAuditEntry] = Field(default_factory=list)

    @property
    def applied_adjustments(self) -> list[AdjustmentAuditEntry]:
        return [e for e in self.audit_trail if e.status == "applied"]

    @property
    def ignored_adjustments(self) -> list[AdjustmentAuditEntry]:
        return [e for e in self.audit_trail if e.status == "ignored"]


class LiquidationDiscounts(BaseModel):
    """Haircuts applied to balance sheet assets when computing the substance value."""

    fixed_assets: float = Field(1.0, gt=0.0, le=1.0, description="Factor applied to fixed assets")
    current_assets: float = Field(1.0, gt=0.0, le=1.0, description="Factor applied to current assets")
