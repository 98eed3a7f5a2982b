from pydantic import BaseModel, Field
from typing import Optional

from myyntikunto.models.financials import FinancialStatement
from myyntikunto.models.valuations import MultiplierSet


class NormalizationQuestion(BaseModel):
    id: str = Field(..., description="Stable question identifier, e.g. 'q1'")
    category: str = Field(..., description="owner_salary, premises_costs or other")
    description: str = Field("", description="Short description of the question")
    question: str = Field(..., description="Question shown to the business owner")
    impact: str = Field("", description="How the answer affects the valuation")
    identified_value: Optional[float] = Field(
        None, description="Amount of the item itself (EUR), not the whole line total; None when not identifiable"
    )
    line_item: Optional[str] = Field(None, description="Income statement line the question concerns")
    normalization_purpose: str = Field("", description="Why the item may need normalizing")


class FinancialAnalysisSummary(BaseModel):
    company_size: str = Field("", description="Pieni / Keskisuuri / Suuri")
    financial_health: str = Field("", description="Heikko / Tyydyttävä / Hyvä / Erinomainen")
    primary_concerns: list[str] = Field(default_factory=list)
    fiscal_year: Optional[str] = None


class QuestionSet(BaseModel):
    questions: list[NormalizationQuestion] = Field(default_factory=list)
    financial_analysis_summary: Optional[FinancialAnalysisSummary] = None


class QuestionAnswer(BaseModel):
    question_id: str
    normalized_value: Optional[float] = Field(
        None, description="Market-level value for the item; None means no normalization"
    )
    current_value: Optional[float] = Field(
        None, description="Amount currently booked for the item, e.g. the owner's present salary"
    )
    answer: str = Field("", description="Free-text answer from the business owner")


class ExtractedStatement(BaseModel):
    statement: FinancialStatement
    fiscal_year: Optional[int] = None
    industry: Optional[str] = Field(None, description="Industry inferred from the document")
    extraction_notes: Optional[str] = None


class EstimatedMultipliers(BaseModel):
    multipliers: MultiplierSet
    industry: Optional[str] = None
    confidence: str = Field("low", description="Confidence level: 'high', 'medium', 'low'")
    reasoning: str = Field("", description="Why these multipliers suit the industry")


class EnrichedInput(BaseModel):
    """Everything the orchestration layer resolved before running the engine."""
    industry: Optional[str] = None
    statement_source: str = Field("user-provided", description="user-provided or LLM extraction")
    multipliers: Optional[MultiplierSet] = None
    multipliers_source: str = Field("", description="user override, LLM lookup or defaults")
    research_sources: list[dict] = Field(default_factory=list, description="[{title, url}] from web research")
    enrichment_notes: Optional[str] = None
