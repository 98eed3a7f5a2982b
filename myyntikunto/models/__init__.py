from myyntikunto.models.financials import (
    FinancialStatement, NormalizationAdjustment, AdjustmentAuditEntry, NormalizedStatement,
    LiquidationDiscounts,
)
from myyntikunto.models.valuations import (
    MultiplierRange, MultiplierSet, ValuePoints, ValuationMethodResult, ValuationRange,
    ScenarioValues, ProbabilityWeightedValuation, ScenarioProjection, ScenarioSet,
    SensitivityCell, DCFResult, ScenarioDCFResult, FutureScenario, ValuationInput, ValuationOutput,
)
from myyntikunto.models.enriched import (
    NormalizationQuestion, FinancialAnalysisSummary, QuestionSet, QuestionAnswer,
    ExtractedStatement, EstimatedMultipliers, EnrichedInput,
)
from myyntikunto.models.request import ValuationRequest, QuestionsRequest, AnswersRequest, RevalueRequest
from myyntikunto.models.report import PipelineStep, LLMCallLog, ValuationReport

__all__ = [
    "FinancialStatement", "NormalizationAdjustment", "AdjustmentAuditEntry", "NormalizedStatement",
    "LiquidationDiscounts",
    "MultiplierRange", "MultiplierSet", "ValuePoints", "ValuationMethodResult", "ValuationRange",
    "ScenarioValues", "ProbabilityWeightedValuation", "ScenarioProjection", "ScenarioSet",
    "SensitivityCell", "DCFResult", "ScenarioDCFResult", "FutureScenario", "ValuationInput", "ValuationOutput",
    "NormalizationQuestion", "FinancialAnalysisSummary", "QuestionSet", "QuestionAnswer",
    "ExtractedStatement", "EstimatedMultipliers", "EnrichedInput",
    "ValuationRequest", "QuestionsRequest", "AnswersRequest", "RevalueRequest",
    "PipelineStep", "LLMCallLog", "ValuationReport",
]
