import pytest
from unittest.mock import MagicMock

from myyntikunto.models.financials import FinancialStatement, NormalizationAdjustment
from myyntikunto.models.valuations import MultiplierRange, MultiplierSet, FutureScenario
from myyntikunto.models.enriched import (
    ExtractedStatement, EstimatedMultipliers, NormalizationQuestion, QuestionSet, QuestionAnswer,
)
from myyntikunto.models.request import ValuationRequest
from myyntikunto.pipeline.orchestrator import ValuationPipeline
from myyntikunto.pipeline.step_questions import fallback_questions, answers_to_adjustments
from myyntikunto.valuation.normalizer import normalize
from myyntikunto.services.pipeline_status import PipelineStatus, AssessmentState, InvalidTransitionError

STATEMENT = FinancialStatement(
    fiscal_year=2024,
    revenue=1_200_000,
    materials=350_000,
    personnel_costs=480_000,
    depreciation=40_000,
    other_expenses=210_000,
    operating_profit=120_000,
    fixed_assets=250_000,
    current_assets=400_000,
    short_term_liabilities=180_000,
    long_term_liabilities=220_000,
)

LLM_MULTIPLIERS = MultiplierSet(
    revenue=MultiplierRange(min=0.4, avg=0.7, max=1.0, source="mock research"),
    ev_ebit=MultiplierRange(min=4.0, avg=5.5, max=7.0, source="mock research"),
    ev_ebitda=MultiplierRange(min=3.0, avg=4.5, max=6.0, source="mock research"),
)


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.call_logs = []

    async def mock_research(*args, **kwargs):
        return "Rakennusalan kaupat 4-7x EBIT.\n\n--- Sources ---\n- Toimialaraportti: https://example.fi/raportti\n"

    async def mock_structured(*args, **kwargs):
        response_model = kwargs["response_model"]
        if response_model is ExtractedStatement:
            return ExtractedStatement(statement=STATEMENT, fiscal_year=2024)
        if response_model is QuestionSet:
            return QuestionSet(questions=[
                NormalizationQuestion(
                    id="q1", category="owner_salary", question="Vastaako omistajan palkka markkinatasoa?",
                    identified_value=120_000, line_item="personnel_costs",
                ),
                NormalizationQuestion(
                    id="q2", category="premises_costs", question="Ovatko toimitilakulut markkinatasolla?",
                    identified_value=60_000, line_item="other_expenses",
                ),
            ])
        if response_model is EstimatedMultipliers:
            return EstimatedMultipliers(multipliers=LLM_MULTIPLIERS, industry="Rakentaminen", confidence="medium")
        raise AssertionError(f"Unexpected response model {response_model}")

    async def mock_text(*args, **kwargs):
        return "Tämä on testiyhteenveto."

    llm.research_completion = mock_research
    llm.structured_completion = mock_structured
    llm.text_completion = mock_text
    return llm


@pytest.fixture
def failing_llm():
    llm = MagicMock()
    llm.call_logs = []

    async def fail(*args, **kwargs):
        raise RuntimeError("LLM call failed after 3 attempts: timeout")

    llm.research_completion = fail
    llm.structured_completion = fail
    llm.text_completion = fail
    return llm


@pytest.fixture
def mock_db(tmp_path):
    from myyntikunto.services.db_service import DBService
    return DBService(f"sqlite:///{tmp_path}/test.db")


@pytest.fixture
def full_request():
    return ValuationRequest(
        company_name="Rakennus Oy",
        business_id="1234567-8",
        industry="Rakentaminen",
        statement=STATEMENT,
        adjustments=[
            NormalizationAdjustment(category="owner_salary", original_value=480_000, normalized_value=440_000),
        ],
        multipliers=MultiplierSet(
            revenue=MultiplierRange(min=0.5, avg=0.8, max=1.2),
            ev_ebit=MultiplierRange(min=4.0, avg=6.0, max=8.0),
        ),
        net_debt=50_000,
    )


@pytest.mark.asyncio
async def test_full_pipeline(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    report = await pipeline.run(full_request)

    assert report.id is not None
    assert report.error is None
    assert report.valuation is not None
    assert report.narrative == "Tämä on testiyhteenveto."
    assert report.assumptions["statement_source"] == "user-provided"
    assert report.assumptions["multipliers_source"] == "user override"
    assert [s.step_name for s in report.pipeline_steps][:5] == [
        "validate", "extract", "multipliers", "valuate", "narrate",
    ]

    normalized = report.valuation["normalized_statement"]
    assert normalized["operating_profit"] == 160_000
    ebit = next(r for r in report.valuation["method_results"] if r["method"] == "ev_ebit")
    assert ebit["equity_value"] == 160_000 * 6 - 50_000

    loaded = mock_db.get_report(report.id)
    assert loaded is not None
    assert loaded.company_name == "Rakennus Oy"
    summary = mock_db.list_reports()[0]
    assert summary["business_id"] == "1234567-8"
    assert summary["range_high"] == report.valuation["valuation_range"]["high"]


@pytest.mark.asyncio
async def test_multipliers_from_research(mock_llm, mock_db, full_request):
    request = full_request.model_copy(update={"multipliers": None})
    report = await ValuationPipeline(mock_llm, mock_db).run(request)

    assert report.assumptions["multipliers_source"].startswith("LLM lookup")
    assert report.assumptions["research_sources"] == [
        {"title": "Toimialaraportti", "url": "https://example.fi/raportti"},
    ]
    methods = [r["method"] for r in report.valuation["method_results"]]
    assert methods == ["revenue", "ev_ebit", "ev_ebitda"]


@pytest.mark.asyncio
async def test_llm_failures_fall_back(failing_llm, mock_db, full_request):
    request = full_request.model_copy(update={"multipliers": None})
    report = await ValuationPipeline(failing_llm, mock_db).run(request)

    assert report.error is None
    assert report.assumptions["multipliers_source"] == "defaults"
    revenue = next(r for r in report.valuation["method_results"] if r["method"] == "revenue")
    assert revenue["multiplier_used"] == 1.0
    assert "Arvon vaihteluväli" in report.narrative


@pytest.mark.asyncio
async def test_document_extraction(mock_llm, mock_db):
    request = ValuationRequest(company_name="Paperista Oy", document_text="Liikevaihto 1 200 000 ...")
    report = await ValuationPipeline(mock_llm, mock_db).run(request)

    assert report.assumptions["statement_source"] == "LLM extraction"
    assert report.valuation["normalized_statement"]["revenue"] == 1_200_000
    assert "document_text" not in report.request_summary


@pytest.mark.asyncio
async def test_missing_statement_recorded(mock_llm, mock_db):
    report = await ValuationPipeline(mock_llm, mock_db).run(ValuationRequest(company_name="Tyhjä Oy"))

    assert report.valuation is None
    assert report.error is not None
    assert report.missing_data == ["statement", "document_text"]
    narrate = next(s for s in report.pipeline_steps if s.step_name == "narrate")
    assert narrate.status == "skipped"
    assert mock_db.get_report(report.id) is not None


@pytest.mark.asyncio
async def test_growth_rate_generates_scenarios(mock_llm, mock_db, full_request):
    request = full_request.model_copy(update={"growth_rate": 0.05, "historical_years": 3})
    report = await ValuationPipeline(mock_llm, mock_db).run(request)

    assert report.valuation["dcf_variant"] == "simplified_dcf"
    assert report.valuation["probability_weighted"] is not None
    assert any(r["method"] == "dcf" for r in report.valuation["method_results"])


@pytest.mark.asyncio
async def test_status_events_and_completion(mock_llm, mock_db, full_request):
    status = PipelineStatus(report_id="run-1")
    await ValuationPipeline(mock_llm, mock_db).run(full_request, report_id="run-1", status=status)

    assert status.state == AssessmentState.COMPLETE
    assert ("valuate", "completed") in [(e.step_name, e.status) for e in status.events]


@pytest.mark.asyncio
async def test_failed_run_marks_status_failed(mock_llm, mock_db):
    status = PipelineStatus(report_id="run-2")
    await ValuationPipeline(mock_llm, mock_db).run(
        ValuationRequest(company_name="Tyhjä Oy"), report_id="run-2", status=status,
    )
    assert status.state == AssessmentState.FAILED
    assert status.error


@pytest.mark.asyncio
async def test_two_phase_assessment(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    request = full_request.model_copy(update={"adjustments": []})
    status = PipelineStatus(report_id="assessment-1")

    await pipeline.start_assessment(request, status)
    assert status.state == AssessmentState.AWAITING_INPUT
    assert [q.id for q in status.context["questions"]] == ["q1", "q2"]

    report = await pipeline.submit_answers(status, [
        QuestionAnswer(question_id="q1", normalized_value=40_000),
        QuestionAnswer(question_id="q2", normalized_value=None, answer="Markkinavuokra"),
    ])
    assert status.state == AssessmentState.COMPLETE
    assert status.context["result_report_id"] == report.id
    trail = report.valuation["normalized_statement"]["audit_trail"]
    assert len(trail) == 1
    assert trail[0]["category"] == "owner_salary"
    assert report.valuation["normalized_statement"]["operating_profit"] == 200_000

    with pytest.raises(InvalidTransitionError):
        await pipeline.submit_answers(status, [])


@pytest.mark.asyncio
async def test_assessment_without_statement_fails(mock_llm, mock_db):
    status = PipelineStatus(report_id="assessment-2")
    await ValuationPipeline(mock_llm, mock_db).start_assessment(ValuationRequest(company_name="Tyhjä Oy"), status)
    assert status.state == AssessmentState.FAILED


@pytest.mark.asyncio
async def test_fallback_questions(failing_llm, mock_db):
    questions = await ValuationPipeline(failing_llm, mock_db).generate_questions(STATEMENT)
    assert [q.category for q in questions.questions] == ["owner_salary", "premises_costs", "other"]
    # Line totals are not item amounts
    assert all(q.identified_value is None for q in questions.questions)


def test_fallback_questions_skip_unavailable_lines():
    statement = STATEMENT.model_copy(update={"personnel_costs": None})
    questions = fallback_questions(statement)
    assert [q.id for q in questions.questions] == ["q2", "q3"]


@pytest.mark.asyncio
async def test_revalue_creates_new_report(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    original = await pipeline.run(full_request)

    higher = MultiplierSet(
        revenue=MultiplierRange(min=1.0, avg=1.5, max=2.0),
        ev_ebit=MultiplierRange(min=6.0, avg=8.0, max=10.0),
    )
    revalued = pipeline.revalue(original.id, higher)

    assert revalued.id != original.id
    assert revalued.parent_id == original.id
    assert revalued.valuation["valuation_range"]["high"] > original.valuation["valuation_range"]["high"]
    # Adjustments from the original run still apply
    assert revalued.valuation["normalized_statement"]["operating_profit"] == 160_000

    stored_original = mock_db.get_report(original.id)
    assert stored_original.valuation == original.valuation
    assert len(mock_db.list_reports()) == 2


def test_revalue_unknown_report(mock_llm, mock_db):
    assert ValuationPipeline(mock_llm, mock_db).revalue("missing", LLM_MULTIPLIERS) is None


def test_fallback_answers_without_item_amounts_change_nothing():
    statement = STATEMENT.model_copy(update={"personnel_costs": 200_000, "other_expenses": 390_000})
    questions = fallback_questions(statement).questions
    adjustments = answers_to_adjustments(questions, [
        QuestionAnswer(question_id="q1", normalized_value=60_000),
        QuestionAnswer(question_id="q2", normalized_value=30_000),
        QuestionAnswer(question_id="q3", normalized_value=0),
    ])
    normalized = normalize(statement, adjustments)

    assert normalized.personnel_costs == 200_000
    assert normalized.other_expenses == 390_000
    assert normalized.operating_profit == statement.operating_profit
    assert [e.status for e in normalized.audit_trail] == ["ignored"] * 3


def test_fallback_answers_with_item_amounts():
    statement = STATEMENT.model_copy(update={"personnel_costs": 200_000, "other_expenses": 390_000})
    questions = fallback_questions(statement).questions
    adjustments = answers_to_adjustments(questions, [
        QuestionAnswer(question_id="q1", current_value=40_000, normalized_value=60_000),
        QuestionAnswer(question_id="q2", current_value=48_000, normalized_value=30_000),
        QuestionAnswer(question_id="q3", current_value=12_000, normalized_value=0),
    ])
    normalized = normalize(statement, adjustments)

    assert normalized.personnel_costs == 220_000
    assert normalized.other_expenses == 360_000
    # -20k salary, +18k rent, +12k one-off
    assert normalized.operating_profit == 120_000 + 10_000


def test_answer_for_unknown_line_item_is_ignored():
    questions = [NormalizationQuestion(
        id="q1", category="owner_salary", question="Omistajan palkka?", line_item="henkilöstökulut",
    )]
    adjustments = answers_to_adjustments(questions, [
        QuestionAnswer(question_id="q1", current_value=90_000, normalized_value=60_000),
    ])
    normalized = normalize(STATEMENT, adjustments)

    assert normalized.personnel_costs == STATEMENT.personnel_costs
    assert normalized.audit_trail[0].status == "ignored"
    assert "henkilöstökulut" in normalized.audit_trail[0].reason


@pytest.mark.asyncio
async def test_assessment_with_unknown_line_item_completes(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    status = PipelineStatus(report_id="assessment-3")
    status.context.update({
        "request": full_request.model_copy(update={"adjustments": []}),
        "statement": STATEMENT,
        "questions": [NormalizationQuestion(
            id="q1", category="owner_salary", question="Omistajan palkka?", line_item="henkilöstökulut",
        )],
    })
    status.start_processing()
    status.await_input()

    report = await pipeline.submit_answers(status, [QuestionAnswer(question_id="q1", normalized_value=60_000)])

    assert status.state == AssessmentState.COMPLETE
    assert report.valuation["normalized_statement"]["operating_profit"] == 120_000
    assert report.valuation["normalized_statement"]["audit_trail"][0]["status"] == "ignored"


@pytest.mark.asyncio
async def test_answers_error_marks_assessment_failed(mock_llm, mock_db):
    status = PipelineStatus(report_id="assessment-4")
    status.start_processing()
    status.await_input()

    with pytest.raises(KeyError):
        await ValuationPipeline(mock_llm, mock_db).submit_answers(status, [])
    assert status.state == AssessmentState.FAILED
    assert status.error


@pytest.mark.asyncio
async def test_revalue_with_selected_methods(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    original = await pipeline.run(full_request)

    revalued = pipeline.revalue(original.id, selected_methods=["ev_ebit"])

    results = {r["method"]: r for r in revalued.valuation["method_results"]}
    assert results["ev_ebit"]["available"]
    assert not results["revenue"]["available"]
    assert results["revenue"]["unavailable_reason"] == "Method not selected"
    # EBIT 160k at 8x max minus 50k net debt
    assert revalued.valuation["valuation_range"]["high"] == 1_230_000
    assert revalued.assumptions["selected_methods"] == ["ev_ebit"]
    assert revalued.assumptions["multipliers_source"] == "user override"


@pytest.mark.asyncio
async def test_revalue_with_future_scenario(mock_llm, mock_db, full_request):
    pipeline = ValuationPipeline(mock_llm, mock_db)
    original = await pipeline.run(full_request)

    revalued = pipeline.revalue(
        original.id, future_scenario=FutureScenario(revenue_growth=0.25, target_ebit_margin=0.10),
    )

    normalized = revalued.valuation["normalized_statement"]
    assert normalized["revenue"] == pytest.approx(1_500_000)
    assert normalized["operating_profit"] == pytest.approx(150_000)
    ebit = next(r for r in revalued.valuation["method_results"] if r["method"] == "ev_ebit")
    assert ebit["equity_value"] == pytest.approx(150_000 * 6 - 50_000)
    assert revalued.valuation_input["future_scenario"]["target_ebit_margin"] == 0.10
    # Stored original stays at the reported figures
    assert mock_db.get_report(original.id).valuation["normalized_statement"]["revenue"] == 1_200_000
