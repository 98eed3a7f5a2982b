import inspect
import time
import uuid
import logging
from datetime import datetime, timezone

from myyntikunto.models.request import ValuationRequest
from myyntikunto.models.financials import FinancialStatement
from myyntikunto.models.enriched import EnrichedInput, QuestionSet, QuestionAnswer
from myyntikunto.models.valuations import MultiplierSet, ValuationInput, ValuationOutput, FutureScenario
from myyntikunto.models.report import PipelineStep, ValuationReport
from myyntikunto.services.llm_service import LLMService
from myyntikunto.services.db_service import DBService
from myyntikunto.services.pipeline_status import PipelineStatus, AssessmentState
from myyntikunto.pipeline.step_extract import resolve_statement, InsufficientDataError
from myyntikunto.pipeline.step_questions import generate_questions, fallback_questions, answers_to_adjustments
from myyntikunto.pipeline.step_multipliers import resolve_multipliers, fallback_multipliers
from myyntikunto.pipeline.step_valuate import build_valuation_input, run_valuations
from myyntikunto.pipeline.step_narrate import generate_narrative, fallback_narrative
from myyntikunto.pipeline.step_persist import persist_report
from myyntikunto.valuation.engine import run_valuation

logger = logging.getLogger(__name__)


class ValuationPipeline:
    def __init__(self, llm: LLMService, db: DBService):
        self.llm = llm
        self.db = db

    async def run(
        self,
        request: ValuationRequest,
        report_id: str | None = None,
        status: PipelineStatus | None = None,
        parent_id: str | None = None,
    ) -> ValuationReport:
        if report_id is None:
            report_id = str(uuid.uuid4())
        steps: list[PipelineStep] = []
        self.llm.call_logs = []  # reset for this run
        if status and status.state == AssessmentState.INITIAL:
            status.start_processing()

        logger.info(f"=== Pipeline started for '{request.company_name}' (id={report_id}) ===")

        assumptions: dict = {
            "company_name": request.company_name,
            "industry": request.industry,
            "net_debt": request.net_debt,
            "adjustments_count": len(request.adjustments),
        }

        # Step 1: Validate (pydantic already did it)
        steps.append(PipelineStep(
            step_name="validate", status="completed",
            started_at=datetime.now(timezone.utc), completed_at=datetime.now(timezone.utc),
            duration_ms=0,
        ))
        if status:
            status.emit("validate", "completed", duration_ms=0)

        # Step 2: Extract, the only step without a fallback
        statement: FinancialStatement | None = None
        error_message = None
        missing_data: list[str] = []
        try:
            statement, source = await self._run_step(
                "extract", steps, resolve_statement, request, self.llm, status=status, reraise=True,
            )
            assumptions["statement_source"] = source
        except InsufficientDataError as e:
            error_message = str(e)
            missing_data = e.missing_fields
            logger.error(f"Valuation failed, insufficient data: {e}")
        except Exception as e:
            error_message = f"Financial statement could not be extracted: {e}"

        enriched: EnrichedInput | None = None
        valuation_input: ValuationInput | None = None
        output: ValuationOutput | None = None
        if statement is not None:
            # Step 3: Multipliers
            enriched = await self._run_step(
                "multipliers", steps, self._multipliers, request, statement, status=status,
            ) or fallback_multipliers(request)
            assumptions["multipliers_source"] = enriched.multipliers_source
            if enriched.research_sources:
                assumptions["research_sources"] = enriched.research_sources

            # Step 4: Valuate
            valuation_input = build_valuation_input(request, statement, request.adjustments, enriched.multipliers)
            output = await self._run_step("valuate", steps, run_valuations, valuation_input, status=status)
            if output is None:
                error_message = "Valuation step encountered an unexpected error"
            else:
                assumptions["dcf_variant"] = output.dcf_variant
                assumptions["confidence_score"] = output.confidence_score

        # Step 5: Narrate (skip if valuation failed)
        narrative = None
        if output is not None:
            narrative = await self._run_step(
                "narrate", steps, self._narrate, request, output, assumptions, status=status,
            )
        else:
            self._skip_step("narrate", steps, "Skipped: no valuation results to narrate", status)

        report = ValuationReport(
            id=report_id,
            parent_id=parent_id,
            company_name=request.company_name,
            request_summary=request.model_dump(exclude={"document_text"}),
            enriched_input=enriched.model_dump() if enriched else None,
            valuation_input=valuation_input.model_dump() if valuation_input else None,
            valuation=output.model_dump() if output else None,
            narrative=narrative,
            error=error_message,
            missing_data=missing_data,
            pipeline_steps=steps,
            llm_call_logs=list(self.llm.call_logs),
            created_at=datetime.now(timezone.utc),
            assumptions=assumptions,
        )

        # Step 6: Persist (always, even failures, for the audit trail)
        await self._run_step("persist", steps, persist_report, report, self.db, status=status)

        if status:
            status.context["result_report_id"] = report_id
            if error_message:
                status.mark_failed(error_message)
            else:
                status.mark_complete()

        logger.info(
            f"=== Pipeline completed for '{request.company_name}': "
            f"range={output.valuation_range.model_dump() if output else 'FAILED'} ==="
        )
        return report

    async def generate_questions(self, statement: FinancialStatement, company_name: str | None = None) -> QuestionSet:
        try:
            return await generate_questions(statement, self.llm, company_name=company_name)
        except Exception as e:
            logger.warning(f"Question generation failed: {e}, using fallback questions")
            return fallback_questions(statement)

    async def start_assessment(self, request: ValuationRequest, status: PipelineStatus) -> None:
        """Phase 1: resolve the statement and ask normalization questions."""
        status.start_processing()
        status.context["request"] = request
        try:
            statement, _ = await resolve_statement(request, self.llm)
        except Exception as e:
            logger.error(f"Assessment {status.report_id} failed: {e}")
            status.mark_failed(str(e))
            return
        question_set = await self.generate_questions(statement, company_name=request.company_name)
        status.context["statement"] = statement
        status.context["questions"] = question_set.questions
        status.context["summary"] = question_set.financial_analysis_summary
        status.await_input()

    async def submit_answers(self, status: PipelineStatus, answers: list[QuestionAnswer]) -> ValuationReport:
        """Phase 2: turn answers into adjustments and run the valuation."""
        status.start_processing()
        try:
            request: ValuationRequest = status.context["request"]
            statement: FinancialStatement = status.context["statement"]
            adjustments = answers_to_adjustments(status.context.get("questions", []), answers)
            logger.info(f"Assessment {status.report_id}: {len(adjustments)} adjustments from answers")
            request = request.model_copy(update={
                "statement": statement,
                "adjustments": list(request.adjustments) + adjustments,
            })
            return await self.run(request, report_id=str(uuid.uuid4()), status=status)
        except Exception as e:
            logger.error(f"Assessment {status.report_id} failed while applying answers: {e}")
            if not status.complete:
                status.mark_failed(str(e))
            raise

    def revalue(
        self,
        report_id: str,
        multipliers: MultiplierSet | None = None,
        selected_methods: list[str] | None = None,
        future_scenario: FutureScenario | None = None,
    ) -> ValuationReport | None:
        """Rerun only the engine with what-if changes; the result is stored as a new report."""
        report = self.db.get_report(report_id)
        if not report or not report.valuation_input:
            return None

        start = time.time()
        valuation_input = ValuationInput.model_validate(report.valuation_input)
        updates: dict = {}
        if multipliers is not None:
            updates["multipliers"] = multipliers
        if selected_methods is not None:
            updates["selected_methods"] = selected_methods
        if future_scenario is not None:
            updates["future_scenario"] = future_scenario
        valuation_input = valuation_input.model_copy(update=updates)
        output = run_valuation(valuation_input)
        duration_ms = (time.time() - start) * 1000

        enriched = dict(report.enriched_input or {})
        assumptions = dict(report.assumptions)
        if multipliers is not None:
            enriched["multipliers"] = multipliers.model_dump()
            enriched["multipliers_source"] = "user override"
            assumptions["multipliers_source"] = "user override"
        if selected_methods is not None:
            assumptions["selected_methods"] = selected_methods
        if future_scenario is not None:
            assumptions["future_scenario"] = future_scenario.model_dump()

        new_report = ValuationReport(
            id=str(uuid.uuid4()),
            parent_id=report_id,
            company_name=report.company_name,
            request_summary=report.request_summary,
            enriched_input=enriched,
            valuation_input=valuation_input.model_dump(),
            valuation=output.model_dump(),
            narrative=fallback_narrative(output),
            pipeline_steps=[PipelineStep(
                step_name="revalue", status="completed",
                started_at=datetime.now(timezone.utc), completed_at=datetime.now(timezone.utc),
                duration_ms=duration_ms,
            )],
            assumptions=assumptions,
        )
        persist_report(new_report, self.db)
        logger.info(f"Report {report_id} revalued as {new_report.id}")
        return new_report

    async def _run_step(
        self, name: str, steps: list[PipelineStep], fn, *args,
        status: PipelineStatus | None = None, reraise: bool = False,
    ):
        step = PipelineStep(step_name=name, status="running", started_at=datetime.now(timezone.utc))
        start = time.time()
        logger.info(f"Step '{name}' started")
        if status:
            status.emit(name, "started")
        try:
            result = await fn(*args) if inspect.iscoroutinefunction(fn) else fn(*args)
            step.status = "completed"
            step.completed_at = datetime.now(timezone.utc)
            step.duration_ms = (time.time() - start) * 1000
            steps.append(step)
            logger.info(f"Step '{name}' completed in {step.duration_ms:.0f}ms")
            if status:
                status.emit(name, "completed", duration_ms=step.duration_ms)
            return result
        except Exception as e:
            step.status = "failed"
            step.error = str(e)
            step.completed_at = datetime.now(timezone.utc)
            step.duration_ms = (time.time() - start) * 1000
            steps.append(step)
            logger.error(f"Step '{name}' failed in {step.duration_ms:.0f}ms: {e}")
            if status:
                status.emit(name, "failed", duration_ms=step.duration_ms, error=str(e))
            if reraise:
                raise
            return None

    def _skip_step(self, name: str, steps: list[PipelineStep], reason: str, status: PipelineStatus | None):
        steps.append(PipelineStep(
            step_name=name, status="skipped",
            started_at=datetime.now(timezone.utc), completed_at=datetime.now(timezone.utc),
            duration_ms=0, error=reason,
        ))
        if status:
            status.emit(name, "skipped")

    async def _multipliers(self, request: ValuationRequest, statement: FinancialStatement) -> EnrichedInput:
        try:
            return await resolve_multipliers(request, statement, self.llm)
        except Exception as e:
            logger.warning(f"Multiplier lookup failed: {e}, using default multipliers")
            return fallback_multipliers(request)

    async def _narrate(self, request: ValuationRequest, output: ValuationOutput, assumptions: dict) -> str:
        try:
            return await generate_narrative(request, output, self.llm, assumptions=assumptions)
        except Exception as e:
            logger.warning(f"Narrative generation failed: {e}")
            return fallback_narrative(output)
