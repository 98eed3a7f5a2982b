import asyncio
import csv
import io
import json
import re
import uuid

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError
from typing import Optional

from myyntikunto.models.financials import FinancialStatement, COST_LINE_ITEMS
from myyntikunto.models.valuations import ValuationInput, ValuationOutput
from myyntikunto.models.enriched import QuestionSet
from myyntikunto.models.request import ValuationRequest, QuestionsRequest, AnswersRequest, RevalueRequest
from myyntikunto.models.report import ValuationReport
from myyntikunto.api.dependencies import get_pipeline, get_db_service, get_status_registry
from myyntikunto.pipeline.orchestrator import ValuationPipeline
from myyntikunto.services.db_service import DBService
from myyntikunto.services.pipeline_status import StatusRegistry, InvalidTransitionError
from myyntikunto.valuation.engine import run_valuation

router = APIRouter(prefix="/api/valuations", tags=["valuations"])
shared_router = APIRouter(prefix="/api/shared", tags=["shared"])

# Finnish financial statement labels (lowercase, "yhteensä" and parentheses stripped)
STATEMENT_LABELS = {
    "tilikausi": "fiscal_year",
    "liikevaihto": "revenue",
    "liiketoiminnan muut tuotot": "other_operating_income",
    "materiaalit ja palvelut": "materials",
    "henkilöstökulut": "personnel_costs",
    "poistot ja arvonalentumiset": "depreciation",
    "poistot": "depreciation",
    "liiketoiminnan muut kulut": "other_expenses",
    "liikevoitto": "operating_profit",
    "liiketulos": "operating_profit",
    "käyttökate": "ebitda",
    "pysyvät vastaavat": "fixed_assets",
    "vaihtuvat vastaavat": "current_assets",
    "lyhytaikainen vieras pääoma": "short_term_liabilities",
    "pitkäaikainen vieras pääoma": "long_term_liabilities",
}


def _parse_financial_value(s: str) -> float | None:
    """Parse a value like '1 234 567,89 €', '(6 963)', '-12345' or '587,363'."""
    s = s.strip().replace('€', '').replace('EUR', '').replace('\xa0', '').replace(' ', '')
    if not s or s in ('-', '–', 'N/A', '#N/A'):
        return None
    neg = s.startswith('(') and s.endswith(')')
    if neg:
        s = s[1:-1]
    if ',' in s and '.' not in s:
        # A single comma not followed by three digits is a decimal comma
        head, _, tail = s.rpartition(',')
        s = f"{head.replace(',', '')}.{tail}" if s.count(',') == 1 and len(tail) != 3 else s.replace(',', '')
    else:
        s = s.replace(',', '')
    try:
        val = float(s)
    except ValueError:
        return None
    return -val if neg else val


def _field_for_label(label: str) -> str | None:
    key = re.sub(r"\(.*?\)", "", label.strip().lower()).replace("yhteensä", "").strip(" :")
    if key in FinancialStatement.model_fields:
        return key
    return STATEMENT_LABELS.get(key)


def _statement_from_values(values: dict[str, float]) -> FinancialStatement:
    # Finnish statements print costs as negative figures
    for name in COST_LINE_ITEMS:
        if values.get(name) is not None:
            values[name] = abs(values[name])
    if values.get("fiscal_year") is not None:
        values["fiscal_year"] = int(values["fiscal_year"])
    return FinancialStatement(**values)


def _try_label_value_csv(rows: list[list[str]]) -> dict[str, float] | None:
    """One line per item: 'Liikevaihto;1 250 000'."""
    values: dict[str, float] = {}
    for row in rows:
        if len(row) < 2:
            continue
        name = _field_for_label(row[0])
        if name is None:
            continue
        # Latest period is the first numeric column
        for cell in row[1:]:
            val = _parse_financial_value(cell)
            if val is not None:
                values[name] = val
                break
    return values or None


def _try_wide_csv(rows: list[list[str]]) -> dict[str, float] | None:
    """Header row of item names followed by one row of figures."""
    if len(rows) < 2:
        return None
    names = [_field_for_label(h) for h in rows[0]]
    if not any(names):
        return None
    values: dict[str, float] = {}
    for name, cell in zip(names, rows[1]):
        if name is None:
            continue
        val = _parse_financial_value(cell)
        if val is not None:
            values[name] = val
    return values or None


def _parse_statement_csv(text: str) -> FinancialStatement | None:
    first_line = text.splitlines()[0] if text.strip() else ""
    delimiter = ';' if ';' in first_line else ','
    rows = [row for row in csv.reader(io.StringIO(text), delimiter=delimiter) if any(c.strip() for c in row)]
    if not rows:
        return None
    values = _try_wide_csv(rows) if len(rows) == 2 else None
    if values is None:
        values = _try_label_value_csv(rows)
    if values is None:
        return None
    return _statement_from_values(values)


class ShareRequest(BaseModel):
    recipient_email: Optional[str] = None
    message: Optional[str] = None


@router.post("/calculate", response_model=ValuationOutput)
async def calculate(valuation_input: ValuationInput):
    """Run the valuation engine directly on prepared input."""
    return run_valuation(valuation_input)


@router.post("/questions", response_model=QuestionSet)
async def questions(
    body: QuestionsRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Normalization questions for a financial statement."""
    return await pipeline.generate_questions(body.statement, company_name=body.company_name)


@router.post("/upload-statement", response_model=FinancialStatement)
async def upload_statement(file: UploadFile = File(...)):
    """Parse uploaded JSON or CSV file into a FinancialStatement."""
    content = await file.read()
    filename = (file.filename or "").lower()

    try:
        if filename.endswith(".json"):
            return FinancialStatement(**json.loads(content))

        elif filename.endswith(".csv"):
            text = content.decode("utf-8-sig")
            result = _parse_statement_csv(text)
            if result is None:
                raise HTTPException(
                    status_code=400,
                    detail="Unrecognized CSV format. Expected rows of 'label;value' or a header row of item names.",
                )
            return result

        else:
            raise HTTPException(status_code=400, detail="Unsupported file type. Upload .json or .csv")
    except HTTPException:
        raise
    except (ValidationError, ValueError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"Failed to parse file: {e}")


@router.post("", response_model=ValuationReport)
async def create_valuation(
    request: ValuationRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """Run full valuation pipeline and return complete report."""
    return await pipeline.run(request)


@router.post("/async")
async def create_valuation_async(
    request: ValuationRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
    registry: StatusRegistry = Depends(get_status_registry),
):
    """Start pipeline asynchronously, return report_id and stream URL."""
    report_id = str(uuid.uuid4())
    status = registry.create(report_id)

    asyncio.create_task(pipeline.run(request, report_id=report_id, status=status))

    return {
        "report_id": report_id,
        "stream_url": f"/api/valuations/{report_id}/stream",
    }


@router.post("/assessments")
async def start_assessment(
    request: ValuationRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
    registry: StatusRegistry = Depends(get_status_registry),
):
    """Phase 1 of an assessment: resolve the statement and return normalization questions."""
    status = registry.create(str(uuid.uuid4()))
    await pipeline.start_assessment(request, status)
    return status.snapshot()


@router.post("/assessments/{assessment_id}/answers", response_model=ValuationReport)
async def answer_assessment(
    assessment_id: str,
    body: AnswersRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
    registry: StatusRegistry = Depends(get_status_registry),
):
    """Phase 2: apply the answers as adjustments and run the valuation."""
    status = registry.get(assessment_id)
    if not status:
        raise HTTPException(status_code=404, detail="Assessment not found")
    try:
        return await pipeline.submit_answers(status, body.answers)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/assessments/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    registry: StatusRegistry = Depends(get_status_registry),
):
    status = registry.get(assessment_id)
    if not status:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return status.snapshot()


@router.get("/{valuation_id}/stream")
async def stream_pipeline(
    valuation_id: str,
    registry: StatusRegistry = Depends(get_status_registry),
):
    """SSE stream of pipeline step events."""
    status = registry.get(valuation_id)
    if not status:
        raise HTTPException(status_code=404, detail="No active pipeline for this ID")

    async def event_generator():
        while True:
            events = await status.wait_for_event(timeout=15.0)
            for evt in events:
                data = json.dumps({
                    "type": "step",
                    "step_name": evt.step_name,
                    "status": evt.status,
                    "timestamp": evt.timestamp,
                    "duration_ms": evt.duration_ms,
                    "error": evt.error,
                })
                yield f"data: {data}\n\n"

            if status.complete:
                final = {"type": status.state.value, "report_id": valuation_id, "error": status.error}
                yield f"data: {json.dumps(final)}\n\n"
                registry.cleanup(valuation_id)
                break

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/{valuation_id}/revalue", response_model=ValuationReport)
async def revalue_valuation(
    valuation_id: str,
    body: RevalueRequest,
    pipeline: ValuationPipeline = Depends(get_pipeline),
):
    """What-if recalculation: override multipliers, pick methods or apply a future scenario.

    The original report is left unchanged.
    """
    report = pipeline.revalue(
        valuation_id,
        multipliers=body.multipliers,
        selected_methods=body.selected_methods,
        future_scenario=body.future_scenario,
    )
    if not report:
        raise HTTPException(status_code=404, detail="Valuation not found")
    return report


@router.post("/{valuation_id}/share")
async def share_valuation(
    valuation_id: str,
    body: ShareRequest,
    db: DBService = Depends(get_db_service),
):
    share = db.create_share(valuation_id, recipient_email=body.recipient_email, message=body.message)
    if not share:
        raise HTTPException(status_code=404, detail="Valuation not found")
    return share


@router.get("", response_model=list[dict])
async def list_valuations(db: DBService = Depends(get_db_service)):
    """List all past valuations (summary only)."""
    return db.list_reports()


@router.get("/{valuation_id}", response_model=ValuationReport)
async def get_valuation(
    valuation_id: str,
    db: DBService = Depends(get_db_service),
):
    """Get full valuation report by ID."""
    report = db.get_report(valuation_id)
    if not report:
        raise HTTPException(status_code=404, detail="Valuation not found")
    return report


@router.delete("/{valuation_id}")
async def delete_valuation(
    valuation_id: str,
    db: DBService = Depends(get_db_service),
):
    """Delete a valuation report."""
    deleted = db.delete_report(valuation_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Valuation not found")
    return {"status": "deleted"}


@router.get("/{valuation_id}/audit-log")
async def get_audit_log(
    valuation_id: str,
    db: DBService = Depends(get_db_service),
):
    """Get pipeline steps and LLM call logs for a valuation."""
    return db.get_audit_log(valuation_id)


@shared_router.get("/{token}", response_model=ValuationReport)
async def get_shared_valuation(
    token: str,
    db: DBService = Depends(get_db_service),
):
    """Read-only view of a shared report; expired or unknown links are 404."""
    report = db.get_shared_report(token)
    if not report:
        raise HTTPException(status_code=404, detail="Shared valuation not found or link expired")
    return report
