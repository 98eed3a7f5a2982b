import json
import logging
from myyntikunto.models.request import ValuationRequest
from myyntikunto.models.financials import FinancialStatement
from myyntikunto.models.enriched import ExtractedStatement
from myyntikunto.services.llm_service import LLMService

logger = logging.getLogger(__name__)

# Documents beyond this are truncated before being sent to the model
MAX_DOCUMENT_CHARS = 40_000


class InsufficientDataError(Exception):
    """Raised when the pipeline cannot produce a valuation due to missing data."""
    def __init__(self, message: str, missing_fields: list[str]):
        self.missing_fields = missing_fields
        super().__init__(message)


async def resolve_statement(request: ValuationRequest, llm: LLMService) -> tuple[FinancialStatement, str]:
    """Step 2: Use the posted statement, or extract one from the document text.

    Returns the statement and where it came from.
    """
    if request.statement is not None:
        return request.statement, "user-provided"

    if not request.document_text or not request.document_text.strip():
        raise InsufficientDataError(
            f"No financial statement available for '{request.company_name}'. "
            "Provide a statement or the text of the latest financial statement.",
            missing_fields=["statement", "document_text"],
        )

    extracted = await extract_statement(request.document_text, llm)
    logger.info(
        f"Extracted statement for '{request.company_name}': "
        f"revenue={extracted.statement.revenue}, ebit={extracted.statement.operating_profit}"
    )
    return extracted.statement, "LLM extraction"


async def extract_statement(document_text: str, llm: LLMService) -> ExtractedStatement:
    system_prompt = (
        "Olet erittäin tarkka tilinpäätösanalyytikko. Poimi annetusta tilinpäätöksestä "
        "viimeisimmän tilikauden luvut täsmälleen sellaisina kuin ne on esitetty, euroina.\n\n"
        "Kenttien vastineet:\n"
        "- revenue = Liikevaihto\n"
        "- other_operating_income = Liiketoiminnan muut tuotot\n"
        "- materials = Materiaalit ja palvelut\n"
        "- personnel_costs = Henkilöstökulut\n"
        "- depreciation = Poistot ja arvonalentumiset\n"
        "- other_expenses = Liiketoiminnan muut kulut\n"
        "- operating_profit = Liikevoitto (-tappio)\n"
        "- fixed_assets = Pysyvät vastaavat yhteensä\n"
        "- current_assets = Vaihtuvat vastaavat yhteensä\n"
        "- short_term_liabilities = Lyhytaikainen vieras pääoma\n"
        "- long_term_liabilities = Pitkäaikainen vieras pääoma\n\n"
        "Kulut ilmoitetaan positiivisina lukuina. Jos tuloslaskelman erää ei ole esitetty, "
        "jätä kenttä tyhjäksi (null). Älä koskaan arvaa tai pyöristä lukuja."
    )
    user_prompt = f"Tilinpäätös:\n\n{document_text[:MAX_DOCUMENT_CHARS]}"

    return await llm.structured_completion(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        response_model=ExtractedStatement,
        step_name="extract",
    )


def statement_summary(statement: FinancialStatement) -> str:
    return json.dumps(statement.statement_fields(), indent=2, ensure_ascii=False)
