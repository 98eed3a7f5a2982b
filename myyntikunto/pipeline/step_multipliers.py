import json
import re
import logging
from myyntikunto.models.request import ValuationRequest
from myyntikunto.models.financials import FinancialStatement
from myyntikunto.models.enriched import EnrichedInput, EstimatedMultipliers
from myyntikunto.services.llm_service import LLMService
from myyntikunto.valuation.multiples import DEFAULT_MULTIPLIERS

logger = logging.getLogger(__name__)


def _parse_research_sources(research_text: str) -> list[dict]:
    """Extract structured [{title, url}] sources from the '--- Sources ---' section."""
    sources: list[dict] = []
    seen_urls: set[str] = set()
    marker = "--- Sources ---"
    idx = research_text.find(marker)
    if idx == -1:
        return sources
    for line in research_text[idx + len(marker):].strip().splitlines():
        line = line.strip().lstrip("- ")
        match = re.match(r"^(.+?):\s*(https?://\S+)", line)
        if match and match.group(2) not in seen_urls:
            seen_urls.add(match.group(2))
            sources.append({"title": match.group(1).strip(), "url": match.group(2)})
    return sources


async def resolve_multipliers(
    request: ValuationRequest,
    statement: FinancialStatement,
    llm: LLMService,
) -> EnrichedInput:
    """Step 3: User override, else industry research, else default multipliers."""
    if request.multipliers is not None:
        return EnrichedInput(
            industry=request.industry,
            multipliers=request.multipliers,
            multipliers_source="user override",
        )

    research = await _research_multipliers(request, llm)
    estimated = await _structure_multipliers(request, statement, research, llm)
    logger.info(
        f"Multipliers for '{request.company_name}' ({estimated.industry or request.industry}): "
        f"revenue avg={estimated.multipliers.revenue.avg}, ev_ebit avg={estimated.multipliers.ev_ebit.avg}, "
        f"confidence={estimated.confidence}"
    )
    return EnrichedInput(
        industry=estimated.industry or request.industry,
        multipliers=estimated.multipliers,
        multipliers_source=f"LLM lookup ({estimated.confidence} confidence)",
        research_sources=_parse_research_sources(research),
        enrichment_notes=estimated.reasoning,
    )


def fallback_multipliers(request: ValuationRequest) -> EnrichedInput:
    return EnrichedInput(
        industry=request.industry,
        multipliers=DEFAULT_MULTIPLIERS,
        multipliers_source="defaults",
        enrichment_notes="Industry multipliers could not be determined; default multipliers used.",
    )


async def _research_multipliers(request: ValuationRequest, llm: LLMService) -> str:
    prompt = (
        f"Etsi toteutuneita yrityskauppojen arvostuskertoimia suomalaisille pk-yrityksille "
        f"toimialalla \"{request.industry or 'tuntematon'}\".\n"
    )
    if request.description:
        prompt += f"Yrityksen kuvaus: {request.description}\n"
    prompt += (
        "\nTarvitsen:\n"
        "1. EV/Liikevaihto -kertoimet (minimi, keskiarvo, maksimi)\n"
        "2. EV/EBIT -kertoimet (minimi, keskiarvo, maksimi)\n"
        "3. EV/EBITDA -kertoimet (minimi, keskiarvo, maksimi)\n\n"
        "Painota pohjoismaisia pienyrityskauppoja ja mainitse lähteet."
    )
    return await llm.research_completion(prompt=prompt, step_name="multipliers_research")


async def _structure_multipliers(
    request: ValuationRequest,
    statement: FinancialStatement,
    research: str,
    llm: LLMService,
) -> EstimatedMultipliers:
    system_prompt = (
        "Olet pk-yritysten arvonmäärityksen asiantuntija. Muodosta tutkimuksen perusteella "
        "toimialan arvostuskertoimet: revenue (EV/Liikevaihto), ev_ebit ja ev_ebitda, "
        "kukin muodossa min <= avg <= max. Kirjaa jokaiselle perustelu (justification) ja "
        "lähde (source). Aseta confidence arvoon 'high', 'medium' tai 'low'."
    )
    user_data = {
        "company_name": request.company_name,
        "industry": request.industry,
        "description": request.description,
        "revenue": statement.revenue,
        "operating_profit": statement.operating_profit,
    }
    user_prompt = (
        f"Yritys:\n{json.dumps(user_data, indent=2, ensure_ascii=False)}\n\n"
        f"Tutkimustulokset:\n{research}"
    )
    return await llm.structured_completion(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        response_model=EstimatedMultipliers,
        step_name="multipliers",
    )
