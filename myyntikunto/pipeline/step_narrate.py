import json
from myyntikunto.models.request import ValuationRequest
from myyntikunto.models.valuations import ValuationOutput
from myyntikunto.services.llm_service import LLMService

METHOD_LABELS = {
    "revenue": "Liikevaihtokerroin",
    "ev_ebit": "EV/EBIT",
    "ev_ebitda": "EV/EBITDA",
    "dcf": "Skenaariopohjainen DCF",
}


async def generate_narrative(
    request: ValuationRequest,
    output: ValuationOutput,
    llm: LLMService,
    assumptions: dict | None = None,
) -> str:
    """Step 5: Write the Finnish valuation summary for the business owner."""
    system_prompt = (
        "Olet kokenut yrityskauppaneuvoja. Kirjoita suomeksi 2-4 kappaleen yhteenveto "
        "pk-yrityksen arvonmäärityksestä yrittäjälle. Viittaa lukuihin, kerro mitkä "
        "menetelmät olivat käytettävissä ja miksi, ja selitä tehdyt normalisoinnit. "
        "Jos kertoimet tai tilinpäätöksen luvut on arvioitu tai poimittu automaattisesti, "
        "kerro se selvästi. Älä anna sijoitusneuvoja."
    )

    data = {
        "company_name": request.company_name,
        "industry": request.industry,
        "substance_value": output.substance_value,
        "is_substance_negative": output.is_substance_negative,
        "valuation_range": output.valuation_range.model_dump(),
        "methods": [
            {
                "method": r.method,
                "available": r.available,
                "unavailable_reason": r.unavailable_reason,
                "multiplier": r.multiplier_used,
                "equity_value": r.equity_value,
                "warnings": r.warnings,
            }
            for r in output.method_results
        ],
        "normalizations": [e.model_dump() for e in output.normalized_statement.audit_trail],
    }
    if output.probability_weighted:
        data["probability_weighted"] = output.probability_weighted.model_dump()
        data["dcf_variant"] = output.dcf_variant
    if assumptions:
        data["assumptions"] = {k: v for k, v in assumptions.items() if v is not None}

    user_prompt = (
        f"Kirjoita arvonmäärityksen yhteenveto:\n{json.dumps(data, indent=2, ensure_ascii=False)}"
    )

    return await llm.text_completion(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        step_name="narrate",
    )


def _eur(value: float) -> str:
    return f"{value:,.0f} €".replace(",", " ")


def fallback_narrative(output: ValuationOutput) -> str:
    """Fallback narrative if LLM is unavailable."""
    vr = output.valuation_range
    parts = [
        f"Arvon vaihteluväli: {_eur(vr.low)} - {_eur(vr.high)} (perusarvo {_eur(vr.base)})",
        f"Substanssiarvo: {_eur(output.substance_value)}",
    ]
    if output.is_substance_negative:
        parts.append("Huom: velat ylittävät varat, substanssiarvo on negatiivinen.")
    for r in output.method_results:
        label = METHOD_LABELS.get(r.method, r.method)
        if r.available:
            parts.append(f"- {label}: oman pääoman arvo {_eur(r.equity_value)} (kerroin {r.multiplier_used:.2f})")
        else:
            parts.append(f"- {label}: ei käytettävissä ({r.unavailable_reason})")
    if output.probability_weighted:
        parts.append(
            f"Todennäköisyyspainotettu arvo: {_eur(output.probability_weighted.weighted_equity_value)}"
        )
    return "\n".join(parts)
