import logging
from myyntikunto.models.financials import FinancialStatement, NormalizationAdjustment
from myyntikunto.models.enriched import NormalizationQuestion, QuestionSet, QuestionAnswer
from myyntikunto.services.llm_service import LLMService
from myyntikunto.valuation.normalizer import CATEGORY_LINE_ITEMS
from myyntikunto.pipeline.step_extract import statement_summary

logger = logging.getLogger(__name__)

QUESTIONS_SYSTEM_PROMPT = (
    "Olet erittäin tarkka ja huolellinen tilinpäätösanalyytikko.\n\n"
    "1. Analysoi tilinpäätös ja tunnista erät, jotka saattavat vaatia normalisointia "
    "arvonmäärityksen yhteydessä. Kiinnitä huomiota erityisesti kohtiin, joissa omistajan palkka, "
    "toimitilakulut tai kertaluonteiset erät voivat vääristää yrityksen todellista "
    "tuloksentekokykyä.\n"
    "2. Muotoile kolme kohdennettua kysymystä:\n"
    "- KYSYMYS 1 (category 'owner_salary'): omistajan palkka markkinatasoon verrattuna, tai muu "
    "olennainen normalisointikohde.\n"
    "- KYSYMYS 2 (category 'premises_costs'): toimitila- tai kiinteistökulut.\n"
    "- KYSYMYS 3 (category 'other'): muu poikkeava erä, esim. kertaluonteiset tuotot tai "
    "lähipiiriliiketoimet.\n"
    "Anna jokaiselle kysymykselle id ('q1', 'q2', 'q3') sekä line_item, jota kysymys koskee "
    "(personnel_costs, other_expenses, materials, other_operating_income tai depreciation). "
    "identified_value on kyseisen erän oma määrä euroina, ei koko tilirivin summa. Jätä se "
    "tyhjäksi (null), jos erää ei voi erottaa tilinpäätöksestä.\n"
    "3. Laadi lyhyt yhteenveto: yrityksen koko (Pieni/Keskisuuri/Suuri), taloudellinen tilanne "
    "(Heikko/Tyydyttävä/Hyvä/Erinomainen), tärkeimmät huomiot ja tarkasteltu tilikausi."
)


async def generate_questions(
    statement: FinancialStatement,
    llm: LLMService,
    company_name: str | None = None,
) -> QuestionSet:
    """Ask the model for normalization questions about the statement."""
    user_prompt = ""
    if company_name:
        user_prompt += f"Yritys: {company_name}\n\n"
    user_prompt += f"Tilinpäätöksen luvut (EUR):\n{statement_summary(statement)}"

    question_set = await llm.structured_completion(
        system_prompt=QUESTIONS_SYSTEM_PROMPT,
        user_prompt=user_prompt,
        response_model=QuestionSet,
        step_name="questions",
    )
    if not question_set.questions:
        raise ValueError("Model returned no normalization questions")
    logger.info(f"Generated {len(question_set.questions)} normalization questions")
    return question_set


def fallback_questions(statement: FinancialStatement) -> QuestionSet:
    """Generic questions used when the LLM is unavailable.

    The statement only shows line totals, so the item amounts are left for the
    owner to state in the answers. Questions about unavailable lines are dropped.
    """
    questions = [
        NormalizationQuestion(
            id="q1",
            category="owner_salary",
            description="Omistajan palkka",
            question="Paljonko omistajan vuosipalkka on nyt, ja mikä olisi vastaavan työn markkinapalkka vuodessa?",
            impact="Markkinatasosta poikkeava palkka vääristää liikevoittoa.",
            line_item="personnel_costs",
            normalization_purpose="Henkilöstökulujen oikaisu markkinatasolle",
        ),
        NormalizationQuestion(
            id="q2",
            category="premises_costs",
            description="Toimitilakulut",
            question="Paljonko toimitiloista maksetaan vuodessa, ja mikä olisi markkinatasoinen vuosikulu?",
            impact="Lähipiiriltä vuokratut tilat voivat olla ali- tai ylihinnoiteltuja.",
            line_item="other_expenses",
            normalization_purpose="Toimitilakulujen oikaisu markkinatasolle",
        ),
        NormalizationQuestion(
            id="q3",
            category="other",
            description="Kertaluonteiset erät",
            question="Sisältääkö tulos kertaluonteisia eriä? Kuinka suuri erä on ja mikä olisi sen normaali taso?",
            impact="Kertaluonteiset erät eivät kuvaa jatkuvaa tuloksentekokykyä.",
            line_item="other_expenses",
            normalization_purpose="Kertaluonteisten erien poisto",
        ),
    ]
    return QuestionSet(questions=[q for q in questions if statement.is_available(q.line_item)])


def answers_to_adjustments(
    questions: list[NormalizationQuestion],
    answers: list[QuestionAnswer],
) -> list[NormalizationAdjustment]:
    """Turn answered questions into adjustments.

    The booked amount comes from the answer, else from the question. When neither
    knows it the adjustment goes through without one and the normalizer records it
    as ignored. Answers without a normalized value, or for unknown questions, are skipped.
    """
    by_id = {q.id: q for q in questions}
    adjustments: list[NormalizationAdjustment] = []
    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            logger.warning(f"Answer for unknown question '{answer.question_id}' skipped")
            continue
        if answer.normalized_value is None:
            continue

        original = answer.current_value if answer.current_value is not None else question.identified_value
        if original is None:
            logger.warning(f"Answer to '{question.id}' has no booked amount for the item")

        adjustments.append(NormalizationAdjustment(
            category=question.category,
            line_item=question.line_item or CATEGORY_LINE_ITEMS.get(question.category),
            original_value=original,
            normalized_value=answer.normalized_value,
            explanation=answer.answer or question.normalization_purpose,
        ))
    return adjustments
