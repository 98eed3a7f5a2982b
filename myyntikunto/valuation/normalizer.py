import logging
from myyntikunto.models.financials import (
    FinancialStatement, NormalizationAdjustment, NormalizedStatement, AdjustmentAuditEntry,
    ADJUSTABLE_LINE_ITEMS, INCOME_LINE_ITEMS,
)

logger = logging.getLogger(__name__)

# Recognized categories and the line item each one adjusts by default
CATEGORY_LINE_ITEMS: dict[str, str] = {
    "owner_salary": "personnel_costs",
    "premises_costs": "other_expenses",
    "other": "other_expenses",
}


def normalize(
    statement: FinancialStatement,
    adjustments: list[NormalizationAdjustment],
) -> NormalizedStatement:
    """Apply reviewed adjustments to a statement and recompute EBIT / EBITDA.

    Adjustments that cannot be applied are recorded as ignored rather than failing
    the whole run. The input statement is left untouched.
    """
    values = statement.statement_fields()
    audit_trail = list(getattr(statement, "audit_trail", []))

    for adjustment in adjustments:
        entry = _apply_adjustment(values, adjustment)
        if entry.status == "ignored":
            logger.warning(f"Normalization ignored ({adjustment.category}): {entry.reason}")
        audit_trail.append(entry)

    return NormalizedStatement(**values, audit_trail=audit_trail)


def _apply_adjustment(values: dict, adjustment: NormalizationAdjustment) -> AdjustmentAuditEntry:
    if adjustment.category not in CATEGORY_LINE_ITEMS:
        return _ignored(adjustment, adjustment.line_item, f"Unrecognized category '{adjustment.category}'")

    line_item = adjustment.line_item or CATEGORY_LINE_ITEMS[adjustment.category]
    if line_item not in ADJUSTABLE_LINE_ITEMS:
        return _ignored(adjustment, line_item, f"Line item '{line_item}' cannot be normalized")

    current = values.get(line_item)
    if current is None:
        return _ignored(adjustment, line_item, f"Line item '{line_item}' is not available in the statement")
    if adjustment.original_value is None:
        return _ignored(adjustment, line_item, "Booked amount of the item is not known")
    if adjustment.original_value > current:
        return _ignored(
            adjustment, line_item,
            f"Item amount {adjustment.original_value:,.0f} exceeds the reported '{line_item}' ({current:,.0f})",
        )

    delta = adjustment.normalized_value - adjustment.original_value
    if current + delta < 0:
        return _ignored(adjustment, line_item, f"Adjustment would leave '{line_item}' below zero")
    values[line_item] = current + delta

    # Higher costs lower EBIT; higher other income raises it
    line_effect = delta if line_item in INCOME_LINE_ITEMS else -delta
    ebit_effect = 0.0
    if values.get("operating_profit") is not None:
        values["operating_profit"] += line_effect
        ebit_effect = line_effect
    if values.get("ebitda") is not None and line_item != "depreciation":
        values["ebitda"] += line_effect

    return AdjustmentAuditEntry(
        category=adjustment.category,
        line_item=line_item,
        original_value=adjustment.original_value,
        normalized_value=adjustment.normalized_value,
        delta=delta,
        ebit_effect=ebit_effect,
        status="applied",
        explanation=adjustment.explanation,
    )


def _ignored(adjustment: NormalizationAdjustment, line_item: str | None, reason: str) -> AdjustmentAuditEntry:
    return AdjustmentAuditEntry(
        category=adjustment.category,
        line_item=line_item,
        original_value=adjustment.original_value,
        normalized_value=adjustment.normalized_value,
        status="ignored",
        reason=reason,
        explanation=adjustment.explanation,
    )
