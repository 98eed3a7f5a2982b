from myyntikunto.models.report import ValuationReport
from myyntikunto.services.db_service import DBService


def persist_report(report: ValuationReport, db: DBService) -> str:
    """Step 6: Save the completed report, its step log and LLM calls."""
    return db.save_report(report)
