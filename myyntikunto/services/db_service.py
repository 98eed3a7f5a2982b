import os
import logging
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine, desc
from sqlalchemy.orm import sessionmaker

from myyntikunto.models.db import Base, ValuationRecord, AuditLogEntry, LLMCallRecord, ShareLink
from myyntikunto.models.report import ValuationReport

logger = logging.getLogger(__name__)


class DBService:
    def __init__(self, database_url: str | None = None):
        url = database_url or os.getenv("DATABASE_URL", "sqlite:///./valuation.db")
        self.engine = create_engine(url, echo=False)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    def save_report(self, report: ValuationReport) -> str:
        session = self.Session()
        try:
            valuation_range = (report.valuation or {}).get("valuation_range") or {}
            weighted = (report.valuation or {}).get("probability_weighted") or {}

            record = ValuationRecord(
                id=report.id,
                parent_id=report.parent_id,
                company_name=report.company_name,
                business_id=report.request_summary.get("business_id"),
                range_low=valuation_range.get("low"),
                range_base=valuation_range.get("base"),
                range_high=valuation_range.get("high"),
                weighted_value=weighted.get("weighted_equity_value"),
                report_json=report.model_dump_json(),
                created_at=report.created_at,
            )
            session.merge(record)

            for step in report.pipeline_steps:
                session.add(AuditLogEntry(
                    valuation_id=report.id,
                    step_name=step.step_name,
                    status=step.status,
                    duration_ms=step.duration_ms,
                    error=step.error,
                ))

            for log in report.llm_call_logs:
                session.add(LLMCallRecord(
                    valuation_id=report.id,
                    step_name=log.step_name,
                    model=log.model,
                    system_prompt=log.system_prompt,
                    user_prompt=log.user_prompt,
                    response=log.response,
                    tokens_used=log.tokens_used,
                    duration_ms=log.duration_ms,
                ))

            session.commit()
            logger.info(f"Saved report {report.id} for '{report.company_name}'")
            return report.id
        finally:
            session.close()

    def get_report(self, report_id: str) -> ValuationReport | None:
        session = self.Session()
        try:
            record = session.query(ValuationRecord).filter_by(id=report_id).first()
            if not record:
                return None
            return ValuationReport.model_validate_json(record.report_json)
        finally:
            session.close()

    def list_reports(self) -> list[dict]:
        session = self.Session()
        try:
            records = session.query(ValuationRecord).order_by(desc(ValuationRecord.created_at)).all()
            return [
                {
                    "id": r.id,
                    "parent_id": r.parent_id,
                    "company_name": r.company_name,
                    "business_id": r.business_id,
                    "range_low": r.range_low,
                    "range_base": r.range_base,
                    "range_high": r.range_high,
                    "weighted_value": r.weighted_value,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in records
            ]
        finally:
            session.close()

    def delete_report(self, report_id: str) -> bool:
        session = self.Session()
        try:
            record = session.query(ValuationRecord).filter_by(id=report_id).first()
            if not record:
                return False
            session.query(AuditLogEntry).filter_by(valuation_id=report_id).delete()
            session.query(LLMCallRecord).filter_by(valuation_id=report_id).delete()
            session.query(ShareLink).filter_by(valuation_id=report_id).delete()
            session.delete(record)
            session.commit()
            return True
        finally:
            session.close()

    def get_audit_log(self, report_id: str) -> dict:
        session = self.Session()
        try:
            steps = session.query(AuditLogEntry).filter_by(valuation_id=report_id).all()
            llm_calls = session.query(LLMCallRecord).filter_by(valuation_id=report_id).all()
            return {
                "pipeline_steps": [
                    {
                        "step_name": s.step_name,
                        "status": s.status,
                        "duration_ms": s.duration_ms,
                        "error": s.error,
                    }
                    for s in steps
                ],
                "llm_calls": [
                    {
                        "step_name": c.step_name,
                        "model": c.model,
                        "system_prompt": c.system_prompt,
                        "user_prompt": c.user_prompt,
                        "response": c.response,
                        "tokens_used": c.tokens_used,
                        "duration_ms": c.duration_ms,
                    }
                    for c in llm_calls
                ],
            }
        finally:
            session.close()

    def create_share(
        self,
        report_id: str,
        recipient_email: str | None = None,
        message: str | None = None,
        days: int | None = None,
    ) -> dict | None:
        """Create a read-only share link for a stored report."""
        if days is None:
            days = int(os.getenv("SHARE_LINK_DAYS", "30"))
        session = self.Session()
        try:
            if not session.query(ValuationRecord).filter_by(id=report_id).first():
                return None
            link = ShareLink(
                valuation_id=report_id,
                recipient_email=recipient_email,
                message=message,
                expires_at=datetime.now(timezone.utc) + timedelta(days=days),
            )
            session.add(link)
            session.commit()
            logger.info(f"Share link created for report {report_id}, valid {days} days")
            return {
                "token": link.token,
                "valuation_id": report_id,
                "expires_at": link.expires_at.isoformat(),
                "url": f"/api/shared/{link.token}",
            }
        finally:
            session.close()

    def get_shared_report(self, token: str) -> ValuationReport | None:
        session = self.Session()
        try:
            link = session.query(ShareLink).filter_by(token=token).first()
            if not link:
                return None
            expires_at = link.expires_at
            # SQLite drops tzinfo on the way back
            if expires_at is not None and expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at is not None and expires_at < datetime.now(timezone.utc):
                logger.info(f"Share link {token} expired at {expires_at.isoformat()}")
                return None
            valuation_id = link.valuation_id
        finally:
            session.close()
        return self.get_report(valuation_id)
