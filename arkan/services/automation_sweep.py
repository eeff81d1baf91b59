"""
Periodic automation sweep.

One asyncio task per active/trial company. Each task resolves that company's
own service context, builds its notification queue in a worker thread under a
time budget, and dispatches only once the queue is fully built. A timeout or
crash in one company is logged and reported without touching the others.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from arkan.core.config import Settings, settings as default_settings
from arkan.core.exceptions import SuspendedTenantError
from arkan.db.base import utcnow
from arkan.models.company import ACCESSIBLE_STATUSES
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger
from arkan.services.notification_automation import AutomatedMessage, NotificationAutomation, deduplicate
from arkan.services.outbox import OutboxTransport
from arkan.services.portfolio import load_portfolio, policy_for
from arkan.services.tenant_context import CompanyContext, SqlCompanyDirectory, TenantContextResolver
from arkan.services.tenant_middleware import TenantQueryMiddleware

logger = logging.getLogger(__name__)


@dataclass
class CompanySweepReport:
    company_id: str
    status: str = "ok"              # ok | timeout | failed | skipped
    queued: int = 0
    sent: int = 0
    failed: int = 0
    error: Optional[str] = None
    dedupe_keys: List[str] = field(default_factory=list)


class AutomationSweep:
    """Runs NotificationAutomation for every accessible company, one isolated task each."""

    def __init__(
        self,
        session_factory: Callable,
        audit: AuditLogger,
        settings: Optional[Settings] = None,
        transport_factory: Callable = OutboxTransport,
    ):
        self.session_factory = session_factory
        self.audit = audit
        self.settings = settings or default_settings
        self.transport_factory = transport_factory
        self.middleware = TenantQueryMiddleware(audit)
        self.automation = NotificationAutomation(self.middleware, audit, self.settings)

    # ──────────────────────────── Public API ────────────────────────────

    async def run(self, now: Optional[datetime] = None, timeout: Optional[float] = None) -> List[CompanySweepReport]:
        now = now or utcnow()
        timeout = timeout if timeout is not None else self.settings.SWEEP_TENANT_TIMEOUT_SECONDS

        company_ids = await asyncio.to_thread(self.list_company_ids)
        logger.info(f"[SWEEP] Starting sweep over {len(company_ids)} company(ies)")

        tasks = [
            asyncio.create_task(self._sweep_company(company_id, now, timeout), name=f"sweep:{company_id}")
            for company_id in company_ids
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        reports = []
        for company_id, outcome in zip(company_ids, outcomes):
            if isinstance(outcome, BaseException):
                reports.append(CompanySweepReport(company_id, status="failed", error=repr(outcome)))
            else:
                reports.append(outcome)

        logger.info(
            "[SWEEP] Done: " + ", ".join(f"{r.company_id}={r.status}" for r in reports)
        )
        return reports

    def list_company_ids(self) -> List[str]:
        db = self.session_factory()
        try:
            directory = SqlCompanyDirectory(db)
            return [c.id for c in directory.list_companies(ACCESSIBLE_STATUSES)]
        finally:
            db.close()

    def build_company_queue(
        self, company_id: str, now: datetime, cancelled: Optional[threading.Event] = None,
    ) -> Tuple[CompanyContext, List[AutomatedMessage]]:
        """
        Resolve the company's own context, load its scoped data and build its de-duplicated queue.

        Once `cancelled` is set the run is abandoned before the queue is built,
        so a timed-out company gets no queue audit entry.
        """
        db = self.session_factory()
        try:
            resolver = TenantContextResolver(SqlCompanyDirectory(db), self.audit)
            context = resolver.resolve_service_context(company_id)
            portfolio = load_portfolio(db, context, self.middleware)
            policy = policy_for(db, company_id, self.audit)
            if cancelled is not None and cancelled.is_set():
                logger.info(f"[SWEEP] {company_id} cancelled before queue construction")
                return context, []
            queue = self.automation.process_automation_queue(
                context,
                portfolio.payments,
                portfolio.contracts,
                portfolio.tenants,
                now,
                policy,
            )
            since = now - timedelta(hours=self.settings.DEDUP_WINDOW_HOURS)
            sent_keys = self.transport_factory(db).recently_sent_keys(company_id, since)
            return context, deduplicate(queue, sent_keys)
        finally:
            db.close()

    def dispatch(self, context: CompanyContext, queue: List[AutomatedMessage]):
        db = self.session_factory()
        try:
            return self.automation.send_messages(context, queue, self.transport_factory(db))
        finally:
            db.close()

    # ──────────────────────────── Per-company unit ────────────────────────────

    async def _sweep_company(self, company_id: str, now: datetime, timeout: float) -> CompanySweepReport:
        report = CompanySweepReport(company_id)
        cancelled = threading.Event()
        try:
            context, queue = await asyncio.wait_for(
                asyncio.to_thread(self.build_company_queue, company_id, now, cancelled),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            cancelled.set()
            report.status = "timeout"
            report.error = f"queue construction exceeded {timeout}s"
            self.audit.log_error(
                company_id,
                AuditEvent.SWEEP_TENANT_TIMEOUT,
                f"Automation sweep timed out after {timeout}s; nothing dispatched",
                f"انتهت مهلة الأتمتة بعد {timeout} ثانية؛ لم يتم إرسال أي رسالة",
                {"timeout_seconds": timeout},
                category=AuditCategory.AUTOMATION,
            )
            logger.warning(f"[SWEEP] {company_id} timed out")
            return report
        except SuspendedTenantError:
            report.status = "skipped"
            logger.info(f"[SWEEP] {company_id} suspended since listing, skipped")
            return report
        except Exception as e:
            return self._failed(report, e)

        report.queued = len(queue)
        report.dedupe_keys = [m.dedupe_key for m in queue]
        if not queue:
            return report

        try:
            results = await asyncio.to_thread(self.dispatch, context, queue)
        except Exception as e:
            return self._failed(report, e)

        report.sent = sum(1 for r in results if r.success)
        report.failed = len(results) - report.sent
        logger.info(f"[SWEEP] {company_id}: queued={report.queued} sent={report.sent} failed={report.failed}")
        return report

    def _failed(self, report: CompanySweepReport, error: Exception) -> CompanySweepReport:
        report.status = "failed"
        report.error = str(error)
        self.audit.log_error(
            report.company_id,
            AuditEvent.SWEEP_TENANT_FAILED,
            f"Automation sweep failed: {error}",
            f"فشل تشغيل الأتمتة: {error}",
            {"error": str(error), "error_type": type(error).__name__},
            category=AuditCategory.AUTOMATION,
        )
        logger.error(f"[SWEEP] {report.company_id} failed: {error}")
        return report


async def run_sweep(
    session_factory: Optional[Callable] = None,
    audit: Optional[AuditLogger] = None,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> List[CompanySweepReport]:
    """Run one sweep with the application's session factory and audit logger."""
    if session_factory is None:
        from arkan.database import SessionLocal
        session_factory = SessionLocal
    if audit is None:
        from arkan.core.deps import get_audit_logger
        audit = get_audit_logger()
    return await AutomationSweep(session_factory, audit).run(now=now, timeout=timeout)
