"""
Automation Routes
Preview and dispatch the current company's notification queue; operator
endpoints for the all-company sweep and the delivery worker.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Callable, List
import logging

from arkan.core.config import settings
from arkan.core.deps import (
    get_audit_logger, get_middleware, get_now, get_session_factory,
    require_permission, require_super_admin,
)
from arkan.database import get_db
from arkan.schemas.automation import (
    AutomatedMessageResponse,
    DeliverResponse,
    DeliveryResultResponse,
    SendResponse,
    SweepCompanyReport,
)
from arkan.services.audit_logger import AuditLogger
from arkan.services.automation_sweep import AutomationSweep
from arkan.services.delivery_worker import deliver_pending
from arkan.services.notification_automation import NotificationAutomation, deduplicate
from arkan.services.outbox import OutboxTransport
from arkan.services.portfolio import load_portfolio, policy_for
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import TenantQueryMiddleware

router = APIRouter(prefix="/api/automation", tags=["automation"])
logger = logging.getLogger(__name__)


def _build_queue(db, context, middleware, audit, now):
    automation = NotificationAutomation(middleware, audit)
    portfolio = load_portfolio(db, context, middleware)
    queue = automation.process_automation_queue(
        context,
        portfolio.payments,
        portfolio.contracts,
        portfolio.tenants,
        now,
        policy_for(db, context.company_id, audit),
    )
    return automation, queue


@router.get("/queue", response_model=List[AutomatedMessageResponse])
def preview_queue(
    context: CompanyContext = Depends(require_permission("payments", "view")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    """Messages the current company would receive now, before de-duplication."""
    _, queue = _build_queue(db, context, middleware, audit, now)
    return [AutomatedMessageResponse.from_message(m) for m in queue]


@router.post("/send", response_model=SendResponse)
def send_queue(
    context: CompanyContext = Depends(require_permission("payments", "edit")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    automation, queue = _build_queue(db, context, middleware, audit, now)
    transport = OutboxTransport(db)
    since = now - timedelta(hours=settings.DEDUP_WINDOW_HOURS)
    fresh = deduplicate(queue, transport.recently_sent_keys(context.company_id, since))

    results = automation.send_messages(context, fresh, transport)
    return SendResponse(
        success=all(r.success for r in results),
        queued=len(fresh),
        skipped_duplicates=len(queue) - len(fresh),
        results=[
            DeliveryResultResponse(
                dedupe_key=r.message.dedupe_key,
                channel=r.message.channel.value,
                trigger=r.message.trigger,
                success=r.success,
                handle_id=r.handle.id if r.handle else None,
                error=r.error,
            )
            for r in results
        ],
    )


@router.post("/sweep", response_model=List[SweepCompanyReport])
async def run_sweep(
    context: CompanyContext = Depends(require_super_admin),
    session_factory: Callable = Depends(get_session_factory),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    """Run the automation sweep over every active and trial company."""
    reports = await AutomationSweep(session_factory, audit).run(now=now)
    logger.info(f"[SWEEP] Triggered by {context.user_id}")
    return [
        SweepCompanyReport(
            company_id=r.company_id, status=r.status, queued=r.queued,
            sent=r.sent, failed=r.failed, error=r.error,
        )
        for r in reports
    ]


@router.post("/deliver", response_model=DeliverResponse)
def deliver(
    context: CompanyContext = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    report = deliver_pending(db)
    return DeliverResponse(sent=report.sent, retrying=report.retrying, failed=report.failed)
