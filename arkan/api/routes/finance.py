"""
Finance Routes
Thin wrappers over the financial engine. Data is loaded through the tenant
middleware first; the engine itself never touches the database.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from arkan.core.deps import get_audit_logger, get_middleware, get_now, get_repository, require_permission
from arkan.core.exceptions import TenantScopeRequiredError
from arkan.database import get_db
from arkan.models.payment import Payment
from arkan.schemas.finance import (
    EscalationItem,
    ForecastResponse,
    HealthResponse,
    IssuePayment,
    IssuesResponse,
    PaymentAnalysisResponse,
    TenantHistoryResponse,
)
from arkan.services import financial_engine as engine
from arkan.services.audit_logger import AuditLogger
from arkan.services.portfolio import Portfolio, load_portfolio, policy_for
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import ScopedRepository, TenantQueryMiddleware

router = APIRouter(prefix="/api/finance", tags=["finance"])
logger = logging.getLogger(__name__)


def _scoped_company(context: CompanyContext, middleware: TenantQueryMiddleware, company_id: Optional[str]) -> str:
    """Finance figures are always for exactly one company."""
    scope = middleware.tenant_filter(context, company_id)
    if scope.all_tenants:
        raise TenantScopeRequiredError(
            "Choose a company to view its finances",
            "اختر شركة لعرض بياناتها المالية",
        )
    return scope.company_id


def _load(db, context, middleware, audit, company_id) -> tuple:
    scoped_id = _scoped_company(context, middleware, company_id)
    portfolio: Portfolio = load_portfolio(db, context, middleware, scoped_id)
    return scoped_id, portfolio, policy_for(db, scoped_id, audit)


@router.get("/health", response_model=HealthResponse)
def financial_health(
    company_id: Optional[str] = None,
    context: CompanyContext = Depends(require_permission("reports", "view")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    scoped_id, portfolio, policy = _load(db, context, middleware, audit, company_id)
    health = engine.assess_financial_health(
        portfolio.payments, portfolio.contracts, now, policy, audit, scoped_id
    )
    return HealthResponse(**health.__dict__)


@router.get("/issues", response_model=IssuesResponse)
def payment_issues(
    company_id: Optional[str] = None,
    context: CompanyContext = Depends(require_permission("payments", "view")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    """
    withinGrace, severelyOverdue and needsEscalation are independent views:
    a payment can be both severely overdue and due for escalation.
    """
    scoped_id, portfolio, policy = _load(db, context, middleware, audit, company_id)
    issues = engine.detect_payment_issues(portfolio.payments, now, policy, audit, scoped_id)
    return IssuesResponse(
        within_grace=[IssuePayment.model_validate(p) for p in issues.within_grace],
        severely_overdue=[IssuePayment.model_validate(p) for p in issues.severely_overdue],
        needs_escalation=[
            EscalationItem(payment=IssuePayment.model_validate(e.payment), level=e.level, days_overdue=e.days_overdue)
            for e in issues.needs_escalation
        ],
        skipped=issues.skipped,
    )


@router.get("/forecast", response_model=ForecastResponse)
def cash_flow_forecast(
    months: Optional[int] = Query(None, ge=1, le=24),
    company_id: Optional[str] = None,
    context: CompanyContext = Depends(require_permission("reports", "view")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    scoped_id, portfolio, policy = _load(db, context, middleware, audit, company_id)
    forecast = engine.calculate_cash_flow_forecast(
        portfolio.contracts,
        portfolio.payments,
        now,
        horizon_months=months,
        policy=policy,
        maintenance=portfolio.maintenance,
        audit=audit,
        scope=scoped_id,
    )
    return ForecastResponse(**forecast.__dict__)


@router.get("/payments/{payment_id}/analysis", response_model=PaymentAnalysisResponse)
def payment_analysis(
    payment_id: str,
    context: CompanyContext = Depends(require_permission("payments", "view")),
    repo: ScopedRepository = Depends(get_repository),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    payment = repo.get(Payment, payment_id)
    analysis = engine.analyze_payment(payment, now, policy_for(db, payment.company_id, audit))
    return PaymentAnalysisResponse(**analysis.__dict__)


@router.get("/tenant-history", response_model=TenantHistoryResponse)
def tenant_history(
    tenant_name: str = Query(..., min_length=1),
    tenant_id: Optional[str] = None,
    company_id: Optional[str] = None,
    context: CompanyContext = Depends(require_permission("payments", "view")),
    db: Session = Depends(get_db),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    scoped_id, portfolio, policy = _load(db, context, middleware, audit, company_id)
    history = engine.analyze_tenant_payment_history(
        tenant_name, portfolio.payments, now, policy, tenant_id, audit, scoped_id
    )
    return TenantHistoryResponse(**history.__dict__)
