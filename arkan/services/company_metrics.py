"""
Company Oversight Metrics

Per-company operating figures and the system-wide summary behind the
operator dashboard. Each company is measured under its own read-only scoped
context, so its figures can only ever come from its own records.

  • calculate_company_metrics - contracts, payments, maintenance, revenue, health
  • get_system_metrics        - status counts, totals, system health
  • compare_companies         - top performers and companies needing attention
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from arkan.models.company import Company, CompanyMember, CompanyStatus, UserRole
from arkan.models.contract import ContractStatus
from arkan.models.maintenance import MaintenanceStatus
from arkan.models.payment import PaymentStatus
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger, SYSTEM_SCOPE
from arkan.services.financial_engine import assess_financial_health, effective_status
from arkan.services.portfolio import load_portfolio, policy_for
from arkan.services.tenant_context import CompanyContext, company_context
from arkan.services.tenant_middleware import TenantQueryMiddleware

logger = logging.getLogger(__name__)

REVENUE_WINDOW_DAYS = 30
TOP_N = 5

# A company counts as problematic for system health
PROBLEM_OVERDUE_COUNT = 5
# System health thresholds, as a share of all companies
RISK_SHARE = 0.3
ATTENTION_SHARE = 0.1

# Comparison "needs attention" thresholds
ATTENTION_OVERDUE_COUNT = 3
ATTENTION_PENDING_MAINTENANCE = 10

_CLOSED_MAINTENANCE = (MaintenanceStatus.DONE, MaintenanceStatus.CANCELED)


@dataclass(frozen=True)
class CompanyMetrics:
    company_id: str
    company_name: str
    status: str
    user_count: int
    tenant_count: int
    active_contracts: int
    pending_payments: int
    overdue_payments: int
    pending_maintenance: int
    monthly_revenue: float
    collection_rate: float
    health_score: int
    health_status: str
    last_activity: Optional[datetime]

    @property
    def is_problematic(self) -> bool:
        return self.overdue_payments > PROBLEM_OVERDUE_COUNT or self.health_status == "risk"


@dataclass(frozen=True)
class CompanyComparison:
    top_by_revenue: List[CompanyMetrics]
    top_by_collection_rate: List[CompanyMetrics]
    needs_attention: List[CompanyMetrics]


@dataclass(frozen=True)
class SystemMetrics:
    total_companies: int
    active_companies: int
    trial_companies: int
    suspended_companies: int
    inactive_companies: int
    total_users: int
    total_tenants: int
    total_active_contracts: int
    problematic_companies: int
    system_health: str          # healthy | attention | risk
    companies: List[CompanyMetrics] = field(default_factory=list)
    comparison: Optional[CompanyComparison] = None


def _oversight_context(company: Company, operator: CompanyContext) -> CompanyContext:
    # Read-only grants, no privileged bypass
    return company_context(company, operator.user_id, operator.email, UserRole.AUTOMATION)


def calculate_company_metrics(
    db: Session,
    company: Company,
    operator: CompanyContext,
    middleware: TenantQueryMiddleware,
    now: datetime,
    audit: Optional[AuditLogger] = None,
) -> CompanyMetrics:
    """Figures for one company, loaded through that company's own scoped context."""
    context = _oversight_context(company, operator)
    portfolio = load_portfolio(db, context, middleware)
    policy = policy_for(db, company.id, audit)

    user_count = db.execute(
        select(func.count(CompanyMember.id)).where(
            CompanyMember.company_id == company.id, CompanyMember.is_active.is_(True)
        )
    ).scalar() or 0

    statuses = [effective_status(now, p.due_date, p.status) for p in portfolio.payments]
    revenue_since = now - timedelta(days=REVENUE_WINDOW_DAYS)
    monthly_revenue = sum(
        p.amount for p in portfolio.payments
        if p.status == PaymentStatus.PAID and p.paid_at is not None and revenue_since <= p.paid_at <= now
    )

    activity = [
        r.created_at
        for r in (*portfolio.payments, *portfolio.contracts, *portfolio.maintenance)
        if r.created_at is not None
    ]

    health = assess_financial_health(
        portfolio.payments, portfolio.contracts, now, policy, audit, company.id
    )

    return CompanyMetrics(
        company_id=company.id,
        company_name=company.name,
        status=company.status.value,
        user_count=user_count,
        tenant_count=len(portfolio.tenants),
        active_contracts=sum(1 for c in portfolio.contracts if c.status == ContractStatus.ACTIVE),
        pending_payments=sum(1 for s in statuses if s == PaymentStatus.DUE),
        overdue_payments=sum(1 for s in statuses if s == PaymentStatus.OVERDUE),
        pending_maintenance=sum(1 for m in portfolio.maintenance if m.status not in _CLOSED_MAINTENANCE),
        monthly_revenue=float(monthly_revenue),
        collection_rate=health.collection_rate,
        health_score=health.overall_score,
        health_status=health.status,
        last_activity=max(activity) if activity else company.created_at,
    )


def list_company_metrics(
    db: Session,
    operator: CompanyContext,
    middleware: TenantQueryMiddleware,
    now: datetime,
    audit: Optional[AuditLogger] = None,
) -> List[CompanyMetrics]:
    companies = db.execute(select(Company).order_by(Company.name)).scalars().all()
    return [calculate_company_metrics(db, company, operator, middleware, now, audit) for company in companies]


def compare_companies(metrics: List[CompanyMetrics]) -> CompanyComparison:
    return CompanyComparison(
        top_by_revenue=sorted(metrics, key=lambda m: -m.monthly_revenue)[:TOP_N],
        top_by_collection_rate=sorted(metrics, key=lambda m: -m.collection_rate)[:TOP_N],
        needs_attention=[
            m for m in metrics
            if m.overdue_payments > ATTENTION_OVERDUE_COUNT
            or m.pending_maintenance > ATTENTION_PENDING_MAINTENANCE
            or m.health_status != "healthy"
        ],
    )


def system_health(problematic: int, total: int) -> str:
    if problematic > total * RISK_SHARE:
        return "risk"
    if problematic > total * ATTENTION_SHARE:
        return "attention"
    return "healthy"


def get_system_metrics(
    db: Session,
    operator: CompanyContext,
    middleware: TenantQueryMiddleware,
    now: datetime,
    audit: Optional[AuditLogger] = None,
) -> SystemMetrics:
    metrics = list_company_metrics(db, operator, middleware, now, audit)

    def count(status: CompanyStatus) -> int:
        return sum(1 for m in metrics if m.status == status.value)

    problematic = sum(1 for m in metrics if m.is_problematic)
    summary = SystemMetrics(
        total_companies=len(metrics),
        active_companies=count(CompanyStatus.ACTIVE),
        trial_companies=count(CompanyStatus.TRIAL),
        suspended_companies=count(CompanyStatus.SUSPENDED),
        inactive_companies=count(CompanyStatus.INACTIVE),
        total_users=sum(m.user_count for m in metrics),
        total_tenants=sum(m.tenant_count for m in metrics),
        total_active_contracts=sum(m.active_contracts for m in metrics),
        problematic_companies=problematic,
        system_health=system_health(problematic, len(metrics)),
        companies=metrics,
        comparison=compare_companies(metrics),
    )

    if audit is not None:
        audit.log_info(
            SYSTEM_SCOPE,
            AuditEvent.SYSTEM_METRICS_CALCULATED,
            f"System metrics calculated: {summary.total_companies} companies, health {summary.system_health}",
            f"تم حساب مقاييس النظام: {summary.total_companies} شركة، الحالة {summary.system_health}",
            {"total_companies": summary.total_companies, "system_health": summary.system_health,
             "problematic_companies": problematic, "user_id": operator.user_id},
            category=AuditCategory.SYSTEM,
        )
    logger.info(f"[METRICS] {summary.total_companies} companies, {problematic} problematic, {summary.system_health}")
    return summary
