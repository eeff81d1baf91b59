"""
Scoped snapshot of one company's portfolio.

Everything the finance engine and the automation engine consume is loaded
here through ScopedRepository, so it has already passed the tenant filter.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from arkan.models.company import Company
from arkan.models.contract import Contract
from arkan.models.maintenance import MaintenanceRequest
from arkan.models.payment import Payment
from arkan.models.tenant import Tenant
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger
from arkan.services.financial_engine import FinancialPolicy
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import ScopedRepository, TenantQueryMiddleware

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Portfolio:
    payments: List[Payment]
    contracts: List[Contract]
    tenants: List[Tenant]
    maintenance: List[MaintenanceRequest]


def load_portfolio(
    db: Session,
    context: CompanyContext,
    middleware: TenantQueryMiddleware,
    company_id: Optional[str] = None,
) -> Portfolio:
    repo = ScopedRepository(db, context, middleware)
    filters = {"company_id": company_id} if company_id else None
    return Portfolio(
        payments=repo.list(Payment, filters, order_by=Payment.due_date),
        contracts=repo.list(Contract, filters, order_by=Contract.end_date),
        tenants=repo.list(Tenant, filters, order_by=Tenant.full_name),
        maintenance=repo.list(MaintenanceRequest, filters, order_by=MaintenanceRequest.created_at),
    )


def policy_for(db: Session, company_id: Optional[str], audit: Optional[AuditLogger] = None) -> FinancialPolicy:
    """
    Company settings merged over configured defaults.

    Stored overrides that no longer form a coherent policy (for example after
    the configured defaults changed) are ignored in favour of the defaults,
    with a warning, so the company's figures stay available.
    """
    company = db.get(Company, company_id) if company_id else None
    if company is None:
        return FinancialPolicy()
    try:
        return FinancialPolicy.from_company(company)
    except ValidationError as e:
        errors = [err["msg"] for err in e.errors()]
        logger.warning(f"[FINANCE] Invalid policy settings for {company_id}, using defaults: {errors}")
        if audit is not None:
            audit.log_warning(
                company_id,
                AuditEvent.POLICY_INVALID,
                "Stored financial settings are inconsistent; default policy applied",
                "إعدادات السياسة المالية المحفوظة غير متسقة؛ تم تطبيق السياسة الافتراضية",
                {"errors": errors},
                category=AuditCategory.FINANCE,
            )
        return FinancialPolicy()
