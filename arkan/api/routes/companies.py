"""
Company Administration Routes
Companies are never deleted, only status-transitioned.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List
import logging

from arkan.core.deps import get_audit_logger, get_company_context, get_middleware, get_now, require_super_admin
from arkan.core.exceptions import PermissionDeniedError, TenantNotFoundError
from arkan.database import get_db
from arkan.models.company import Company, CompanyMember, UserRole
from arkan.schemas.company import (
    CompanyCreate,
    CompanyMetricsResponse,
    CompanyResponse,
    CompanySettingsUpdate,
    CompanyStatusUpdate,
    MemberCreate,
    MemberResponse,
    SystemMetricsResponse,
)
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger
from arkan.services.company_metrics import get_system_metrics, list_company_metrics
from arkan.services.financial_engine import FinancialPolicy
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import TenantQueryMiddleware

router = APIRouter(prefix="/api/companies", tags=["companies"])
logger = logging.getLogger(__name__)

COMPANY_ROLES = {
    UserRole.COMPANY_ADMIN, UserRole.MANAGER, UserRole.STAFF,
    UserRole.ACCOUNTANT, UserRole.MAINTENANCE,
}

POLICY_FIELDS = ("grace_period_days", "escalation_interval_days", "severe_overdue_days", "currency", "locale")


def _get_company(db: Session, company_id: str) -> Company:
    company = db.get(Company, company_id)
    if company is None:
        raise TenantNotFoundError()
    return company


def _require_company_admin(context: CompanyContext, middleware: TenantQueryMiddleware,
                           company_id: str, module: str, action: str) -> None:
    """Super admins pass; others need the permission and must target their own company."""
    if context.is_super_admin:
        return
    if not context.has_permission(module, action):
        raise PermissionDeniedError()
    middleware.check_access(context, {"id": company_id, "company_id": company_id}, "update")


# ==================== COMPANIES ====================

@router.get("", response_model=List[CompanyResponse])
def list_companies(
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(require_super_admin),
):
    return db.execute(select(Company).order_by(Company.created_at)).scalars().all()


@router.get("/metrics", response_model=List[CompanyMetricsResponse])
def company_metrics(
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(require_super_admin),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    """Operating figures per company, each computed under that company's own scope."""
    metrics = list_company_metrics(db, context, middleware, now, audit)
    return [CompanyMetricsResponse.model_validate(m) for m in metrics]


@router.get("/metrics/summary", response_model=SystemMetricsResponse)
def system_metrics(
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(require_super_admin),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    return SystemMetricsResponse.model_validate(get_system_metrics(db, context, middleware, now, audit))


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
def create_company(
    company_in: CompanyCreate,
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(require_super_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    company = Company(**company_in.model_dump(), created_by=context.user_id)
    db.add(company)
    db.commit()
    db.refresh(company)

    audit.log_info(
        company.id,
        AuditEvent.COMPANY_CREATED,
        f"Company {company.name} created by {context.user_id}",
        f"تم إنشاء الشركة {company.name_ar or company.name} بواسطة {context.user_id}",
        {"status": company.status.value},
        category=AuditCategory.COMPANY,
    )
    return company


@router.patch("/{company_id}/status", response_model=CompanyResponse)
def update_company_status(
    company_id: str,
    body: CompanyStatusUpdate,
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(require_super_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    company = _get_company(db, company_id)
    previous = company.status
    company.status = body.status
    db.commit()
    db.refresh(company)

    audit.log_warning(
        company.id,
        AuditEvent.COMPANY_STATUS_CHANGED,
        f"Company status changed {previous.value} -> {company.status.value}",
        f"تم تغيير حالة الشركة من {previous.value} إلى {company.status.value}",
        {"from": previous.value, "to": company.status.value, "reason": body.reason, "user_id": context.user_id},
        category=AuditCategory.COMPANY,
    )
    return company


@router.patch("/{company_id}/settings", response_model=CompanyResponse)
def update_company_settings(
    company_id: str,
    body: CompanySettingsUpdate,
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(get_company_context),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Update the company's financial policy settings (grace, escalation, severity, currency, locale)."""
    _require_company_admin(context, middleware, company_id, "settings", "edit")
    company = _get_company(db, company_id)

    changes = body.model_dump(exclude_unset=True)
    # Validate what will be stored; None clears the override back to the default
    stored = {name: getattr(company, name) for name in POLICY_FIELDS}
    stored.update(changes)
    try:
        FinancialPolicy(**{k: v for k, v in stored.items() if v is not None})
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[err["msg"] for err in e.errors()],
        )

    for key, value in changes.items():
        setattr(company, key, value)
    db.commit()
    db.refresh(company)

    audit.log_info(
        company.id,
        AuditEvent.COMPANY_SETTINGS_CHANGED,
        f"Company settings updated by {context.user_id}",
        f"تم تحديث إعدادات الشركة بواسطة {context.user_id}",
        {"changes": changes},
        category=AuditCategory.COMPANY,
    )
    return company


# ==================== MEMBERS ====================

@router.post("/{company_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
def add_member(
    company_id: str,
    member_in: MemberCreate,
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(get_company_context),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
):
    _require_company_admin(context, middleware, company_id, "employees", "create")
    _get_company(db, company_id)

    if member_in.role not in COMPANY_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Role {member_in.role.value} cannot be assigned to a company member")

    existing = db.execute(
        select(CompanyMember).where(CompanyMember.principal_uid == member_in.principal_uid)
    ).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Principal already has a membership")

    member = CompanyMember(**member_in.model_dump(), company_id=company_id)
    db.add(member)
    db.commit()
    db.refresh(member)

    audit.log_info(
        company_id,
        AuditEvent.MEMBER_ADDED,
        f"Member {member.principal_uid} added as {member.role.value}",
        f"تمت إضافة العضو {member.principal_uid} بدور {member.role.value}",
        {"principal_uid": member.principal_uid, "role": member.role.value, "user_id": context.user_id},
        category=AuditCategory.SECURITY,
    )
    return member
