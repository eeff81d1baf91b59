"""
Scoped Record Routes - tenants, contracts, payments, maintenance
Every read and write goes through ScopedRepository, so the owning company is
always the caller's resolved company (or, for super admins, the one named).
"""
from fastapi import APIRouter, Depends, HTTPException, status
from datetime import datetime
from typing import List, Optional
import logging

from arkan.core.deps import get_audit_logger, get_now, get_repository, require_permission
from arkan.models.contract import Contract
from arkan.models.maintenance import MaintenanceRequest
from arkan.models.payment import Payment, PaymentStatus
from arkan.models.tenant import Tenant
from arkan.schemas.records import (
    ContractCreate, ContractResponse,
    MaintenanceCreate, MaintenanceResponse,
    PaymentCreate, PaymentRecord, PaymentResponse,
    TenantCreate, TenantResponse,
)
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger
from arkan.services.financial_engine import effective_status
from arkan.services.tenant_middleware import ScopedRepository

router = APIRouter(prefix="/api", tags=["records"])
logger = logging.getLogger(__name__)


def _payment_response(payment: Payment, now: datetime) -> PaymentResponse:
    response = PaymentResponse.model_validate(payment)
    response.effective_status = effective_status(now, payment.due_date, payment.status)
    return response


# ==================== TENANTS ====================

@router.get("/tenants", response_model=List[TenantResponse])
def list_tenants(
    company_id: Optional[str] = None,
    _=Depends(require_permission("tenants", "view")),
    repo: ScopedRepository = Depends(get_repository),
):
    return repo.list(Tenant, {"company_id": company_id}, order_by=Tenant.full_name)


@router.post("/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    tenant_in: TenantCreate,
    _=Depends(require_permission("tenants", "create")),
    repo: ScopedRepository = Depends(get_repository),
):
    return repo.create(Tenant, tenant_in.model_dump())


# ==================== CONTRACTS ====================

@router.get("/contracts", response_model=List[ContractResponse])
def list_contracts(
    company_id: Optional[str] = None,
    _=Depends(require_permission("contracts", "view")),
    repo: ScopedRepository = Depends(get_repository),
):
    return repo.list(Contract, {"company_id": company_id}, order_by=Contract.end_date)


@router.post("/contracts", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
def create_contract(
    contract_in: ContractCreate,
    _=Depends(require_permission("contracts", "create")),
    repo: ScopedRepository = Depends(get_repository),
):
    data = contract_in.model_dump()
    if data.get("tenant_id"):
        tenant = repo.get(Tenant, data["tenant_id"])
        data["tenant_name"] = data.get("tenant_name") or tenant.full_name
    return repo.create(Contract, data)


# ==================== PAYMENTS ====================

@router.get("/payments", response_model=List[PaymentResponse])
def list_payments(
    company_id: Optional[str] = None,
    contract_id: Optional[str] = None,
    _=Depends(require_permission("payments", "view")),
    repo: ScopedRepository = Depends(get_repository),
    now: datetime = Depends(get_now),
):
    payments = repo.list(Payment, {"company_id": company_id, "contract_id": contract_id}, order_by=Payment.due_date)
    return [_payment_response(p, now) for p in payments]


@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def create_payment(
    payment_in: PaymentCreate,
    _=Depends(require_permission("payments", "create")),
    repo: ScopedRepository = Depends(get_repository),
    now: datetime = Depends(get_now),
):
    contract = repo.get(Contract, payment_in.contract_id)
    data = payment_in.model_dump()
    data["tenant_name"] = data.get("tenant_name") or contract.tenant_name
    data["unit_no"] = data.get("unit_no") or contract.unit_no
    if not data.get("company_id"):
        data["company_id"] = contract.company_id
    payment = repo.create(Payment, data)
    return _payment_response(payment, now)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(
    payment_id: str,
    _=Depends(require_permission("payments", "view")),
    repo: ScopedRepository = Depends(get_repository),
    now: datetime = Depends(get_now),
):
    return _payment_response(repo.get(Payment, payment_id), now)


@router.post("/payments/{payment_id}/record", response_model=PaymentResponse)
def record_payment(
    payment_id: str,
    body: PaymentRecord,
    _=Depends(require_permission("payments", "edit")),
    repo: ScopedRepository = Depends(get_repository),
    audit: AuditLogger = Depends(get_audit_logger),
    now: datetime = Depends(get_now),
):
    """Record a payment: due|overdue -> paid. Paid is terminal."""
    payment = repo.get(Payment, payment_id, "update")
    if payment.status == PaymentStatus.PAID:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment already recorded as paid")

    payment = repo.update(Payment, payment_id, {
        "status": PaymentStatus.PAID,
        "paid_at": body.paid_at or now,
        "method": body.method,
        "reference": body.reference,
    })
    audit.log_info(
        payment.company_id,
        AuditEvent.PAYMENT_RECORDED,
        f"Payment of {payment.amount:g} recorded for unit {payment.unit_no}",
        f"تم تسجيل دفعة بقيمة {payment.amount:g} للوحدة {payment.unit_no}",
        {"payment_id": payment.id, "method": body.method.value, "user_id": repo.context.user_id},
        category=AuditCategory.PAYMENT,
    )
    return _payment_response(payment, now)


# ==================== MAINTENANCE ====================

@router.get("/maintenance", response_model=List[MaintenanceResponse])
def list_maintenance(
    company_id: Optional[str] = None,
    _=Depends(require_permission("maintenance", "view")),
    repo: ScopedRepository = Depends(get_repository),
):
    return repo.list(MaintenanceRequest, {"company_id": company_id}, order_by=MaintenanceRequest.created_at)


@router.post("/maintenance", response_model=MaintenanceResponse, status_code=status.HTTP_201_CREATED)
def create_maintenance(
    request_in: MaintenanceCreate,
    _=Depends(require_permission("maintenance", "create")),
    repo: ScopedRepository = Depends(get_repository),
):
    return repo.create(MaintenanceRequest, request_in.model_dump())
