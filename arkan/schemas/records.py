"""
Tenant-owned record Schemas
company_id is accepted on input only so a conflicting value can be rejected;
the owning company is always stamped from the resolved context.
"""
from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional
from datetime import date, datetime

from arkan.models.contract import ContractStatus, PaymentFrequency
from arkan.models.maintenance import MaintenanceStatus
from arkan.models.payment import PaymentMethod, PaymentStatus


# ==================== Tenants ====================

class TenantCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    phone: str = Field(..., min_length=5, max_length=32)
    email: Optional[EmailStr] = None
    national_id: Optional[str] = None
    company_id: Optional[str] = None


class TenantResponse(BaseModel):
    id: str
    company_id: str
    full_name: str
    phone: str
    email: Optional[str] = None
    national_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ==================== Contracts ====================

class ContractCreate(BaseModel):
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    unit_id: Optional[str] = None
    unit_no: Optional[str] = None
    start_date: date
    end_date: date
    rent_amount: float = Field(..., ge=0)
    deposit_amount: float = Field(0.0, ge=0)
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY
    status: ContractStatus = ContractStatus.ACTIVE
    notes: Optional[str] = None
    company_id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ContractResponse(BaseModel):
    id: str
    company_id: str
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    property_name: Optional[str] = None
    unit_no: Optional[str] = None
    start_date: date
    end_date: date
    rent_amount: float
    payment_frequency: PaymentFrequency
    status: ContractStatus

    class Config:
        from_attributes = True


# ==================== Payments ====================

class PaymentCreate(BaseModel):
    contract_id: str
    tenant_name: Optional[str] = None
    unit_no: Optional[str] = None
    due_date: date
    amount: float = Field(..., gt=0)
    company_id: Optional[str] = None


class PaymentRecord(BaseModel):
    method: PaymentMethod = PaymentMethod.BANK
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    company_id: str
    contract_id: str
    tenant_name: Optional[str] = None
    unit_no: Optional[str] = None
    due_date: date
    amount: float
    status: PaymentStatus
    effective_status: Optional[PaymentStatus] = None
    paid_at: Optional[datetime] = None
    method: Optional[PaymentMethod] = None

    class Config:
        from_attributes = True


# ==================== Maintenance ====================

class MaintenanceCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    property_id: Optional[str] = None
    unit_no: Optional[str] = None
    cost: float = Field(0.0, ge=0)
    status: MaintenanceStatus = MaintenanceStatus.NEW
    company_id: Optional[str] = None


class MaintenanceResponse(BaseModel):
    id: str
    company_id: str
    title: str
    status: MaintenanceStatus
    cost: float
    created_at: datetime

    class Config:
        from_attributes = True
