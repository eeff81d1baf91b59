"""
Company, membership and context Schemas
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime

from arkan.models.company import CompanyStatus, UserRole


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    name_ar: Optional[str] = None
    email: Optional[EmailStr] = None
    country: str = "SA"
    status: CompanyStatus = CompanyStatus.TRIAL


class CompanyStatusUpdate(BaseModel):
    status: CompanyStatus
    reason: Optional[str] = None


class CompanySettingsUpdate(BaseModel):
    grace_period_days: Optional[int] = Field(None, ge=0)
    escalation_interval_days: Optional[int] = Field(None, gt=0)
    severe_overdue_days: Optional[int] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    locale: Optional[str] = None


class CompanyResponse(BaseModel):
    id: str
    name: str
    name_ar: Optional[str] = None
    email: Optional[str] = None
    status: CompanyStatus
    grace_period_days: Optional[int] = None
    escalation_interval_days: Optional[int] = None
    severe_overdue_days: Optional[int] = None
    currency: Optional[str] = None
    locale: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MemberCreate(BaseModel):
    principal_uid: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    display_name: Optional[str] = None
    role: UserRole


class MemberResponse(BaseModel):
    id: str
    principal_uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    company_id: Optional[str] = None
    role: UserRole
    is_active: bool

    class Config:
        from_attributes = True


# ==================== Oversight metrics ====================

class CompanyMetricsResponse(BaseModel):
    company_id: str
    company_name: str
    status: CompanyStatus
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
    last_activity: Optional[datetime] = None

    class Config:
        from_attributes = True


class CompanyComparisonResponse(BaseModel):
    top_by_revenue: List[CompanyMetricsResponse]
    top_by_collection_rate: List[CompanyMetricsResponse]
    needs_attention: List[CompanyMetricsResponse]

    class Config:
        from_attributes = True


class SystemMetricsResponse(BaseModel):
    total_companies: int
    active_companies: int
    trial_companies: int
    suspended_companies: int
    inactive_companies: int
    total_users: int
    total_tenants: int
    total_active_contracts: int
    problematic_companies: int
    system_health: str
    companies: List[CompanyMetricsResponse]
    comparison: CompanyComparisonResponse

    class Config:
        from_attributes = True


# ==================== Context ====================

class ContextResponse(BaseModel):
    company_id: Optional[str]
    company_name: str
    user_id: str
    email: Optional[str] = None
    role: UserRole
    permissions: List[str]
    is_super_admin: bool
    is_context_switch: bool

    @classmethod
    def from_context(cls, context) -> "ContextResponse":
        return cls(
            company_id=context.company_id,
            company_name=context.company_name,
            user_id=context.user_id,
            email=context.email,
            role=context.role,
            permissions=sorted(context.permissions),
            is_super_admin=context.is_super_admin,
            is_context_switch=context.is_context_switch,
        )


class ContextSwitchRequest(BaseModel):
    company_id: str
    reason: Optional[str] = Field(None, max_length=500)


class ContextExitRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ContextSwitchLogResponse(BaseModel):
    id: str
    principal_uid: str
    principal_email: Optional[str] = None
    from_company_id: Optional[str] = None
    to_company_id: Optional[str] = None
    action: str
    reason: Optional[str] = None
    success: bool
    failure_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
