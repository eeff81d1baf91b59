"""
Financial engine response Schemas
"""
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import date


class HealthResponse(BaseModel):
    collection_rate: float
    overdue_percentage: float
    recommendations: List[Dict[str, str]]
    overall_score: int
    status: str
    average_days_to_payment: float
    risk_factors: List[Dict[str, str]]
    window_start: date
    window_end: date
    payments_in_window: int
    skipped: int


class IssuePayment(BaseModel):
    id: str
    tenant_name: Optional[str] = None
    unit_no: Optional[str] = None
    due_date: date
    amount: float

    class Config:
        from_attributes = True


class EscalationItem(BaseModel):
    payment: IssuePayment
    level: int
    days_overdue: int


class IssuesResponse(BaseModel):
    within_grace: List[IssuePayment]
    severely_overdue: List[IssuePayment]
    needs_escalation: List[EscalationItem]
    skipped: int


class ForecastResponse(BaseModel):
    labels: List[str]
    expected: List[float]
    projected: List[float]
    expenses: List[float]
    collection_rate: float


class PaymentAnalysisResponse(BaseModel):
    payment_id: str
    status: str
    days_overdue: int
    grace_period_end: Optional[date] = None
    is_within_grace: bool
    escalation_level: int
    risk_score: int


class TenantHistoryResponse(BaseModel):
    tenant_id: Optional[str] = None
    tenant_name: str
    total_payments: int
    on_time_payments: int
    late_payments: int
    missed_payments: int
    average_days_late: int
    total_amount_paid: float
    total_amount_outstanding: float
    payment_score: int
    risk_level: str
    is_repeat_offender: bool
