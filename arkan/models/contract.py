"""
Contract Model - lease agreement driving payment schedules and expiry reminders
"""
from datetime import date
from enum import Enum

from sqlalchemy import String, Float, Date, ForeignKey, Text, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from arkan.db.base import Base, TimestampMixin
from arkan.models.company import new_id


class ContractStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    SUSPENDED = "suspended"


class PaymentFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    YEARLY = "yearly"


# Months between two scheduled due dates
FREQUENCY_MONTHS = {
    PaymentFrequency.MONTHLY: 1,
    PaymentFrequency.QUARTERLY: 3,
    PaymentFrequency.SEMIANNUAL: 6,
    PaymentFrequency.YEARLY: 12,
}


class Contract(TimestampMixin, Base):
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )

    property_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    property_name: Mapped[str] = mapped_column(String(255), nullable=True)
    unit_id: Mapped[str] = mapped_column(String(36), nullable=True)
    unit_no: Mapped[str] = mapped_column(String(50), nullable=True)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=True, index=True
    )
    tenant_name: Mapped[str] = mapped_column(String(255), nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    rent_amount: Mapped[float] = mapped_column(Float, nullable=False)
    deposit_amount: Mapped[float] = mapped_column(Float, default=0.0)
    payment_frequency: Mapped[PaymentFrequency] = mapped_column(
        SQLEnum(PaymentFrequency), default=PaymentFrequency.MONTHLY, nullable=False
    )
    status: Mapped[ContractStatus] = mapped_column(
        SQLEnum(ContractStatus), default=ContractStatus.ACTIVE, nullable=False
    )
    notes: Mapped[str] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_contracts_company_status", "company_id", "status"),
    )
