"""
Payment Model - one scheduled rent obligation under a contract.
The stored status is only due/paid history; overdue is derived on read.
"""
from datetime import date, datetime
from enum import Enum

from sqlalchemy import String, Float, Date, DateTime, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from arkan.db.base import Base, TimestampMixin
from arkan.models.company import new_id


class PaymentStatus(str, Enum):
    DUE = "due"
    OVERDUE = "overdue"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"
    ONLINE = "online"


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    tenant_name: Mapped[str] = mapped_column(String(255), nullable=True)
    unit_no: Mapped[str] = mapped_column(String(50), nullable=True)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.DUE, nullable=False
    )
    paid_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    method: Mapped[PaymentMethod] = mapped_column(SQLEnum(PaymentMethod), nullable=True)
    reference: Mapped[str] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_payments_company_due", "company_id", "due_date"),
    )
