"""
Maintenance Request Model - cost history feeds the cash-flow expense estimate
"""
from enum import Enum

from sqlalchemy import String, Float, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from arkan.db.base import Base, TimestampMixin
from arkan.models.company import new_id


class MaintenanceStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELED = "canceled"


class MaintenanceRequest(TimestampMixin, Base):
    __tablename__ = "maintenance_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )
    property_id: Mapped[str] = mapped_column(String(36), nullable=True)
    unit_no: Mapped[str] = mapped_column(String(50), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    status: Mapped[MaintenanceStatus] = mapped_column(
        SQLEnum(MaintenanceStatus), default=MaintenanceStatus.NEW, nullable=False
    )
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
